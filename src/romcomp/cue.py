"""Cue sheet grammar (standard library only).

Parses the line-oriented format written by common ripping tools:

    FILE "Game (Track 1).bin" BINARY
      TRACK 01 MODE2/2352
        INDEX 01 00:00:00

Keywords are case-insensitive; file names may be quoted or bare. Only the
structure needed to locate track files is kept.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path, PureWindowsPath
from typing import List, Optional, Tuple

from .errors import UnreadableInputError

# Cue sheets are tiny; anything larger is not treated as one.
CUE_MAX_BYTES = 256 * 1024

TRACK_MODES = {
    "AUDIO",
    "CDG",
    "MODE1/2048",
    "MODE1/2352",
    "MODE2/2048",
    "MODE2/2324",
    "MODE2/2336",
    "MODE2/2352",
    "CDI/2336",
    "CDI/2352",
}

FILE_TYPES = {"BINARY", "MOTOROLA", "AIFF", "WAVE", "MP3", "FLAC"}

# Lines that may appear anywhere and carry nothing we need.
_PASSIVE_KEYWORDS = {
    "REM",
    "CATALOG",
    "CDTEXTFILE",
    "PERFORMER",
    "TITLE",
    "SONGWRITER",
    "COMPOSER",
    "ARRANGER",
    "MESSAGE",
    "DISC_ID",
    "GENRE",
    "TOC_INFO1",
    "TOC_INFO2",
    "UPC_EAN",
    "SIZE_INFO",
    "ISRC",
    "FLAGS",
    "PREGAP",
    "POSTGAP",
}

_FILE_RE = re.compile(r'^FILE\s+(?:"([^"]*)"|(\S(?:.*\S)?))\s+(\S+)$', re.IGNORECASE)
_TRACK_RE = re.compile(r"^TRACK\s+(\d{1,2})\s+(\S+)$", re.IGNORECASE)
_INDEX_RE = re.compile(r"^INDEX\s+(\d{1,2})\s+(\d{1,3}):([0-5]\d):([0-7]\d)$", re.IGNORECASE)


class CueSyntaxError(UnreadableInputError):
    """Text does not follow the cue sheet grammar."""


@dataclass
class CueTrackFile:
    name: str
    file_type: str
    tracks: List[Tuple[int, str]] = field(default_factory=list)

    def relative_path(self) -> Path:
        """File name as a path relative to the cue sheet's directory.

        Sheets written on Windows use backslashes; normalize them.
        """
        if "\\" in self.name:
            return Path(*PureWindowsPath(self.name).parts)
        return Path(self.name)


def decode_cue_bytes(data: bytes) -> Optional[str]:
    """Decode raw bytes as cue sheet text, or None when they are binary."""
    if b"\x00" in data:
        return None
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        # Older rippers write the ANSI code page.
        return data.decode("latin-1")


def parse_cue_sheet(text: str) -> List[CueTrackFile]:
    """Parse cue sheet text into its FILE clauses, in order.

    Raises CueSyntaxError for unknown keywords, malformed clauses, a TRACK
    before any FILE, or a sheet without any FILE/TRACK.
    """
    files: List[CueTrackFile] = []
    current: Optional[CueTrackFile] = None
    saw_track = False
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        keyword = line.split(None, 1)[0].upper()
        if keyword in _PASSIVE_KEYWORDS:
            continue
        if keyword == "FILE":
            m = _FILE_RE.match(line)
            if not m:
                raise CueSyntaxError(f"line {lineno}: malformed FILE clause")
            name = m.group(1) if m.group(1) is not None else m.group(2)
            ftype = m.group(3).upper()
            if not name or ftype not in FILE_TYPES:
                raise CueSyntaxError(f"line {lineno}: bad FILE name or type {ftype!r}")
            current = CueTrackFile(name=name, file_type=ftype)
            files.append(current)
        elif keyword == "TRACK":
            m = _TRACK_RE.match(line)
            if not m or m.group(2).upper() not in TRACK_MODES:
                raise CueSyntaxError(f"line {lineno}: malformed TRACK line")
            if current is None:
                raise CueSyntaxError(f"line {lineno}: TRACK before any FILE")
            current.tracks.append((int(m.group(1)), m.group(2).upper()))
            saw_track = True
        elif keyword == "INDEX":
            if not _INDEX_RE.match(line):
                raise CueSyntaxError(f"line {lineno}: malformed INDEX line")
            if current is None or not current.tracks:
                raise CueSyntaxError(f"line {lineno}: INDEX outside a TRACK")
        else:
            raise CueSyntaxError(f"line {lineno}: unknown keyword {keyword!r}")
    if not files or not saw_track:
        raise CueSyntaxError("no FILE/TRACK clauses found")
    return files


def is_cue_sheet(data: bytes) -> bool:
    """Structural check used by the sniffer; never raises."""
    if len(data) > CUE_MAX_BYTES:
        return False
    text = decode_cue_bytes(data)
    if text is None:
        return False
    try:
        parse_cue_sheet(text)
    except CueSyntaxError:
        return False
    return True


def read_cue_text(path: Path) -> str:
    try:
        with path.open("rb") as f:
            data = f.read(CUE_MAX_BYTES + 1)
    except OSError as e:
        raise UnreadableInputError(f"Cannot read cue sheet '{path}': {e}") from e
    if len(data) > CUE_MAX_BYTES:
        raise CueSyntaxError(f"'{path}' is too large to be a cue sheet")
    text = decode_cue_bytes(data)
    if text is None:
        raise CueSyntaxError(f"'{path}' is not a text file")
    return text


def read_cue_sheet(path: Path) -> List[CueTrackFile]:
    """Read and parse a cue sheet from disk."""
    return parse_cue_sheet(read_cue_text(path))


def rewrite_file_names(text: str, base_dir: Path) -> str:
    """Return cue text with every FILE name replaced by its absolute path.

    Everything else (TRACK/INDEX layout, pregaps, REM lines) is kept verbatim.
    """
    out: List[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        m = _FILE_RE.match(line) if line[:4].upper() == "FILE" else None
        if m:
            name = m.group(1) if m.group(1) is not None else m.group(2)
            target = (base_dir / CueTrackFile(name=name, file_type="").relative_path()).resolve()
            out.append(f'FILE "{target}" {m.group(3).upper()}')
        else:
            out.append(raw)
    return "\n".join(out) + "\n"
