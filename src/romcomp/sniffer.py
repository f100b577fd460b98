"""Content-based format detection (standard library only).

Reads a bounded prefix of each file and applies signature heuristics in
strict priority tiers:

1. text: cue sheet grammar
2. container magic at offset 0: CHD, N64 cartridge (any byte order)
3. disc headers: Wii/GameCube magic words, ISO 9660 volume descriptor

The first tier with a match decides. Matches for different kinds inside the
same tier are a tie and yield Unknown rather than a guess. File suffixes are
never consulted.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from .cue import CUE_MAX_BYTES, is_cue_sheet
from .errors import UnreadableInputError
from .formats import N64_MAGIC, FormatKind, N64ByteOrder

# Enough to cover the first ISO 9660 volume descriptor at sector 16.
PROBE_BYTES = 0x8800

CHD_MAGIC = b"MComprHD"
WII_MAGIC = b"\x5d\x1c\x9e\xa3"  # big-endian word at 0x18
GAMECUBE_MAGIC = b"\xc2\x33\x9f\x3d"  # big-endian word at 0x1C
ISO9660_PVD_OFFSET = 0x8000  # 16 * 2048
ISO9660_ID = b"CD001"


@dataclass(frozen=True)
class SniffResult:
    kind: FormatKind
    # Names of the heuristics that matched in the deciding tier.
    matched: Tuple[str, ...] = ()
    byte_order: Optional[N64ByteOrder] = None

    @property
    def ambiguous(self) -> bool:
        return self.kind is FormatKind.UNKNOWN and len(self.matched) > 1


@dataclass
class _Probe:
    head: bytes
    size: int
    # Whole file when small enough to be a cue sheet, else None.
    small: Optional[bytes]


def _is_cue(p: _Probe) -> bool:
    return p.small is not None and is_cue_sheet(p.small)


def _is_chd(p: _Probe) -> bool:
    return p.head.startswith(CHD_MAGIC)


def _is_n64(p: _Probe) -> bool:
    return p.head[:4] in N64_MAGIC


def _is_wii(p: _Probe) -> bool:
    return p.head[0x18:0x1C] == WII_MAGIC


def _is_gamecube(p: _Probe) -> bool:
    return p.head[0x1C:0x20] == GAMECUBE_MAGIC


def _is_iso9660(p: _Probe) -> bool:
    # Descriptor type byte (1 = primary, 0xFF = terminator, 0..3 others) + "CD001"
    desc = p.head[ISO9660_PVD_OFFSET : ISO9660_PVD_OFFSET + 6]
    return len(desc) == 6 and desc[1:6] == ISO9660_ID and desc[0] in (0, 1, 2, 3, 0xFF)


Heuristic = Tuple[str, FormatKind, Callable[[_Probe], bool]]

TIERS: Tuple[Tuple[Heuristic, ...], ...] = (
    (("cue", FormatKind.CUE_BIN, _is_cue),),
    (
        ("chd", FormatKind.CHD, _is_chd),
        ("n64", FormatKind.N64_ROM, _is_n64),
    ),
    (
        ("wii", FormatKind.WII_ISO, _is_wii),
        ("gamecube", FormatKind.WII_ISO, _is_gamecube),
        ("iso9660", FormatKind.RAW_ISO, _is_iso9660),
    ),
)


def _read_probe(path: Path) -> _Probe:
    try:
        with path.open("rb") as f:
            size = os.fstat(f.fileno()).st_size
            head = f.read(PROBE_BYTES)
            small: Optional[bytes] = None
            if size <= CUE_MAX_BYTES:
                small = head + f.read(CUE_MAX_BYTES - len(head)) if len(head) < size else head
    except OSError as e:
        raise UnreadableInputError(f"Cannot read '{path}': {e}") from e
    return _Probe(head=head, size=size, small=small)


def sniff(path: Path) -> SniffResult:
    """Classify a file by content.

    Raises UnreadableInputError when the file cannot be opened or read.
    """
    probe = _read_probe(path)
    if probe.size == 0:
        return SniffResult(FormatKind.UNKNOWN)
    for tier in TIERS:
        hits = [(name, kind) for name, kind, test in tier if test(probe)]
        if not hits:
            continue
        names = tuple(name for name, _ in hits)
        kinds = {kind for _, kind in hits}
        if len(kinds) > 1:
            return SniffResult(FormatKind.UNKNOWN, matched=names)
        kind = kinds.pop()
        order = N64_MAGIC.get(probe.head[:4]) if kind is FormatKind.N64_ROM else None
        return SniffResult(kind, matched=names, byte_order=order)
    return SniffResult(FormatKind.UNKNOWN)


def sniff_format(path: Path) -> FormatKind:
    return sniff(path).kind
