"""Group files into conversion units.

A cue sheet and every track file it names form one unit; every other
recognized format is a unit of one file. Referential integrity is checked
here, before anything is dispatched.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .cue import read_cue_sheet
from .errors import MissingTrackError
from .formats import FormatKind, N64ByteOrder
from .sniffer import SniffResult


@dataclass(frozen=True)
class ConversionUnit:
    primary: Path
    dependents: Tuple[Path, ...]
    kind: FormatKind
    byte_order: Optional[N64ByteOrder] = None

    @property
    def files(self) -> Tuple[Path, ...]:
        """Primary followed by dependents, without repeats."""
        seen = {self.primary}
        out = [self.primary]
        for p in self.dependents:
            if p not in seen:
                seen.add(p)
                out.append(p)
        return tuple(out)

    @property
    def directory(self) -> Path:
        return self.primary.parent

    def input_bytes(self) -> int:
        total = 0
        for p in self.files:
            try:
                total += p.stat().st_size
            except OSError:
                continue
        return total


def referenced_paths(cue_path: Path) -> List[Path]:
    """Every file a cue sheet names, resolved against its directory, in order.

    Duplicate FILE clauses collapse to their first occurrence.
    """
    base = cue_path.parent
    out: List[Path] = []
    for cf in read_cue_sheet(cue_path):
        p = base / cf.relative_path()
        if p not in out:
            out.append(p)
    return out


def _usable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def resolve_unit(path: Path, sniffed: SniffResult) -> ConversionUnit:
    """Build the unit for a descriptor path and its detected format.

    Raises MissingTrackError when a cue sheet names files that are absent or
    unreadable; UnreadableInputError when the sheet itself cannot be parsed.
    """
    if sniffed.kind is FormatKind.CUE_BIN:
        tracks = referenced_paths(path)
        missing = [p.name for p in tracks if not _usable(p)]
        if missing:
            raise MissingTrackError(str(path), missing)
        return ConversionUnit(primary=path, dependents=tuple(tracks), kind=sniffed.kind)
    return ConversionUnit(primary=path, dependents=(), kind=sniffed.kind, byte_order=sniffed.byte_order)
