from __future__ import annotations

from enum import Enum


class FormatKind(str, Enum):
    """Content-derived classification of an input file."""

    CUE_BIN = "CueBin"
    RAW_ISO = "RawIso"
    CHD = "Chd"
    WII_ISO = "WiiIso"
    N64_ROM = "N64Rom"
    UNKNOWN = "Unknown"


class N64ByteOrder(str, Enum):
    """Byte order of an N64 cartridge dump, named after the usual suffix."""

    BIG_ENDIAN = "z64"  # native order, no conversion required
    BYTE_SWAPPED = "v64"
    LITTLE_ENDIAN = "n64"


# First four bytes of the cartridge header (0x80371240) in each layout.
N64_MAGIC = {
    b"\x80\x37\x12\x40": N64ByteOrder.BIG_ENDIAN,
    b"\x37\x80\x40\x12": N64ByteOrder.BYTE_SWAPPED,
    b"\x40\x12\x37\x80": N64ByteOrder.LITTLE_ENDIAN,
}
