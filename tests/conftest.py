import sys
from pathlib import Path
from typing import List, Optional

import pytest
from loguru import logger

from romcomp.backends import Backend

# Fake backends are small Python programs run with the current interpreter:
#   python -c SCRIPT <input> <output>
WRITE_CHD = "import sys; open(sys.argv[2], 'wb').write(b'MComprHD' + bytes(64))"
FAIL_WITH_STDERR = "import sys; print('bad sector at LBA 16', file=sys.stderr); sys.exit(1)"
SLEEP = "import time; time.sleep(60)"
WRITE_NOTHING = "import sys; sys.exit(0)"
BYTESWAP = (
    "import sys; d = open(sys.argv[1], 'rb').read(); "
    "open(sys.argv[2], 'wb').write(b''.join(d[i + 1:i + 2] + d[i:i + 1] for i in range(0, len(d), 2)))"
)

N64_HEADER_Z64 = b"\x80\x37\x12\x40"
N64_HEADER_V64 = b"\x37\x80\x40\x12"


def fake_backend(script: str, *, name: str = "fake-chdman", extension: str = ".chd",
                 magic: Optional[bytes] = b"MComprHD", **kwargs) -> Backend:
    return Backend(
        name=name,
        executable=sys.executable,
        args=("-c", script, "{input}", "{output}"),
        extension=extension,
        magic=magic,
        **kwargs,
    )


def cue_text(bins: List[str], mode: str = "MODE2/2352") -> str:
    lines = []
    for i, b in enumerate(bins, start=1):
        lines.append(f'FILE "{b}" BINARY')
        lines.append(f"  TRACK {i:02d} {mode if i == 1 else 'AUDIO'}")
        if i > 1:
            lines.append("    INDEX 00 00:00:00")
        lines.append("    INDEX 01 00:02:00" if i > 1 else "    INDEX 01 00:00:00")
    return "\n".join(lines) + "\n"


def make_disc(directory: Path, name: str = "game", bins: Optional[List[str]] = None,
              cue_name: Optional[str] = None) -> Path:
    """Write a cue sheet plus its track files; returns the cue path."""
    bins = bins or [f"{name}.bin"]
    directory.mkdir(parents=True, exist_ok=True)
    for b in bins:
        (directory / b).write_bytes(b"\x00\xff\xff\xff\xff\xff\xff\xff\xff\xff\xff\x00" + bytes(2340))
    cue = directory / (cue_name or f"{name}.cue")
    cue.write_text(cue_text(bins), encoding="utf-8")
    return cue


@pytest.fixture(autouse=True)
def quiet_logger():
    logger.remove()
    yield
    logger.remove()
