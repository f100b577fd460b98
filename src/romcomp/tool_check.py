"""Backend executable preflight checks.

Uses only the Python standard library.
"""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional


@dataclass
class ToolStatus:
    name: str
    available: bool
    path: Optional[str] = None
    version: Optional[str] = None
    error: Optional[str] = None


def _run(cmd: list[str], timeout: float = 10) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            text=True,
            errors="replace",
            timeout=timeout,
        )
        return proc.returncode, proc.stdout, proc.stderr
    except (OSError, subprocess.TimeoutExpired) as exc:
        return 1, "", str(exc)


def probe_tool(executable: str, *, light: bool = True) -> ToolStatus:
    """Probe a backend executable.

    light=True: only check PATH (fast).
    light=False: also run it bare and keep the first non-empty output line as
    version text; most of these tools print usage plus version when called
    without arguments and exit non-zero, so the return code is ignored.
    """
    path = shutil.which(executable)
    if not path:
        return ToolStatus(name=executable, available=False, error=f"{executable} not found in PATH")
    if light:
        return ToolStatus(name=executable, available=True, path=path)
    _, out, err = _run([path])
    version = None
    for line in ((out or "") + (err or "")).splitlines():
        s = line.strip()
        if s:
            version = s
            break
    return ToolStatus(name=executable, available=True, path=path, version=version)
