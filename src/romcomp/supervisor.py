"""Backend process supervision.

Each invocation runs inside two scoped resources:

- `UnitWorkspace`: a hidden working directory next to the unit (same
  filesystem, so the final rename is atomic) that receives the temporary
  output and is removed on every exit path.
- `BackendProcess`: the child process; killed and reaped on exit if it is
  still running.

Child output (stdout and stderr merged) is drained on a helper thread into a
bounded buffer. It is logged at DEBUG and attached to failures, never
printed on the console.
"""
from __future__ import annotations

import os
import shutil
import signal
import subprocess
import tempfile
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Deque, List, Optional, Type

from loguru import logger

from .backends import cmd_to_string
from .cue import read_cue_text, rewrite_file_names
from .errors import BackendError, BackendTimeoutError
from .formats import FormatKind
from .logging import truncate
from .resolver import ConversionUnit

WORKSPACE_PREFIX = ".romcomp-"

# How long to wait for the drain thread once the child is gone.
_DRAIN_JOIN_S = 5.0


class UnitWorkspace:
    """Temporary working directory scoped to one unit."""

    def __init__(self, directory: Path) -> None:
        self._parent = directory
        self.path: Optional[Path] = None

    def __enter__(self) -> "UnitWorkspace":
        self.path = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=str(self._parent)))
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self.path is None:
            return
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove workspace {self.path}: {e}")
        self.path = None


def stage_input(unit: ConversionUnit, workspace: Path) -> Path:
    """Return the path the backend should read.

    Cue sheets not named *.cue (e.g. game.cue.txt) are copied into the
    workspace as <name>.cue with absolute FILE paths, since chdman picks its
    parser from the suffix. Everything else is passed as is.
    """
    if unit.kind is not FormatKind.CUE_BIN or unit.primary.suffix.lower() == ".cue":
        return unit.primary
    text = read_cue_text(unit.primary)
    staged = workspace / (base_name(unit) + ".cue")
    staged.write_text(rewrite_file_names(text, unit.directory), encoding="utf-8")
    logger.debug(f"Staged {unit.primary.name} as {staged}")
    return staged


def base_name(unit: ConversionUnit) -> str:
    """Output base name: primary's name without its suffix (and a trailing .txt for cue sheets)."""
    name = unit.primary.name
    if unit.kind is FormatKind.CUE_BIN and name.lower().endswith(".txt"):
        name = name[:-4]
    return Path(name).stem


@dataclass
class ProcessOutcome:
    returncode: int
    output: str
    elapsed_s: float


def _kill_tree(proc: subprocess.Popen) -> None:
    try:
        if os.name == "posix":
            # The child leads its own session; take any helpers down with it.
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        proc.kill()


class BackendProcess:
    """A spawned backend whose lifetime is bounded by a `with` block."""

    def __init__(self, argv: List[str], *, cwd: Optional[Path] = None, diag_lines: int = 40) -> None:
        self.argv = argv
        self.cwd = cwd
        self.lines: Deque[str] = deque(maxlen=diag_lines)
        self.proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None

    def __enter__(self) -> "BackendProcess":
        try:
            self.proc = subprocess.Popen(
                self.argv,
                cwd=str(self.cwd) if self.cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                # Keep a terminal Ctrl-C away from in-flight backends
                start_new_session=True,
            )
        except OSError as e:
            raise BackendError(f"Cannot start {self.argv[0]}: {e}") from e
        self._reader = threading.Thread(target=self._drain, name="romcomp-drain", daemon=True)
        self._reader.start()
        return self

    def _drain(self) -> None:
        assert self.proc is not None and self.proc.stdout is not None
        for line in self.proc.stdout:
            line = line.rstrip()
            if line:
                self.lines.append(line)

    def wait(self, timeout_s: Optional[float]) -> int:
        assert self.proc is not None
        rc = self.proc.wait(timeout=timeout_s)
        self._join()
        return rc

    def _join(self) -> None:
        if self._reader is not None:
            self._reader.join(_DRAIN_JOIN_S)

    def output(self) -> str:
        return "\n".join(self.lines)

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if self.proc is None:
            return
        if self.proc.poll() is None:
            _kill_tree(self.proc)
            self.proc.wait()
        self._join()
        if self.proc.stdout is not None:
            self.proc.stdout.close()


def run_backend(
    argv: List[str],
    *,
    timeout_s: Optional[float],
    diag_lines: int = 40,
    cwd: Optional[Path] = None,
    success_codes: frozenset = frozenset({0}),
    failure_codes: frozenset = frozenset({1}),
) -> ProcessOutcome:
    """Run one backend invocation to completion.

    Raises BackendTimeoutError when `timeout_s` elapses (the child is killed),
    BackendError when it cannot start or exits with a code outside
    `success_codes`.
    """
    logger.debug("Running backend: {}", cmd_to_string(argv))
    t0 = time.monotonic()
    with BackendProcess(argv, cwd=cwd, diag_lines=diag_lines) as bp:
        try:
            rc = bp.wait(timeout_s)
        except subprocess.TimeoutExpired:
            assert bp.proc is not None
            _kill_tree(bp.proc)
            bp.proc.wait()
            bp._join()
            raise BackendTimeoutError(
                f"{Path(argv[0]).name} exceeded {timeout_s:g}s and was killed",
                diagnostics=truncate(bp.output()),
            ) from None
        output = bp.output()
    elapsed = time.monotonic() - t0
    if output:
        logger.debug(f"{Path(argv[0]).name} output:\n{truncate(output)}")
    if rc not in success_codes:
        what = "code" if rc in failure_codes else "unexpected code"
        raise BackendError(
            f"{Path(argv[0]).name} exited with {what} {rc}",
            returncode=rc,
            diagnostics=truncate(output),
        )
    return ProcessOutcome(returncode=rc, output=output, elapsed_s=elapsed)
