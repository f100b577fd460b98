"""Verify produced artifacts and commit them.

The commit is a single `os.replace` from the unit's workspace (same
directory tree, same filesystem) to the final path; there is never a
copy-then-delete that could expose a half-written file. Sources are only
touched after the commit succeeded.
"""
from __future__ import annotations

import os
import threading
import zipfile
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from .backends import ZIP_MAGIC, Backend
from .errors import FinalizeError, VerificationFailedError
from .resolver import ConversionUnit


def verify_output(path: Path, *, magic: Optional[bytes] = None, magic_offset: int = 0) -> int:
    """Check that an artifact exists, is non-empty and carries `magic`.

    Returns its size in bytes; raises VerificationFailedError otherwise.
    """
    try:
        st = path.stat()
    except OSError:
        raise VerificationFailedError(f"Backend produced no output at {path.name}") from None
    if not path.is_file():
        raise VerificationFailedError(f"Output {path.name} is not a regular file")
    if st.st_size == 0:
        raise VerificationFailedError(f"Output {path.name} is empty")
    if magic:
        try:
            with path.open("rb") as f:
                f.seek(magic_offset)
                head = f.read(len(magic))
        except OSError as e:
            raise VerificationFailedError(f"Cannot read output {path.name}: {e}") from e
        if head != magic:
            raise VerificationFailedError(
                f"Output {path.name} has no {magic!r} header (found {head!r})"
            )
    return st.st_size


def verify_backend_output(path: Path, backend: Backend) -> int:
    return verify_output(path, magic=backend.magic, magic_offset=backend.magic_offset)


def pack_zip(payload: Path, target: Path, *, arcname: str) -> int:
    """Deflate a single file into a new zip archive at `target`."""
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        zf.write(payload, arcname=arcname)
    with zipfile.ZipFile(target) as zf:
        bad = zf.testzip()
    if bad is not None:
        raise VerificationFailedError(f"CRC mismatch in packed archive member {bad}")
    return verify_output(target, magic=ZIP_MAGIC)


def target_path(unit: ConversionUnit, backend: Backend, base: str) -> Path:
    """Final artifact path: the unit's directory, base name plus the backend's extension."""
    return unit.directory / (base + backend.final_extension)


_COMMIT_LOCK = threading.Lock()


def commit(temp: Path, final: Path) -> None:
    """Atomically move a verified artifact into place; an existing file is never replaced.

    Commits are serialized so the existence check and the rename of two
    workers cannot interleave.
    """
    with _COMMIT_LOCK:
        if final.exists():
            raise FinalizeError(f"Refusing to overwrite existing {final}")
        try:
            os.replace(temp, final)
        except OSError as e:
            raise FinalizeError(f"Rename to {final} failed: {e}") from e


def remove_originals(unit: ConversionUnit) -> Tuple[List[Path], List[str]]:
    """Delete every source file of a committed unit.

    All files are attempted even if one fails; returns (removed, errors).
    """
    removed: List[Path] = []
    errors: List[str] = []
    for p in unit.files:
        try:
            p.unlink()
            removed.append(p)
            logger.debug(f"Deleted input file {p}")
        except FileNotFoundError:
            removed.append(p)
        except OSError as e:
            errors.append(f"{p}: {e}")
            logger.warning(f"Could not delete input file {p}: {e}")
    return removed, errors


def flatten_output(final: Path, root: Path) -> Path:
    """Move `final` up while it is the only entry in its directory, never above `root`.

    Directories emptied by the move are removed. Returns the new location.
    """
    root = root.resolve()
    start = final.parent
    dest_dir = start
    while dest_dir != root and root in dest_dir.parents:
        try:
            if len(list(dest_dir.iterdir())) != 1:
                break
        except OSError:
            break
        dest_dir = dest_dir.parent
    if dest_dir == start:
        return final
    moved = dest_dir / final.name
    if moved.exists():
        logger.warning(f"Not flattening {final}: {moved} already exists")
        return final
    try:
        os.replace(final, moved)
    except OSError as e:
        logger.warning(f"Error moving {final} to {moved}: {e}")
        return final
    logger.debug(f"Moved {final} to {moved}")
    current = start
    while current != dest_dir:
        try:
            current.rmdir()
        except OSError as e:
            logger.warning(f"Error removing directory {current}: {e}")
            break
        logger.debug(f"Removed empty directory {current}")
        current = current.parent
    return moved
