"""Batch orchestration: discover, plan, dispatch, report."""

from __future__ import annotations

import json
import os
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger

from .backends import Backend, BackendRegistry, render_args
from .config import RomcompSettings
from .errors import (
    ErrorKind,
    FatalConfigError,
    MissingTrackError,
    RomcompError,
    UnknownBackendError,
    UnreadableInputError,
)
from .finalizer import (
    commit,
    flatten_output,
    pack_zip,
    remove_originals,
    target_path,
    verify_backend_output,
)
from .formats import FormatKind, N64ByteOrder
from .logging import log_event
from .resolver import ConversionUnit, referenced_paths, resolve_unit
from .results import BatchReport, Failed, JobResult, Skipped, Succeeded
from .scheduler import WorkerPool
from .sniffer import SniffResult, sniff
from .supervisor import WORKSPACE_PREFIX, UnitWorkspace, base_name, run_backend, stage_input

MB = 1024 * 1024
INTERRUPTED = "interrupted before dispatch"


@dataclass
class PlanEntry:
    """One descriptor path: either a unit to dispatch or an immediate result."""

    path: Path
    unit: Optional[ConversionUnit] = None
    backend: Optional[Backend] = None
    result: Optional[JobResult] = None

    @property
    def runnable(self) -> bool:
        return self.result is None and self.unit is not None and self.backend is not None


def discover(root: Path) -> List[Path]:
    """Candidate files under `root` in sorted order; a file root is a batch of one."""
    root = root.resolve()
    if root.is_file():
        return [root]
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        # Leftover workspaces from an interrupted run are not inputs
        dirnames[:] = [d for d in dirnames if not d.startswith(WORKSPACE_PREFIX)]
        for name in filenames:
            p = Path(dirpath) / name
            if p.is_symlink() or not p.is_file():
                continue
            found.append(p)
    found.sort()
    return found


def _sniff_one(path: Path) -> Union[SniffResult, UnreadableInputError]:
    try:
        return sniff(path)
    except UnreadableInputError as e:
        return e


def _sniff_all(paths: List[Path], max_workers: Optional[int]) -> Dict[Path, Union[SniffResult, UnreadableInputError]]:
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return dict(zip(paths, executor.map(_sniff_one, paths)))


def _error_result(path: Path, exc: RomcompError) -> JobResult:
    if isinstance(exc, UnknownBackendError):
        return Skipped(path=path, reason=exc.message, error_kind=exc.kind)
    return Failed(path=path, error_kind=exc.kind, message=str(exc))


def plan_units(
    paths: List[Path],
    registry: BackendRegistry,
    *,
    dry_run: bool = False,
    max_workers: Optional[int] = None,
) -> List[PlanEntry]:
    """Classify and group `paths` into an ordered plan.

    Cue sheets are resolved first so the track files they name are never
    considered on their own. When two sheets name the same file, the first in
    path order keeps it.
    """
    sniffed = _sniff_all(paths, max_workers)
    for p in paths:
        res = sniffed[p]
        if isinstance(res, SniffResult):
            log_event(
                "sniff",
                level="DEBUG",
                msg=f"{p.name}: {res.kind.value}",
                file=str(p),
                kind=res.kind.value,
                matched=list(res.matched) if res.ambiguous else None,
            )

    claimed: Dict[Path, Path] = {}
    cue_errors: Dict[Path, RomcompError] = {}
    overlaps: Dict[Path, Path] = {}
    for p in paths:
        res = sniffed[p]
        if not isinstance(res, SniffResult) or res.kind is not FormatKind.CUE_BIN:
            continue
        try:
            refs = [r.resolve() for r in referenced_paths(p)]
        except UnreadableInputError as e:
            cue_errors[p] = e
            continue
        owner = next((claimed[r] for r in refs if r in claimed), None)
        if owner is not None:
            overlaps[p] = owner
        for r in refs:
            claimed.setdefault(r, p)

    plan: List[PlanEntry] = []
    targets: Dict[Path, Path] = {}
    for p in paths:
        res = sniffed[p]
        if isinstance(res, UnreadableInputError):
            plan.append(PlanEntry(p, result=_error_result(p, res)))
            continue
        if res.kind is not FormatKind.CUE_BIN and p in claimed:
            logger.debug(f"{p.name} belongs to {claimed[p].name}")
            continue
        if p in cue_errors:
            plan.append(PlanEntry(p, result=_error_result(p, cue_errors[p])))
            continue
        if p in overlaps:
            plan.append(PlanEntry(p, result=Skipped(p, f"tracks already claimed by {overlaps[p].name}")))
            continue
        if res.kind is FormatKind.UNKNOWN and res.ambiguous:
            plan.append(
                PlanEntry(
                    p,
                    result=Skipped(
                        p,
                        f"unrecognized format (ambiguous: {', '.join(res.matched)})",
                        error_kind=ErrorKind.UNKNOWN_BACKEND,
                    ),
                )
            )
            continue
        try:
            unit = resolve_unit(p, res)
            backend = registry.lookup(res.kind)
        except (UnknownBackendError, MissingTrackError, UnreadableInputError) as e:
            plan.append(PlanEntry(p, result=_error_result(p, e)))
            continue

        target = target_path(unit, backend, base_name(unit))
        if target.exists():
            plan.append(PlanEntry(p, result=Skipped(p, "target exists")))
            continue
        if target in targets:
            plan.append(PlanEntry(p, result=Skipped(p, f"target claimed by {targets[target].name}")))
            continue
        targets[target] = p
        if dry_run:
            logger.info(f"CONVERT {p} -> {target.name} | {backend.name}")
            plan.append(PlanEntry(p, result=Skipped(p, f"dry-run: would run {backend.name} -> {target.name}")))
            continue
        plan.append(PlanEntry(p, unit=unit, backend=backend))
    return plan


def run_unit(unit: ConversionUnit, backend: Backend, cfg: RomcompSettings, *, root: Path) -> Succeeded:
    """Convert, verify and commit one unit, then apply the removal policy.

    Raises a RomcompError subclass on any failure; sources are untouched
    unless the commit succeeded.
    """
    t0 = time.monotonic()
    base = base_name(unit)
    final = target_path(unit, backend, base)
    bytes_in = unit.input_bytes()

    with UnitWorkspace(unit.directory) as ws:
        assert ws.path is not None
        if backend.archive and backend.native_passthrough and unit.byte_order is N64ByteOrder.BIG_ENDIAN:
            # Already native, pack the source as is
            payload = unit.primary
            log_event("dispatch", msg=f"{unit.primary.name}: native byte order, packing only", file=str(unit.primary))
        else:
            src = stage_input(unit, ws.path)
            payload = ws.path / (base + backend.extension)
            argv = render_args(backend, src, payload)
            log_event(
                "dispatch",
                level="DEBUG",
                msg=f"{backend.name} <- {unit.primary.name}",
                file=str(unit.primary),
                backend=backend.name,
                inputs=len(unit.files),
            )
            run_backend(
                argv,
                timeout_s=cfg.timeout_s,
                diag_lines=cfg.diag_lines,
                cwd=ws.path,
                success_codes=backend.success_codes,
                failure_codes=backend.failure_codes,
            )
        written = verify_backend_output(payload, backend)
        artifact = payload
        if backend.archive:
            artifact = ws.path / final.name
            written = pack_zip(payload, artifact, arcname=base + backend.extension)
        commit(artifact, final)
    log_event("commit", level="DEBUG", msg=f"committed {final}", file=str(final), bytes=written)

    removed: Tuple[Path, ...] = ()
    removal_errors: Tuple[str, ...] = ()
    if not cfg.keep_original:
        done, errs = remove_originals(unit)
        removed, removal_errors = tuple(done), tuple(errs)
        log_event("remove", level="DEBUG", msg=f"removed {len(removed)} source file(s)", file=str(unit.primary))
        if cfg.flatten and not removal_errors:
            final = flatten_output(final, root)

    return Succeeded(
        path=unit.primary,
        output_path=final,
        bytes_written=written,
        bytes_in=bytes_in,
        elapsed_s=time.monotonic() - t0,
        removed=removed,
        removal_errors=removal_errors,
    )


def _execute(
    entry: PlanEntry, cfg: RomcompSettings, root: Path, stop_event: Optional[threading.Event] = None
) -> JobResult:
    assert entry.unit is not None and entry.backend is not None
    # Queued units that reach a worker after an interrupt never start
    if stop_event is not None and stop_event.is_set():
        return Skipped(entry.path, INTERRUPTED)
    try:
        return run_unit(entry.unit, entry.backend, cfg, root=root)
    except RomcompError as e:
        return _error_result(entry.path, e)


def _unexpected(item: Tuple[int, PlanEntry], exc: BaseException) -> JobResult:
    _, entry = item
    logger.opt(exception=exc).debug(f"Unexpected error converting {entry.path}")
    return Failed(path=entry.path, error_kind=ErrorKind.BACKEND_ERROR, message=f"{type(exc).__name__}: {exc}")


def _log_result(res: JobResult, done: int, total: int, root: Path) -> None:
    try:
        rel = res.path.relative_to(root)
    except ValueError:
        rel = res.path
    prefix = f"[{done}/{total}]"
    if isinstance(res, Succeeded):
        logger.info(
            f"{prefix} OK {rel} -> {res.output_path.name} "
            f"({res.bytes_in / MB:.1f} MB -> {res.bytes_written / MB:.1f} MB, {res.elapsed_s:.1f}s)"
        )
        for err in res.removal_errors:
            logger.warning(f"{prefix} could not remove source: {err}")
    elif isinstance(res, Failed):
        first = res.message.splitlines()[0] if res.message else ""
        logger.error(f"{prefix} FAILED {rel}: {res.error_kind.value}: {first}")
        if "\n" in res.message:
            logger.debug(res.message)
    log_event("unit", level="DEBUG", msg=f"{rel}: {res.status}", file=str(res.path), status=res.status)


def _validate(root: Path, cfg: RomcompSettings, registry: BackendRegistry) -> None:
    if not root.exists():
        raise FatalConfigError(f"Location does not exist: {root}")
    if cfg.flatten and cfg.keep_original:
        raise FatalConfigError("Flattening requires removing originals", suggestion="pass --remove with --flatten")
    if cfg.flatten and not root.is_dir():
        raise FatalConfigError(f"Cannot flatten a single file: {root}")
    if not registry.available():
        raise FatalConfigError(
            "No usable backend",
            suggestion="install chdman, maxcso, dolphin-tool or rom64, or run `romcomp preflight`",
        )


def run_batch(
    root: Path,
    cfg: RomcompSettings,
    registry: BackendRegistry,
    *,
    dry_run: bool = False,
    stop_event: Optional[threading.Event] = None,
) -> BatchReport:
    """Compress everything under `root`.

    Per-unit problems end up in the report; only FatalConfigError is raised.
    """
    t0 = time.monotonic()
    root = Path(root).expanduser().resolve()
    _validate(root, cfg, registry)

    workers = cfg.max_workers(os.cpu_count())
    paths = discover(root)
    logger.info(f"Scanning {root}: {len(paths)} files")
    plan = plan_units(paths, registry, dry_run=dry_run, max_workers=workers)

    results: List[Optional[JobResult]] = [e.result for e in plan]
    runnable = [(i, e) for i, e in enumerate(plan) if e.runnable]
    total = len(runnable)
    logger.info(f"Units: {len(plan)} | To convert: {total} | Workers: {workers}")

    if runnable and not (stop_event is not None and stop_event.is_set()):
        done = 0
        with WorkerPool(workers) as pool:
            for (idx, _entry), res in pool.imap_unordered_bounded(
                lambda item: _execute(item[1], cfg, root, stop_event),
                runnable,
                max_pending=min(total, 2 * workers),
                stop_event=stop_event,
                on_error=_unexpected,
            ):
                results[idx] = res
                done += 1
                _log_result(res, done, total, root)

    interrupted = stop_event is not None and stop_event.is_set()
    final: List[JobResult] = []
    for entry, res in zip(plan, results):
        if res is None:
            res = Skipped(entry.path, INTERRUPTED)
        final.append(res)

    return BatchReport(
        root=root,
        results=tuple(final),
        elapsed_s=time.monotonic() - t0,
        interrupted=interrupted,
        dry_run=dry_run,
    )


def log_summary(report: BatchReport) -> None:
    c = report.counts()
    logger.info(
        f"Units: {c['total']} | Succeeded: {c['succeeded']} | Skipped: {c['skipped']} | Failed: {c['failed']}"
    )
    reasons = Counter(r.reason for r in report.skipped)
    for reason, n in sorted(reasons.items()):
        logger.info(f"  skipped {n}: {reason}")
    for r in report.failed:
        first = r.message.splitlines()[0] if r.message else ""
        logger.error(f"  {r.path}: {r.error_kind.value}: {first}")
    if report.succeeded:
        in_mb = report.input_bytes / MB
        out_mb = report.output_bytes / MB
        saved = in_mb - out_mb
        pct = (saved / in_mb * 100) if in_mb else 0.0
        logger.info(f"Input size: {in_mb:.2f} MB, Output size: {out_mb:.2f} MB, Saved: {saved:.2f} MB ({pct:.1f}%)")
    if report.interrupted:
        logger.warning("Run interrupted; units not yet started were skipped")
    logger.info(f"Elapsed: {report.elapsed_s:.1f}s")


def write_summary(report: BatchReport, path: Path) -> Path:
    """Write the JSON run summary; returns the path written."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    return path
