"""Per-unit outcomes and the batch report."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ErrorKind


@dataclass(frozen=True)
class Succeeded:
    path: Path
    output_path: Path
    bytes_written: int
    bytes_in: int = 0
    elapsed_s: float = 0.0
    removed: Tuple[Path, ...] = ()
    removal_errors: Tuple[str, ...] = ()

    status = "succeeded"


@dataclass(frozen=True)
class Skipped:
    path: Path
    reason: str
    error_kind: Optional[ErrorKind] = None

    status = "skipped"


@dataclass(frozen=True)
class Failed:
    path: Path
    error_kind: ErrorKind
    message: str

    status = "failed"


JobResult = Union[Succeeded, Skipped, Failed]


@dataclass(frozen=True)
class BatchReport:
    root: Path
    results: Tuple[JobResult, ...]
    elapsed_s: float = 0.0
    interrupted: bool = False
    dry_run: bool = False

    def _of(self, cls: type) -> List[Any]:
        return [r for r in self.results if isinstance(r, cls)]

    @property
    def succeeded(self) -> List[Succeeded]:
        return self._of(Succeeded)

    @property
    def skipped(self) -> List[Skipped]:
        return self._of(Skipped)

    @property
    def failed(self) -> List[Failed]:
        return self._of(Failed)

    @property
    def input_bytes(self) -> int:
        return sum(r.bytes_in for r in self.succeeded)

    @property
    def output_bytes(self) -> int:
        return sum(r.bytes_written for r in self.succeeded)

    def counts(self) -> Dict[str, int]:
        return {
            "total": len(self.results),
            "succeeded": len(self.succeeded),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }

    def to_dict(self) -> Dict[str, Any]:
        def entry(r: JobResult) -> Dict[str, Any]:
            d: Dict[str, Any] = {"path": str(r.path), "status": r.status}
            if isinstance(r, Succeeded):
                d.update(
                    output=str(r.output_path),
                    bytes_in=r.bytes_in,
                    bytes_written=r.bytes_written,
                    elapsed_s=round(r.elapsed_s, 3),
                )
                if r.removal_errors:
                    d["removal_errors"] = list(r.removal_errors)
            elif isinstance(r, Skipped):
                d["reason"] = r.reason
            else:
                d.update(error_kind=r.error_kind.value, message=r.message)
            return d

        return {
            "root": str(self.root),
            "dry_run": self.dry_run,
            "interrupted": self.interrupted,
            "counts": self.counts(),
            "input_bytes": self.input_bytes,
            "output_bytes": self.output_bytes,
            "elapsed_s": round(self.elapsed_s, 3),
            "results": [entry(r) for r in self.results],
        }
