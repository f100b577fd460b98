"""Error kinds and exceptions raised along the dispatch pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNREADABLE_INPUT = "UnreadableInput"
    MISSING_TRACK = "MissingTrack"
    UNKNOWN_BACKEND = "UnknownBackend"
    BACKEND_ERROR = "BackendError"
    TIMEOUT = "Timeout"
    VERIFICATION_FAILED = "VerificationFailed"
    FINALIZE_FAILED = "FinalizeFailed"
    FATAL_CONFIG = "FatalConfig"


class RomcompError(Exception):
    """Base exception for all romcomp errors."""

    kind: ErrorKind = ErrorKind.BACKEND_ERROR

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class UnreadableInputError(RomcompError):
    """I/O failure while probing or parsing an input file."""

    kind = ErrorKind.UNREADABLE_INPUT


class MissingTrackError(RomcompError):
    """A cue sheet references files that do not exist."""

    kind = ErrorKind.MISSING_TRACK

    def __init__(self, cue_path: str, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            f"Cue sheet '{cue_path}' references missing file(s): {', '.join(self.missing)}",
            "Check the FILE lines of the cue sheet against the files on disk",
        )


class UnknownBackendError(RomcompError):
    """No backend is available for a format."""

    kind = ErrorKind.UNKNOWN_BACKEND


class BackendError(RomcompError):
    """The backend process failed to start or exited with a failure code."""

    kind = ErrorKind.BACKEND_ERROR

    def __init__(self, message: str, returncode: int | None = None, diagnostics: str = "") -> None:
        self.returncode = returncode
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self) -> str:
        if self.diagnostics:
            return f"{self.message}\n{self.diagnostics}"
        return self.message


class BackendTimeoutError(BackendError):
    """The backend process exceeded its time bound and was killed."""

    kind = ErrorKind.TIMEOUT


class VerificationFailedError(RomcompError):
    """The produced artifact is missing, empty or implausible."""

    kind = ErrorKind.VERIFICATION_FAILED


class FinalizeError(RomcompError):
    """The verified artifact could not be moved to its final path."""

    kind = ErrorKind.FINALIZE_FAILED


class FatalConfigError(RomcompError):
    """Startup-time configuration problem; aborts the run before any unit."""

    kind = ErrorKind.FATAL_CONFIG
