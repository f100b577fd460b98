"""Backend descriptors and the format -> backend registry.

The registry is built once at startup from settings and never mutated.
Lookup is an explicit branch per FormatKind so every supported format is
visible in one place.

Argument templates are lists; each element is rendered separately and the
process is spawned without a shell, so paths with spaces, quotes or shell
metacharacters reach the tool unchanged.
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from loguru import logger

from .config import RomcompSettings
from .errors import UnknownBackendError
from .formats import FormatKind
from .tool_check import ToolStatus, probe_tool

ZIP_MAGIC = b"PK\x03\x04"


@dataclass(frozen=True)
class Backend:
    name: str
    executable: str
    # Template arguments; placeholders: {input} {output} {output_dir} {output_name}
    args: Tuple[str, ...]
    extension: str
    success_codes: FrozenSet[int] = frozenset({0})
    # Exit codes the tool documents as failures; anything outside both sets
    # is also a failure but is reported as unexpected.
    failure_codes: FrozenSet[int] = frozenset({1})
    magic: Optional[bytes] = None
    magic_offset: int = 0
    # Pack the produced file into a deflated zip before committing.
    archive: bool = False
    # For N64 dumps already in native byte order the process is skipped.
    native_passthrough: bool = False

    @property
    def final_extension(self) -> str:
        return ".zip" if self.archive else self.extension

    def classify_exit(self, returncode: int) -> str:
        if returncode in self.success_codes:
            return "success"
        if returncode in self.failure_codes:
            return "failure"
        return "unexpected"


def render_args(backend: Backend, input_path: Path, output_path: Path) -> List[str]:
    """Concrete argv for one invocation."""
    values = {
        "{input}": str(input_path),
        "{output}": str(output_path),
        "{output_dir}": str(output_path.parent),
        "{output_name}": output_path.name,
    }
    argv = [backend.executable]
    for arg in backend.args:
        for key, val in values.items():
            arg = arg.replace(key, val)
        argv.append(arg)
    return argv


def cmd_to_string(cmd: List[str]) -> str:
    return " ".join(shlex.quote(p) for p in cmd)


def chd_backend(cfg: RomcompSettings) -> Backend:
    return Backend(
        name="chdman",
        executable=cfg.chdman_path,
        args=("createcd", *cfg.chd_extra_args, "-i", "{input}", "-o", "{output}"),
        extension=".chd",
        magic=b"MComprHD",
    )


def cso_backend(cfg: RomcompSettings) -> Backend:
    return Backend(
        name="maxcso",
        executable=cfg.maxcso_path,
        args=("--threads=1", *cfg.cso_extra_args, "-o", "{output}", "{input}"),
        extension=".cso",
        magic=b"CISO",
    )


def rvz_backend(cfg: RomcompSettings) -> Backend:
    return Backend(
        name="dolphin-tool",
        executable=cfg.dolphin_tool_path,
        args=(
            "convert",
            "-b",
            str(cfg.rvz_block_size),
            "-c",
            cfg.rvz_compression,
            "-f",
            "rvz",
            "-i",
            "{input}",
            "-l",
            str(cfg.rvz_level),
            "-o",
            "{output}",
        ),
        extension=".rvz",
        magic=b"RVZ\x01",
    )


def n64_backend(cfg: RomcompSettings) -> Backend:
    return Backend(
        name="rom64",
        executable=cfg.rom64_path,
        args=("convert", "{input}", "{output}"),
        extension=".z64",
        magic=b"\x80\x37\x12\x40",
        archive=True,
        native_passthrough=True,
    )


def enabled_backends(cfg: RomcompSettings) -> Dict[FormatKind, Optional[Backend]]:
    """Configured backend per convertible format; None where the format is switched off."""
    iso = chd_backend(cfg) if cfg.iso_target == "chd" else cso_backend(cfg)
    return {
        FormatKind.CUE_BIN: chd_backend(cfg) if cfg.enable_cue_bin else None,
        FormatKind.RAW_ISO: iso if cfg.enable_raw_iso else None,
        FormatKind.WII_ISO: rvz_backend(cfg) if cfg.enable_wii_iso else None,
        FormatKind.N64_ROM: n64_backend(cfg) if cfg.enable_n64_rom else None,
    }


@dataclass(frozen=True)
class BackendRegistry:
    cue_bin: Optional[Backend] = None
    raw_iso: Optional[Backend] = None
    wii_iso: Optional[Backend] = None
    n64_rom: Optional[Backend] = None
    # Why a slot is empty (disabled, tool missing).
    unavailable: Dict[FormatKind, str] = field(default_factory=dict)

    @classmethod
    def from_settings(
        cls,
        cfg: RomcompSettings,
        *,
        probe: Optional[Callable[[str], ToolStatus]] = probe_tool,
    ) -> "BackendRegistry":
        """Build the registry; with `probe`, backends whose tool is missing are dropped."""
        chosen: Dict[FormatKind, Optional[Backend]] = {}
        unavailable: Dict[FormatKind, str] = {}
        for kind, backend in enabled_backends(cfg).items():
            if backend is None:
                chosen[kind] = None
                unavailable[kind] = "format disabled"
                continue
            if probe is not None:
                st = probe(backend.executable)
                if not st.available:
                    reason = st.error or f"{backend.executable} not available"
                    logger.warning(f"{kind.value}: {reason}")
                    chosen[kind] = None
                    unavailable[kind] = reason
                    continue
                if st.path:
                    backend = replace(backend, executable=st.path)
            chosen[kind] = backend
        return cls(
            cue_bin=chosen[FormatKind.CUE_BIN],
            raw_iso=chosen[FormatKind.RAW_ISO],
            wii_iso=chosen[FormatKind.WII_ISO],
            n64_rom=chosen[FormatKind.N64_ROM],
            unavailable=unavailable,
        )

    def lookup(self, kind: FormatKind) -> Backend:
        """Backend for a format; raises UnknownBackendError when there is none."""
        if kind is FormatKind.CUE_BIN:
            backend = self.cue_bin
        elif kind is FormatKind.RAW_ISO:
            backend = self.raw_iso
        elif kind is FormatKind.WII_ISO:
            backend = self.wii_iso
        elif kind is FormatKind.N64_ROM:
            backend = self.n64_rom
        elif kind is FormatKind.CHD:
            raise UnknownBackendError("already compressed (CHD)")
        elif kind is FormatKind.UNKNOWN:
            raise UnknownBackendError("unrecognized format")
        else:  # pragma: no cover - new FormatKind without a branch
            raise AssertionError(f"unhandled format kind {kind!r}")
        if backend is None:
            raise UnknownBackendError(self.unavailable.get(kind, f"no backend configured for {kind.value}"))
        return backend

    def available(self) -> List[Tuple[FormatKind, Backend]]:
        out = []
        for kind in (FormatKind.CUE_BIN, FormatKind.RAW_ISO, FormatKind.WII_ISO, FormatKind.N64_ROM):
            try:
                out.append((kind, self.lookup(kind)))
            except UnknownBackendError:
                continue
        return out
