from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from tomlkit import dumps as toml_dumps


DEFAULT_CONFIG_PATH = Path("~/.config/romcomp/config.toml").expanduser()
ENV_PREFIX = "ROMCOMP_"


class RomcompSettings(BaseSettings):
    """Settings for a compression run.

    Each layer overrides the one before it: field defaults, the TOML file,
    ROMCOMP_* environment variables, then command line flags.
    """

    # Logging
    log_level: str = Field(default="INFO", description="Minimum level shown on stderr")
    log_json: Optional[str] = Field(default=None, description="Also write every record as JSON lines to this file")
    summary_json: Optional[str] = Field(default=None, description="Path for the JSON run summary")

    # Batch behaviour
    workers: Optional[int] = Field(default=None, ge=1, description="Parallel units; None=auto (CPU cores)")
    keep_original: bool = Field(default=True, description="Keep source files after a committed conversion")
    flatten: bool = Field(
        default=False,
        description="Move outputs up while they are the only file in their directory (requires removal)",
    )
    timeout_s: float = Field(default=6 * 3600, gt=0, description="Per-unit backend time limit in seconds")
    diag_lines: int = Field(default=40, ge=1, description="Lines of backend output kept for diagnostics")

    # Per-format switches
    enable_cue_bin: bool = Field(default=True, description="Compress cue/bin disc images to CHD")
    enable_raw_iso: bool = Field(default=True, description="Compress ISO 9660 images")
    enable_wii_iso: bool = Field(default=True, description="Compress Wii/GameCube images to RVZ")
    enable_n64_rom: bool = Field(default=True, description="Normalize and zip N64 cartridge dumps")
    iso_target: Literal["cso", "chd"] = Field(default="cso", description="Backend for ISO 9660 images")

    # Backend executables and options
    chdman_path: str = Field(default="chdman", description="chdman executable (mame-tools)")
    maxcso_path: str = Field(default="maxcso", description="maxcso executable")
    dolphin_tool_path: str = Field(default="dolphin-tool", description="dolphin-tool executable")
    rom64_path: str = Field(default="rom64", description="rom64 executable")
    chd_extra_args: List[str] = Field(default_factory=list, description="Extra chdman createcd arguments")
    cso_extra_args: List[str] = Field(default_factory=list, description="Extra maxcso arguments")
    rvz_block_size: int = Field(default=131072, gt=0, description="RVZ block size in bytes")
    rvz_compression: str = Field(default="zstd", description="RVZ compression method")
    rvz_level: int = Field(default=5, description="RVZ compression level")

    # Where these settings were read from; never written back
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @staticmethod
    def _read_toml(path: Path) -> Dict[str, Any]:
        # A missing file is the normal first-run case; unknown keys are dropped by extra="ignore"
        if not path.is_file():
            return {}
        return tomllib.loads(path.read_text(encoding="utf-8"))

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "RomcompSettings":
        """Build the effective settings for one run.

        `overrides` holds command line values; None means the flag was not
        given and the lower layers decide.
        """
        source = config_path or DEFAULT_CONFIG_PATH
        merged = cls._read_toml(source)
        # pydantic-settings ranks init kwargs above env, so env is merged by hand
        env_only = cls()
        merged.update(env_only.model_dump(include=set(env_only.model_fields_set)))
        merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
        settings = cls(**merged)
        settings.config_path = source
        return settings

    def max_workers(self, cpu_count: Optional[int]) -> int:
        return self.workers or (cpu_count or 1)

    def to_toml(self) -> str:
        return toml_dumps(self.model_dump(exclude={"config_path"}, exclude_none=True))

    def write(self, path: Optional[Path] = None) -> Path:
        """Persist these settings as TOML and return the file written."""
        target = path or self.config_path or DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        return target


# Settings that also exist as command line flags
CLI_KEYS = frozenset(
    {
        "log_level",
        "log_json",
        "summary_json",
        "workers",
        "keep_original",
        "flatten",
        "timeout_s",
        "diag_lines",
        "enable_cue_bin",
        "enable_raw_iso",
        "enable_wii_iso",
        "enable_n64_rom",
        "iso_target",
    }
)


def cli_overrides_from_args(args: Any) -> Dict[str, Any]:
    """Pick settings out of a parsed argparse namespace, None values included."""
    return {k: getattr(args, k) for k in CLI_KEYS if hasattr(args, k)}
