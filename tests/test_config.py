"""Tests for settings layering and persistence."""

from argparse import Namespace

import pytest
import tomllib
from pydantic import ValidationError

from romcomp.config import RomcompSettings, cli_overrides_from_args


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("ROMCOMP_WORKERS", "ROMCOMP_ISO_TARGET", "ROMCOMP_KEEP_ORIGINAL", "ROMCOMP_TIMEOUT_S"):
        monkeypatch.delenv(key, raising=False)


def test_defaults(tmp_path):
    cfg = RomcompSettings.load(config_path=tmp_path / "absent.toml")
    assert cfg.keep_original is True
    assert cfg.flatten is False
    assert cfg.iso_target == "cso"
    assert cfg.workers is None
    assert cfg.max_workers(8) == 8
    assert cfg.max_workers(None) == 1
    assert cfg.config_path == tmp_path / "absent.toml"


def test_priority_file_env_cli(tmp_path, monkeypatch):
    cfg_file = tmp_path / "config.toml"
    cfg_file.write_text('workers = 2\niso_target = "chd"\ntimeout_s = 100.0\nunknown_key = 1\n')
    monkeypatch.setenv("ROMCOMP_WORKERS", "3")
    monkeypatch.setenv("ROMCOMP_TIMEOUT_S", "200")

    cfg = RomcompSettings.load(config_path=cfg_file, overrides={"timeout_s": 300.0, "workers": None})
    assert cfg.iso_target == "chd"  # file
    assert cfg.workers == 3  # env beats file
    assert cfg.timeout_s == 300.0  # CLI beats env
    assert cfg.max_workers(16) == 3


def test_validation(tmp_path):
    with pytest.raises(ValidationError):
        RomcompSettings(workers=0)
    with pytest.raises(ValidationError):
        RomcompSettings(timeout_s=0)
    with pytest.raises(ValidationError):
        RomcompSettings(iso_target="zip")
    bad = tmp_path / "bad.toml"
    bad.write_text("diag_lines = 0\n")
    with pytest.raises(ValidationError):
        RomcompSettings.load(config_path=bad)


def test_write_round_trip(tmp_path):
    target = tmp_path / "nested" / "config.toml"
    cfg = RomcompSettings(workers=4, keep_original=False, chd_extra_args=["--numprocessors", "2"])
    written = cfg.write(target)
    assert written == target
    data = tomllib.loads(target.read_text())
    assert data["workers"] == 4
    assert data["keep_original"] is False
    assert data["chd_extra_args"] == ["--numprocessors", "2"]
    assert "config_path" not in data
    assert "log_json" not in data  # None values are not persisted

    again = RomcompSettings.load(config_path=target)
    assert again.workers == 4
    assert again.keep_original is False


def test_cli_overrides_from_args():
    args = Namespace(workers=3, keep_original=None, iso_target="chd", location="/roms", cmd="compress")
    overrides = cli_overrides_from_args(args)
    assert overrides == {"workers": 3, "keep_original": None, "iso_target": "chd"}
