"""Tests for the command line front-end."""

import json
import signal
import threading
from unittest.mock import patch

import pytest

from romcomp import cli
from romcomp.backends import BackendRegistry
from romcomp.tool_check import ToolStatus

from conftest import WRITE_CHD, fake_backend, make_disc


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr("romcomp.config.DEFAULT_CONFIG_PATH", tmp_path / "no-config.toml")
    monkeypatch.delenv("ROMCOMP_WORKERS", raising=False)


def _fake_registry(cfg, **_kw):
    return BackendRegistry(cue_bin=fake_backend(WRITE_CHD))


def test_compress_end_to_end(tmp_path):
    roms = tmp_path / "roms"
    make_disc(roms)
    summary = tmp_path / "summary.json"
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        rc = cli.main(["compress", str(roms), "--workers", "1", "--summary-json", str(summary)])
    assert rc == cli.EXIT_OK
    assert (roms / "game.chd").exists()
    assert (roms / "game.cue").exists()
    data = json.loads(summary.read_text())
    assert data["counts"]["succeeded"] == 1


def test_compress_exit_code_ignores_unit_failures(tmp_path):
    roms = tmp_path / "roms"
    make_disc(roms)
    (roms / "game.bin").unlink()
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        rc = cli.main(["compress", str(roms)])
    assert rc == cli.EXIT_OK


def test_compress_remove_and_dry_run(tmp_path):
    roms = tmp_path / "roms"
    make_disc(roms)
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        rc = cli.main(["compress", str(roms), "--remove", "--dry-run"])
    assert rc == cli.EXIT_OK
    assert sorted(p.name for p in roms.iterdir()) == ["game.bin", "game.cue"]


@pytest.mark.parametrize(
    "extra",
    [
        ["--flatten"],
        ["--workers", "0"],
    ],
)
def test_compress_fatal_config(tmp_path, extra):
    make_disc(tmp_path / "roms")
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        rc = cli.main(["compress", str(tmp_path / "roms"), *extra])
    assert rc == cli.EXIT_FATAL_CONFIG


def test_compress_missing_location(tmp_path):
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        assert cli.main(["compress", str(tmp_path / "nope")]) == cli.EXIT_FATAL_CONFIG


def test_compress_without_any_tool(tmp_path):
    make_disc(tmp_path / "roms")
    with patch("romcomp.cli.BackendRegistry.from_settings", return_value=BackendRegistry()):
        rc = cli.main(["compress", str(tmp_path / "roms")])
    assert rc == cli.EXIT_FATAL_CONFIG


def test_signal_handlers_are_restored(tmp_path):
    before = signal.getsignal(signal.SIGINT)
    make_disc(tmp_path / "roms")
    with patch("romcomp.cli.BackendRegistry.from_settings", side_effect=_fake_registry):
        cli.main(["compress", str(tmp_path / "roms")])
    assert signal.getsignal(signal.SIGINT) is before


def test_stop_handler_sets_event():
    stop = threading.Event()
    restore = cli._install_stop_handlers(stop)
    try:
        handler = signal.getsignal(signal.SIGINT)
        handler(signal.SIGINT, None)
        assert stop.is_set()
        assert signal.getsignal(signal.SIGINT) is signal.SIG_DFL
    finally:
        restore()


def test_sniff_prints_kinds(tmp_path, capsys):
    make_disc(tmp_path)
    (tmp_path / "rom.v64").write_bytes(b"\x37\x80\x40\x12" + bytes(60))
    assert cli.main(["sniff", str(tmp_path)]) == cli.EXIT_OK
    out = capsys.readouterr().out.splitlines()
    rows = {line.split("\t")[0].rsplit("/", 1)[-1]: line.split("\t")[1:] for line in out}
    assert rows["game.cue"] == ["CueBin"]
    assert rows["game.bin"] == ["Unknown"]
    assert rows["rom.v64"] == ["N64Rom", "v64"]


def test_preflight(monkeypatch):
    def probe(executable, *, light=True):
        if executable == "chdman":
            return ToolStatus(name=executable, available=True, path="/usr/bin/chdman", version="chdman 0.261")
        return ToolStatus(name=executable, available=False, error=f"{executable} not found in PATH")

    monkeypatch.setattr("romcomp.cli.probe_tool", probe)
    assert cli.main(["preflight"]) == cli.EXIT_OK
    assert cli.main(["--log-level", "ERROR", "preflight"]) == cli.EXIT_OK

    monkeypatch.setattr(
        "romcomp.cli.probe_tool",
        lambda executable, *, light=True: ToolStatus(name=executable, available=False),
    )
    assert cli.main(["preflight"]) == cli.EXIT_PREFLIGHT_FAILED


def test_write_config(tmp_path, capsys):
    target = tmp_path / "cfg" / "config.toml"
    assert cli.main(["--config", str(target), "--write-config"]) == cli.EXIT_OK
    assert target.exists()
    assert "keep_original = true" in target.read_text()
