import json
from unittest.mock import MagicMock, patch

import pytest
from loguru import logger

from romcomp.logging import TRUNCATED, bind_run, configure, log_event, setup_json, truncate


@pytest.mark.parametrize("text", ["", "chdman: done"])
def test_truncate_leaves_small_output_alone(text):
    assert truncate(text) == text


def test_truncate_caps_characters():
    out = truncate("x" * 5000, max_len=1000)
    assert out.startswith(TRUNCATED)
    assert out.endswith("x" * 1000)
    assert len(out) == len(TRUNCATED) + 1 + 1000


def test_truncate_keeps_last_lines():
    stderr = "\n".join(f"progress {n}%" for n in range(30))
    out = truncate(stderr, max_lines=10).splitlines()
    assert out[0] == TRUNCATED
    assert out[1:] == [f"progress {n}%" for n in range(20, 30)]


@pytest.fixture
def bound():
    with patch("romcomp.logging.logger") as mocked:
        child = MagicMock()
        mocked.bind.return_value = child
        yield mocked, child


def test_log_event_drops_empty_fields(bound):
    mocked, child = bound
    log_event("commit", file="/roms/game.chd", bytes=None, backend="chdman")
    mocked.bind.assert_called_once_with(action="commit", file="/roms/game.chd", backend="chdman")
    child.log.assert_called_once_with("INFO", "commit")


def test_log_event_takes_message_and_level(bound):
    mocked, child = bound
    log_event("sniff", msg="game.cue: CueBin", level="debug", kind="CueBin")
    mocked.bind.assert_called_once_with(action="sniff", kind="CueBin")
    child.log.assert_called_once_with("DEBUG", "game.cue: CueBin")


def test_json_records_carry_run_id(tmp_path):
    target = tmp_path / "logs" / "run.jsonl"
    setup_json(target)
    run_id = bind_run("abc123")
    logger.info("hello")
    logger.complete()

    record = json.loads(target.read_text().splitlines()[0])["record"]
    assert run_id == "abc123"
    assert record["extra"]["run_id"] == "abc123"


def test_configure_writes_structured_events(tmp_path):
    log_file = tmp_path / "events.jsonl"
    configure("WARNING", str(log_file))
    log_event("unit", level="DEBUG", msg="game.cue: succeeded", status="succeeded")
    logger.complete()

    record = json.loads(log_file.read_text().splitlines()[-1])["record"]
    assert record["message"] == "game.cue: succeeded"
    assert record["extra"]["action"] == "unit"
    assert record["extra"]["status"] == "succeeded"
