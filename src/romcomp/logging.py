"""Loguru sinks and structured events.

The console gets one human line per unit plus the run summary. The optional
JSON lines file receives every record down to DEBUG, including the events
sent through `log_event` (sniff, dispatch, commit, remove, unit, summary),
each tagged with the run id.
"""
from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}"
TRUNCATED = "... (truncated)"


def setup_console(level: str = "INFO") -> int:
    """Replace all sinks with a stderr sink; returns its handler id."""
    logger.remove()
    return logger.add(
        sys.stderr,
        level=level.upper(),
        format=CONSOLE_FORMAT,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


def setup_json(path: Union[str, Path], level: str = "DEBUG") -> int:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    return logger.add(str(target), level=level.upper(), serialize=True, enqueue=True)


def configure(level: str = "INFO", json_path: Optional[str] = None) -> None:
    setup_console(level)
    if json_path:
        setup_json(json_path)


def bind_run(run_id: Optional[str] = None) -> str:
    """Attach a run id to every record from now on."""
    rid = run_id or uuid.uuid4().hex[:12]
    logger.configure(extra={"run_id": rid})
    return rid


def log_event(action: str, **fields: Any) -> None:
    """Emit a structured event.

    `msg` and `level` are taken out of `fields`; None values are dropped so
    JSON records only carry keys that mean something for this event.
    """
    extra: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    message = extra.pop("msg", action)
    level = str(extra.pop("level", "INFO")).upper()
    logger.bind(action=action, **extra).log(level, message)


def truncate(text: str, max_len: int = 4096, max_lines: int = 20) -> str:
    """Keep the tail of backend output; tools print the cause of failure last."""
    if not text:
        return ""
    lines = text.strip().splitlines()
    if len(lines) > max_lines:
        lines = [TRUNCATED] + lines[-max_lines:]
    out = "\n".join(lines)
    if len(out) > max_len:
        out = TRUNCATED + "\n" + out[-max_len:]
    return out
