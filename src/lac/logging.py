from __future__ import annotations

import sys
import uuid
from typing import Any, Dict, Optional

from loguru import logger

_CONSOLE_FORMAT = "<level>{level: <8}</level> | <green>{time:HH:mm:ss}</green> | <cyan>{message}</cyan>"


def configure_logging(level: str = "INFO", json_path: Optional[str] = None) -> None:
    """Configure loguru for human console output and an optional JSON lines file.

    level: console log level (DEBUG, INFO, WARNING, ...).
    json_path: if given, every record at DEBUG and above is also written there
    as serialized JSON, one object per line.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_CONSOLE_FORMAT, enqueue=True, backtrace=False, diagnose=False)
    if json_path:
        logger.add(json_path, level="DEBUG", serialize=True, enqueue=True)


def bind_run(run_id: Optional[str] = None) -> str:
    rid = run_id or str(uuid.uuid4())
    # configure() applies the extra field to every logger, including worker threads.
    logger.configure(extra={"run_id": rid})
    return rid


def log_event(action: str, **fields: Any) -> None:
    clean: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    msg = clean.pop("msg", action)
    level = clean.pop("level", "INFO").upper()
    logger.bind(action=action, **clean).log(level, msg)


def truncate(text: str, max_len: int = 4096, max_lines: int = 20) -> str:
    """Keep the tail of a long string (ffmpeg puts the real error last)."""
    if not text:
        return ""
    lines = text.strip().splitlines()
    if len(lines) > max_lines:
        text = "\n".join(["... (truncated)"] + lines[-max_lines:])
    if len(text) > max_len:
        text = "... (truncated)\n" + text[-max_len:]
    return text
