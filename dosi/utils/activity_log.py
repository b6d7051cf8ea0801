"""Append-only activity log.

Every state change is written as one line::

    [2024-05-01T12:00:00.000Z] [IP: 10.0.0.7] Client ABC123 adopted into group fleet-a.

Lines go through the ``dosi.activity`` logger, so they also reach whatever
console handlers the process has configured.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

ACTIVITY_LOGGER = "dosi.activity"

_logger = logging.getLogger(ACTIVITY_LOGGER)


def _single_line(text: str) -> str:
    return "".join(c if c.isprintable() else c.encode("unicode_escape").decode("ascii") for c in text)


class ActivityFormatter(logging.Formatter):
    """Formats one record as one line; control characters in the message are escaped."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        stamp = ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        ip = getattr(record, "client_ip", None) or "N/A"
        return f"[{stamp}] [IP: {_single_line(str(ip))}] {_single_line(record.getMessage())}"


def configure_activity_log(path: Path) -> None:
    """Point the activity logger at ``path`` (append mode). Safe to call again."""
    for handler in list(_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            _logger.removeHandler(handler)
            handler.close()

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(ActivityFormatter())
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)


def log_activity(client_ip: Optional[str], message: str) -> None:
    _logger.info("%s", message, extra={"client_ip": client_ip or "N/A"})


def read_activity_log(path: Path, lines: int = 200) -> list[str]:
    """Return the last ``lines`` lines of the log, oldest first."""
    if not path.exists():
        return []
    with path.open(encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
