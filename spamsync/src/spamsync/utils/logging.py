"""One-line JSON log records for the spamsync daemon.

What:
  Every component (``imap``, ``sync.<role>``, ``oracle.spamc``,
  ``oracle.sa-learn``, ``orchestrator``, ``cli``) writes its events through a
  :class:`JsonLogger` obtained from :func:`get_logger`.

Why:
  The daemon runs unattended. When a cursor stops moving the operator greps the
  journal for the mailbox and the event name, so records must be machine
  readable and must never carry the IMAP password or a message body.

How:
  Each record is a flat JSON object ``{"ts", "lvl", "msg", "component", ...}``
  followed by the caller's keyword fields, scrubbed of :data:`SENSITIVE_KEYS`
  at any nesting depth, and flushed immediately.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :data:`REDACTED`.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"password", "credentials", "body"})


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: REDACTED if key in SENSITIVE_KEYS else _scrub(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


@dataclass
class JsonLogger:
    """Write scrubbed JSON records for one component.

    ``stream`` defaults to the ``sys.stdout`` of the moment the logger is built,
    which is what systemd captures and what pytest's ``capsys`` replaces.
    """

    stream: Any = field(default_factory=lambda: sys.stdout)
    component: str = "spamsync"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Write one record.

        Args:
          level: Severity, upper-cased on output (``WARN`` rather than
            ``WARNING`` is the convention used by :meth:`warning`).
          message: Short snake_case event name, e.g. ``"round_finished"``.
          extra: Context fields; sensitive keys are masked, nested ones too.
        """

        record: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            record.update(_scrub(extra))
        self.stream.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
        self.stream.flush()

    def debug(self, message: str, **fields: Any) -> None:
        self.log("DEBUG", message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log("INFO", message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        """Skipped messages, reconnects and unknown scores land here."""

        self.log("WARN", message, extra=fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log("ERROR", message, extra=fields)


def get_logger(component: str) -> JsonLogger:
    """Return a logger tagged with ``component``."""

    return JsonLogger(component=component)
