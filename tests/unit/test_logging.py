"""
Module: tests/unit/test_logging.py

What:
    Validate the structured JSON logger used by every component.

Why:
    The daemon logs IMAP settings and oracle output; credentials and message
    bodies must never reach the log stream.

Interfaces:
    test_log_line_schema, test_sensitive_keys_are_redacted,
    test_redaction_reaches_into_lists
"""

import io
import json

from spamsync.utils.logging import REDACTED, JsonLogger


def test_log_line_schema():
    stream = io.StringIO()
    JsonLogger(stream=stream, component="sync.inbox").info("round_finished", last_uid=12, done=True)
    payload = json.loads(stream.getvalue())
    assert payload["lvl"] == "INFO"
    assert payload["msg"] == "round_finished"
    assert payload["component"] == "sync.inbox"
    assert payload["last_uid"] == 12
    assert "ts" in payload


def test_sensitive_keys_are_redacted():
    """
    What:
        ``password``, ``credentials`` and ``body`` are masked, even nested.
    """
    stream = io.StringIO()
    logger = JsonLogger(stream=stream, component="imap")
    logger.warning("imap_settings", password="hunter2", imap={"credentials": "x", "host": "h"}, body=b"raw")
    payload = json.loads(stream.getvalue())
    assert payload["lvl"] == "WARN"
    assert payload["password"] == REDACTED
    assert payload["imap"] == {"credentials": REDACTED, "host": "h"}
    assert payload["body"] == REDACTED


def test_redaction_reaches_into_lists():
    stream = io.StringIO()
    JsonLogger(stream=stream, component="cli").info("accounts", accounts=[{"user": "a", "password": "p"}])
    payload = json.loads(stream.getvalue())
    assert payload["accounts"] == [{"user": "a", "password": REDACTED}]
