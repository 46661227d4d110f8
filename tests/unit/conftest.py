"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Make ``tests/unit`` importable and expose a :class:`ConnectionManager` backed
  by :class:`FakeImapBackend`, a manual clock and a temporary checkpoint store.

Why:
  Most unit tests drive the sync engine end to end. A consistent fake keeps them
  independent from network resources while still exercising the real
  connection manager code.

How:
  Monkeypatch ``spamsync.imap.client.IMAPClient`` with the backend factory so
  every (re)connect hands out the same in-memory server.

Interfaces:
  :func:`backend`, :func:`clock`, :func:`imap_settings`, :func:`connection`,
  :func:`checkpoints` (pytest fixtures).
"""

import sys
from pathlib import Path

import pytest

from spamsync.config.checkpoint_store import JsonCheckpointStore
from spamsync.config.schema import ImapSettings
from spamsync.imap.client import ConnectionManager

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeClock, FakeImapBackend

MAILBOXES = ["INBOX", "Training/Spam", "Training/Ham", "Junk"]


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    """Return the fake server and route ``IMAPClient`` construction to it."""

    fake = FakeImapBackend(MAILBOXES)
    monkeypatch.setattr("spamsync.imap.client.IMAPClient", fake.factory)
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def imap_settings() -> ImapSettings:
    return ImapSettings(host="imap.example.org", port=993, user="alice@example.org", password="secret")


@pytest.fixture
def connection(backend: FakeImapBackend, clock: FakeClock, imap_settings: ImapSettings) -> ConnectionManager:
    """Yield a connection manager talking to ``backend``."""

    manager = ConnectionManager(imap_settings, clock=clock)
    yield manager
    manager.disconnect()


@pytest.fixture
def checkpoints(tmp_path: Path) -> JsonCheckpointStore:
    return JsonCheckpointStore(tmp_path / "state")
