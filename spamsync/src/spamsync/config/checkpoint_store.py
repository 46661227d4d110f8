"""Checkpoint persistence for tracked mailboxes.

What:
  Persist and read the ``lastUid`` cursor of every tracked mailbox, keyed by the
  mailbox fingerprint produced by :class:`~spamsync.utils.ids.MailboxIdentity`.

Why:
  The cursor is what makes the daemon resumable: after a crash or a reboot each
  tracker continues from ``lastUid + 1`` instead of re-training or re-scoring
  the whole mailbox. The sync engine only depends on the small
  :class:`CheckpointStore` protocol so the storage backend can change without
  touching the engine.

How:
  :class:`JsonCheckpointStore` keeps one JSON document per fingerprint under
  ``<state_dir>/.spamassassin``. Writes go to a temporary sibling first and are
  moved into place with :func:`os.replace`, so a crash never leaves a truncated
  checkpoint behind.

Interfaces:
  :class:`CheckpointStore` (``get``/``set``) and :class:`JsonCheckpointStore`.

Invariants & Safety:
  - ``get`` returns ``None`` for unknown or unreadable checkpoints; callers
    bootstrap them with ``0``.
  - Stored values are non-negative integers.
  - Each fingerprint is written by exactly one tracker.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional, Protocol


CHECKPOINT_SUBDIR = ".spamassassin"


class CheckpointStore(Protocol):
    def get(self, mailbox_id: str) -> Optional[int]: ...

    def set(self, mailbox_id: str, last_uid: int) -> None: ...


class JsonCheckpointStore:
    """Filesystem-backed :class:`CheckpointStore`.

    What:
      Maps a mailbox fingerprint to ``<root>/<fingerprint>`` holding
      ``{"lastUid": <int>}``.

    Why:
      A plain JSON file per mailbox is trivially inspectable and editable by an
      operator who wants to rewind a tracker.

    How:
      Creates the checkpoint directory eagerly, reads with :mod:`json`, and
      writes atomically through a temporary file.
    """

    def __init__(self, state_dir: Path | str):
        """Create a store rooted at ``<state_dir>/.spamassassin``.

        Args:
          state_dir: Runtime state directory from the configuration.
        """
        self._root = Path(state_dir) / CHECKPOINT_SUBDIR
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, mailbox_id: str) -> Path:
        return self._root / mailbox_id

    def get(self, mailbox_id: str) -> Optional[int]:
        """Return the persisted ``lastUid`` or ``None`` when absent.

        What:
          Reads the checkpoint document for ``mailbox_id``.

        Why:
          A corrupt file (for instance hand-edited into invalid JSON) must not
          prevent startup; it is reported as missing and the engine rewrites
          it.

        Returns:
          The stored cursor, or ``None`` when the file is missing or unusable.
        """
        try:
            payload = json.loads(self.path_for(mailbox_id).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        value = payload.get("lastUid") if isinstance(payload, dict) else None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None
        return value

    def set(self, mailbox_id: str, last_uid: int) -> None:
        """Persist ``last_uid`` for ``mailbox_id`` atomically.

        Raises:
          ValueError: If ``last_uid`` is negative.
        """
        if last_uid < 0:
            raise ValueError("lastUid must be >= 0")
        target = self.path_for(mailbox_id)
        tmp = target.with_name(f"{target.name}.tmp")
        tmp.write_text(json.dumps({"lastUid": int(last_uid)}, indent=4), encoding="utf-8")
        os.replace(tmp, target)
