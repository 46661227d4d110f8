"""Stable fingerprints for IMAP accounts and mailboxes.

What:
  Derive the deterministic identifiers used as checkpoint keys: one for the
  account ``(host, port, user)`` and one for a mailbox inside that account.

Why:
  Checkpoint files must survive restarts and config reloads. Keying them on a
  hash of the connection coordinates keeps file names short, filesystem-safe
  and free of credentials, while still changing whenever the operator points
  the daemon at a different account or folder.

How:
  Concatenate the coordinates and hash them with MD5. The mailbox fingerprint
  hashes the account fingerprint together with the mailbox path, so two
  accounts sharing a folder name never collide.

Interfaces:
  :class:`MailboxIdentity`, :func:`account_fingerprint`.

Invariants & Safety:
  - The digest format is fixed; changing it would orphan every persisted
    checkpoint and trigger a full re-scan.
  - MD5 is used as a naming function only, never for integrity.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass


def account_fingerprint(host: str, port: int, user: str) -> str:
    """Return the hex digest identifying an IMAP account."""

    data = f"{host}{port}{user}"
    return hashlib.md5(data.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class MailboxIdentity:
    """Coordinates of one tracked mailbox.

    What:
      Immutable tuple of ``host``, ``port``, ``user`` and ``mailbox`` path.

    How:
      :meth:`fingerprint` chains :func:`account_fingerprint` with the mailbox
      path and hashes the result again.

    Attributes:
      host: IMAP hostname.
      port: IMAP port.
      user: Login name.
      mailbox: Server-side mailbox path (delimiter-joined).
    """

    host: str
    port: int
    user: str
    mailbox: str

    def fingerprint(self) -> str:
        account = account_fingerprint(self.host, self.port, self.user)
        return hashlib.md5(f"{account}{self.mailbox}".encode("utf-8")).hexdigest()
