"""Expose the public utility surface for spamsync.

What:
  Re-export logging and identifier helpers that other packages may import
  without knowing the underlying module layout.

Interfaces:
  ``JsonLogger``, ``get_logger``, ``MailboxIdentity``, ``account_fingerprint``.

Invariants & Safety:
  - The module only re-exports side-effect-free callables to keep import order
    predictable.
"""

from .ids import MailboxIdentity, account_fingerprint
from .logging import JsonLogger, get_logger

__all__ = [
    "JsonLogger",
    "get_logger",
    "MailboxIdentity",
    "account_fingerprint",
]
