"""Facade for the IMAP integration layer.

What:
  Surface the :class:`~spamsync.imap.client.ConnectionManager` and its error
  hierarchy used by the sync engines for all IMAP interactions.

Invariants & Safety:
  - Consumers operate in UID mode only.
  - All IMAP operations go through :class:`ConnectionManager` to inherit the
    reconnect lease and exclusive mailbox selection.
"""

from .client import (
    ConnectionManager,
    EmptyMailboxError,
    FetchError,
    FetchedMessage,
    ImapConnectionError,
    ImapError,
    InFlightCounter,
    MoveError,
    SearchError,
)

__all__ = [
    "ConnectionManager",
    "EmptyMailboxError",
    "FetchError",
    "FetchedMessage",
    "ImapConnectionError",
    "ImapError",
    "InFlightCounter",
    "MoveError",
    "SearchError",
]
