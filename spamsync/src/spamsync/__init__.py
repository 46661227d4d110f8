"""
Module: spamsync.__init__

What:
  Aggregate package exports for the spamsync daemon, which keeps an IMAP
  account's spam, ham and inbox mailboxes in sync with SpamAssassin.

Why:
  Entry points and tests import the subpackages by name; an explicit
  ``__all__`` keeps the public surface obvious.

Interfaces:
  - config: Runtime configuration schema, loader and checkpoint store.
  - core: Sync engine, strategies, SpamAssassin oracles and the polling loop.
  - imap: Lease-based IMAP connection manager.
  - utils: Structured logging and mailbox fingerprints.
"""

__all__ = [
    "config",
    "core",
    "imap",
    "utils",
]
