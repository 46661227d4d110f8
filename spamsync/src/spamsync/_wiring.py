"""Helpers assembling the runtime components from a validated configuration.

What:
  Build the connection manager, the checkpoint store, the SpamAssassin oracles,
  the three mailbox sync engines and the :class:`AccountTracker` for the CLI.

Why:
  Keeping construction out of :mod:`spamsync.cli` lets the commands stay short
  and lets tests assemble the exact same object graph with fakes swapped in.

How:
  Pure functions taking a :class:`~spamsync.config.schema.RuntimeConfig`.
  Construction performs no network I/O; the connection is opened lazily by the
  first tracker round.

Interfaces:
  ``ROLES``, ``Components``, ``mailbox_for_role``, ``build_connection``,
  ``build_checkpoint_store``, ``build_components``, ``checkpoint_snapshot``,
  ``identity_for_role``.

Invariants & Safety:
  - Threshold and path invariants are enforced by the schema before any
    component is created; the inbox classifier re-checks the thresholds.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .config.checkpoint_store import JsonCheckpointStore
from .config.schema import RuntimeConfig
from .core.oracles import ClassifierOracle, TrainerOracle
from .core.orchestrator import AccountTracker
from .core.strategies import HamTrainer, InboxClassifier, SpamTrainer
from .core.sync import MailboxSyncEngine
from .imap.client import ConnectionManager
from .utils.ids import MailboxIdentity


ROLES = ("spam", "ham", "inbox")


@dataclass
class Components:
    """Object graph driving one account."""

    connection: ConnectionManager
    checkpoints: JsonCheckpointStore
    classifier: ClassifierOracle
    trainer: TrainerOracle
    spam: MailboxSyncEngine
    ham: MailboxSyncEngine
    inbox: MailboxSyncEngine
    tracker: AccountTracker

    def engines(self) -> Dict[str, MailboxSyncEngine]:
        return {"spam": self.spam, "ham": self.ham, "inbox": self.inbox}


def mailbox_for_role(runtime: RuntimeConfig, role: str) -> str:
    """Return the mailbox path configured for ``role``.

    Raises:
      KeyError: If ``role`` is not one of :data:`ROLES`.
    """

    if role not in ROLES:
        raise KeyError(role)
    return getattr(runtime.paths, role)


def build_connection(runtime: RuntimeConfig) -> ConnectionManager:
    return ConnectionManager(runtime.imap)


def build_checkpoint_store(runtime: RuntimeConfig) -> JsonCheckpointStore:
    return JsonCheckpointStore(Path(runtime.state_dir))


def build_components(
    runtime: RuntimeConfig,
    *,
    connection: Optional[ConnectionManager] = None,
    classifier: Optional[ClassifierOracle] = None,
    trainer: Optional[TrainerOracle] = None,
    sleep=None,
) -> Components:
    """Assemble every component needed by ``run`` and ``once``.

    Args:
      runtime: Validated configuration.
      connection: Pre-built connection manager, mainly for tests.
      classifier: Pre-built scorer, defaults to ``spamc`` from the config.
      trainer: Pre-built trainer, defaults to ``sa-learn`` from the config.
      sleep: Sleep function handed to the :class:`AccountTracker`.

    Returns:
      The populated :class:`Components`.
    """

    sa = runtime.spamassassin
    connection = connection or build_connection(runtime)
    checkpoints = build_checkpoint_store(runtime)
    classifier = classifier or ClassifierOracle(sa.spamc)
    trainer = trainer or TrainerOracle(sa.sa_learn)

    def _engine(role: str, strategy) -> MailboxSyncEngine:
        return MailboxSyncEngine(
            connection,
            mailbox_for_role(runtime, role),
            strategy,
            checkpoints,
            max_message_size=runtime.max_mail_size_in_bytes,
            batch_size=sa.batch_size,
            name=role,
        )

    spam = _engine("spam", SpamTrainer(trainer))
    ham = _engine("ham", HamTrainer(trainer))
    inbox = _engine(
        "inbox",
        InboxClassifier(
            classifier,
            trainer,
            connection,
            runtime.paths.spam,
            min_spam_score=sa.min_spam_score,
            max_ham_score=sa.max_ham_score,
        ),
    )
    tracker_kwargs = {"interval_s": runtime.track_interval_s}
    if sleep is not None:
        tracker_kwargs["sleep"] = sleep
    tracker = AccountTracker(spam, ham, inbox, **tracker_kwargs)
    return Components(
        connection=connection,
        checkpoints=checkpoints,
        classifier=classifier,
        trainer=trainer,
        spam=spam,
        ham=ham,
        inbox=inbox,
        tracker=tracker,
    )


def checkpoint_snapshot(runtime: RuntimeConfig) -> Dict[str, Dict[str, object]]:
    """Return the persisted cursor of every role without touching the server.

    Returns:
      Mapping of role to ``{"mailbox", "checkpoint", "lastUid"}``; ``lastUid``
      is ``None`` for mailboxes that were never tracked.
    """

    store = build_checkpoint_store(runtime)
    snapshot: Dict[str, Dict[str, object]] = {}
    for role in ROLES:
        identity = identity_for_role(runtime, role)
        fingerprint = identity.fingerprint()
        snapshot[role] = {
            "mailbox": identity.mailbox,
            "checkpoint": fingerprint,
            "lastUid": store.get(fingerprint),
        }
    return snapshot


def identity_for_role(runtime: RuntimeConfig, role: str) -> MailboxIdentity:
    imap = runtime.imap
    return MailboxIdentity(host=imap.host, port=imap.port, user=imap.user, mailbox=mailbox_for_role(runtime, role))
