"""Synchronisation core: sync engine, strategies, SpamAssassin oracles and the loop.

Interfaces:
  ``MailboxSyncEngine``, ``UidWindow``, ``TrackerState``, ``TrainerStrategy``,
  ``SpamTrainer``, ``HamTrainer``, ``InboxClassifier``, ``ClassifierOracle``,
  ``TrainerOracle``, ``TrainMode``, ``TrainResult``, ``TrainerError``,
  ``ScoreResult``, ``AccountTracker``.
"""

from .oracles import (
    ClassifierOracle,
    ScoreResult,
    TrainerError,
    TrainerOracle,
    TrainMode,
    TrainResult,
)
from .orchestrator import AccountTracker
from .strategies import HamTrainer, InboxClassifier, SpamTrainer, TrainerStrategy
from .sync import MailboxSyncEngine, TrackerState, UidWindow

__all__ = [
    "AccountTracker",
    "ClassifierOracle",
    "HamTrainer",
    "InboxClassifier",
    "MailboxSyncEngine",
    "ScoreResult",
    "SpamTrainer",
    "TrackerState",
    "TrainerError",
    "TrainerOracle",
    "TrainerStrategy",
    "TrainMode",
    "TrainResult",
    "UidWindow",
]
