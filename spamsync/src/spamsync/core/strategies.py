"""Processing strategies plugged into :class:`~spamsync.core.sync.MailboxSyncEngine`.

What:
  - :class:`TrainerStrategy` submits a whole training batch to ``sa-learn``.
  - :class:`InboxClassifier` scores inbox messages one by one, moves confident
    spam to the spam mailbox, and feeds confident ham back to the trainer.

Why:
  Training is a single bulk external call, so it advances the cursor only once
  the call was made. Classification has side effects per message (moves), so
  it advances after every message to avoid replaying them after a crash.

Invariants & Safety:
  - ``min_spam_score`` must be strictly greater than ``max_ham_score``; the
    classifier refuses to be built otherwise, before touching any I/O.
  - A message that is moved or left uncertain is never used as ham.
"""
from __future__ import annotations

from pathlib import Path
from typing import List

from ..imap.client import ConnectionManager, MoveError
from ..utils.logging import get_logger
from .oracles import ClassifierOracle, TrainerError, TrainerOracle, TrainMode
from .sync import MailboxSyncEngine, UidWindow


class TrainerStrategy:
    """Learn every downloaded message of the batch as ``mode``."""

    def __init__(self, trainer: TrainerOracle, mode: TrainMode):
        self.trainer = trainer
        self.mode = TrainMode(mode)

    def process(self, engine: MailboxSyncEngine, window: UidWindow, uids: List[int], scratch_dir: Path) -> None:
        engine.process_all(uids, scratch_dir, self._train)

    def _train(self, uids: List[int], scratch_dir: Path) -> None:
        # A non-zero exit is logged by the oracle and counts as submitted.
        self.trainer.train(scratch_dir, self.mode)


class SpamTrainer(TrainerStrategy):
    def __init__(self, trainer: TrainerOracle):
        super().__init__(trainer, TrainMode.SPAM)


class HamTrainer(TrainerStrategy):
    def __init__(self, trainer: TrainerOracle):
        super().__init__(trainer, TrainMode.HAM)


class InboxClassifier:
    """Score inbox messages and act on the score.

    What:
      Applies, in order: ``score >= min_spam_score`` moves the message to the
      spam mailbox; an unknown score or ``score > max_ham_score`` discards the
      local copy; anything else is kept and learned as ham after the loop.

    Why:
      Only messages SpamAssassin is confident about are acted upon. The band
      between the two thresholds is left alone so the Bayes database is not
      reinforced with doubtful examples.

    How:
      Uses :meth:`MailboxSyncEngine.process_single` so every scored message
      advances the cursor, then trains on whatever files remain in the scratch
      directory.
    """

    def __init__(
        self,
        classifier: ClassifierOracle,
        trainer: TrainerOracle,
        connection: ConnectionManager,
        spam_mailbox: str,
        *,
        min_spam_score: float = 5.0,
        max_ham_score: float = 2.5,
    ):
        """Validate the thresholds and keep the collaborators.

        Raises:
          ValueError: If ``min_spam_score <= max_ham_score`` or the spam
            mailbox is blank.
        """
        if min_spam_score <= max_ham_score:
            raise ValueError(
                f"min_spam_score ({min_spam_score}) must be greater than max_ham_score ({max_ham_score})"
            )
        if not spam_mailbox or not spam_mailbox.strip():
            raise ValueError("spam mailbox path must not be empty")
        self.classifier = classifier
        self.trainer = trainer
        self.connection = connection
        self.spam_mailbox = spam_mailbox
        self.min_spam_score = min_spam_score
        self.max_ham_score = max_ham_score
        self._log = get_logger("sync.inbox")

    def process(self, engine: MailboxSyncEngine, window: UidWindow, uids: List[int], scratch_dir: Path) -> None:
        retained: List[int] = []

        def _classify(index: int, uid: int, path: Path) -> None:
            if self._classify(engine, uid, path):
                retained.append(uid)

        engine.process_single(uids, scratch_dir, _classify)
        if not retained:
            return
        try:
            self.trainer.train(scratch_dir, TrainMode.HAM)
        except TrainerError as exc:
            self._log.error("ham_training_failed", count=len(retained), error=str(exc))

    def _classify(self, engine: MailboxSyncEngine, uid: int, path: Path) -> bool:
        """Apply the decision table to one message; return whether to keep it."""

        result = self.classifier.score(path)
        if result.is_known and result.score >= self.min_spam_score:
            self._log.info("spam_detected", uid=uid, score=str(result))
            path.unlink(missing_ok=True)
            try:
                self.connection.move_messages(uid, self.spam_mailbox, source=engine.mailbox)
            except MoveError as exc:
                self._log.error("move_failed", uid=uid, target=self.spam_mailbox, error=str(exc))
            return False
        if not result.is_known or result.score > self.max_ham_score:
            self._log.info("uncertain_skipped", uid=uid, score=str(result))
            path.unlink(missing_ok=True)
            return False
        self._log.info("ham_retained", uid=uid, score=str(result))
        return True
