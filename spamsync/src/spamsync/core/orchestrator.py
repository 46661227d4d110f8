"""Polling loop that drains the three trackers of an account.

What:
  :class:`AccountTracker` runs the spam trainer, then the ham trainer, then the
  inbox classifier, and sleeps once the inbox backlog is drained.

Why:
  Training before classifying means every inbox message is scored by a Bayes
  database that already knows about the latest user corrections.

How:
  ``run_round`` performs one pass and reports whether the loop should idle.
  ``start`` wraps it in a loop that logs and survives every exception, and that
  also idles after a failed round so a persistent failure does not spin.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from ..utils.logging import get_logger
from .sync import MailboxSyncEngine, TrackerState


class AccountTracker:
    """Sequence the trackers of one account forever."""

    def __init__(
        self,
        spam: MailboxSyncEngine,
        ham: MailboxSyncEngine,
        inbox: MailboxSyncEngine,
        *,
        interval_s: float,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.spam = spam
        self.ham = ham
        self.inbox = inbox
        self.interval_s = interval_s
        self._sleep = sleep
        self._log = get_logger("orchestrator")
        self._failed = False

    def _track(self, engine: MailboxSyncEngine) -> TrackerState:
        state = engine.track()
        if state.failed:
            self._failed = True
        return state

    def run_round(self) -> bool:
        """Run one pass over the trackers.

        A tracker that still has backlog ends the pass early so the next pass
        starts again from the spam trainer.

        Returns:
          ``True`` when the inbox is drained and the loop should sleep.
        """

        self._failed = False
        if not self._track(self.spam).done:
            return False
        if not self._track(self.ham).done:
            return False
        return self._track(self.inbox).done

    def start(self, max_rounds: Optional[int] = None) -> int:
        """Loop over :meth:`run_round` until ``max_rounds`` is reached.

        Args:
          max_rounds: Number of rounds to run; ``None`` loops forever.

        Returns:
          The number of rounds executed.
        """

        rounds = 0
        self._log.info("tracker_started", interval_s=self.interval_s)
        while max_rounds is None or rounds < max_rounds:
            rounds += 1
            try:
                idle = self.run_round()
            except Exception as exc:
                self._log.error("round_failed", round=rounds, error=str(exc))
                idle = True
            else:
                if self._failed:
                    idle = True
            if idle:
                self._log.debug("tracker_idle", sleep_s=self.interval_s)
                self._sleep(self.interval_s)
        return rounds
