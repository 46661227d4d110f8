"""
Module: tests/unit/test_orchestrator.py

What:
    Check the drain ordering and idle behaviour of :class:`AccountTracker`.

Why:
    Training must be drained before the inbox is classified, and the loop must
    neither spin on persistent failures nor die on unexpected exceptions.

How:
    Scripted tracker doubles return canned :class:`TrackerState` values and the
    ``sleep`` hook records requested pauses instead of sleeping.

Interfaces:
    ScriptedTracker, test_round_stops_at_first_backlog, test_round_reaches_inbox,
    test_start_sleeps_only_when_drained, test_start_survives_exceptions,
    test_failed_round_idles
"""

from spamsync.core.orchestrator import AccountTracker
from spamsync.core.sync import TrackerState


class ScriptedTracker:
    """Return the queued states in order, then keep repeating the last one."""

    def __init__(self, name, log, *states):
        self.name = name
        self.log = log
        self.states = list(states)

    def track(self):
        self.log.append(self.name)
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, BaseException):
            raise state
        return state


DONE = TrackerState(done=True)
BUSY = TrackerState(done=False)
FAILED = TrackerState(done=False, failed=True)


def _tracker(log, spam, ham, inbox, sleeps):
    return AccountTracker(
        ScriptedTracker("spam", log, *spam),
        ScriptedTracker("ham", log, *ham),
        ScriptedTracker("inbox", log, *inbox),
        interval_s=20,
        sleep=sleeps.append,
    )


def test_round_stops_at_first_backlog():
    log, sleeps = [], []
    tracker = _tracker(log, [BUSY], [DONE], [DONE], sleeps)
    assert tracker.run_round() is False
    assert log == ["spam"]


def test_round_reaches_inbox():
    log, sleeps = [], []
    tracker = _tracker(log, [DONE], [DONE], [BUSY], sleeps)
    assert tracker.run_round() is False
    assert log == ["spam", "ham", "inbox"]


def test_start_sleeps_only_when_drained():
    """
    What:
        Rounds with backlog chain immediately; a drained inbox sleeps for the
        configured interval.
    """
    log, sleeps = [], []
    tracker = _tracker(log, [BUSY, DONE], [DONE], [BUSY, DONE], sleeps)
    assert tracker.start(max_rounds=4) == 4
    assert log == ["spam", "spam", "ham", "inbox", "spam", "ham", "inbox", "spam", "ham", "inbox"]
    assert sleeps == [20, 20]


def test_start_survives_exceptions():
    log, sleeps = [], []
    tracker = _tracker(log, [RuntimeError("boom"), DONE], [DONE], [DONE], sleeps)
    assert tracker.start(max_rounds=2) == 2
    assert sleeps == [20, 20]


def test_failed_round_idles():
    """A failed tracker round pauses the loop instead of retrying at once."""

    log, sleeps = [], []
    tracker = _tracker(log, [FAILED, DONE], [DONE], [DONE], sleeps)
    tracker.start(max_rounds=1)
    assert log == ["spam"]
    assert sleeps == [20]
