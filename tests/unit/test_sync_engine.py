"""
Module: tests/unit/test_sync_engine.py

What:
    Exercise :class:`MailboxSyncEngine`: checkpoint bootstrap, window
    arithmetic, monotonic advance, both advance disciplines, scratch cleanup and
    resumption after a restart.

Why:
    The engine is what makes the daemon resumable. A regression either replays
    work (double training, double moves) or skips mail for good.

How:
    Engines run against the fake IMAP backend with a recording strategy; the
    ``scratch_root`` argument points at ``tmp_path`` so tests can assert the
    scratch directories are gone after every round.

Interfaces:
    RecordingStrategy, test_blank_mailbox_rejected, test_bootstrap_persists_zero,
    test_rounds_drain_backlog, test_oversized_never_reach_strategy,
    test_empty_mailbox_is_done, test_failed_batch_keeps_checkpoint,
    test_fetch_failure_keeps_checkpoint, test_process_single_skips_failures,
    test_process_single_crash_advances_to_attempted_uid, test_advance_is_monotonic,
    test_restart_resumes_from_checkpoint
"""

from pathlib import Path

import pytest

from fakes import IMAPClientAbortError
from spamsync.core.sync import MailboxSyncEngine, UidWindow


class RecordingStrategy:
    """
    What:
        Strategy double that records each batch and applies a configurable
        advance discipline.

    How:
        ``mode`` selects ``process_all`` or ``process_single``; ``item`` is the
        per-UID callback for the latter, ``error`` is raised by the former.
    """

    def __init__(self, mode="all", item=None, error=None):
        self.mode = mode
        self.item = item
        self.error = error
        self.batches = []
        self.scratch_dirs = []
        self.files = []

    def process(self, engine, window, uids, scratch_dir):
        self.batches.append((window, list(uids)))
        self.scratch_dirs.append(Path(scratch_dir))
        self.files.append(sorted(p.name for p in Path(scratch_dir).iterdir()))
        if self.mode == "all":
            engine.process_all(uids, scratch_dir, self._batch)
        else:
            engine.process_single(uids, scratch_dir, self.item)

    def _batch(self, uids, scratch_dir):
        if self.error is not None:
            raise self.error


class Crash(BaseException):
    """Simulates the process dying in the middle of a batch."""


def _engine(connection, checkpoints, strategy, tmp_path, mailbox="Training/Spam", batch_size=2, max_size=1000):
    scratch_root = tmp_path / "scratch"
    scratch_root.mkdir(exist_ok=True)
    return MailboxSyncEngine(
        connection,
        mailbox,
        strategy,
        checkpoints,
        max_message_size=max_size,
        batch_size=batch_size,
        scratch_root=scratch_root,
        name="spam",
    )


def _scratch_is_clean(tmp_path):
    return list((tmp_path / "scratch").iterdir()) == []


def test_blank_mailbox_rejected(connection, checkpoints):
    with pytest.raises(ValueError):
        MailboxSyncEngine(connection, "  ", RecordingStrategy(), checkpoints, max_message_size=10, batch_size=5)


def test_bootstrap_persists_zero(connection, checkpoints, backend, tmp_path):
    engine = _engine(connection, checkpoints, RecordingStrategy(), tmp_path)
    assert engine.last_uid == 0
    assert checkpoints.get(engine.checkpoint_id) == 0
    assert engine.checkpoint_id == connection.identity("Training/Spam").fingerprint()
    assert backend.connections == 0


def test_rounds_drain_backlog(connection, checkpoints, backend, tmp_path):
    """
    What:
        With three messages and a batch of two, the first round stops at UID 2
        (not done) and the second reaches UID 3 (done).

    Why:
        The orchestrator relies on ``done`` to keep draining a mailbox before
        moving on.
    """
    for _ in range(3):
        backend.add_message("Training/Spam")
    strategy = RecordingStrategy()
    engine = _engine(connection, checkpoints, strategy, tmp_path)

    first = engine.track()
    assert first.window == UidWindow(lower=1, upper=2, highest=3)
    assert (first.done, first.failed) == (False, False)
    assert engine.last_uid == 2
    assert checkpoints.get(engine.checkpoint_id) == 2

    second = engine.track()
    assert second.window == UidWindow(lower=3, upper=4, highest=3)
    assert second.done
    assert engine.last_uid == 3
    assert engine.state is second

    assert [uids for _, uids in strategy.batches] == [[1, 2], [3]]
    assert strategy.files == [["1", "2"], ["3"]]
    assert all(not path.exists() for path in strategy.scratch_dirs)
    assert _scratch_is_clean(tmp_path)


def test_oversized_never_reach_strategy(connection, checkpoints, backend, tmp_path):
    backend.add_message("Training/Spam", b"a" * 10)
    backend.add_message("Training/Spam", b"b" * 5000)
    backend.add_message("Training/Spam", b"c" * 10)
    strategy = RecordingStrategy()
    engine = _engine(connection, checkpoints, strategy, tmp_path, batch_size=5, max_size=100)

    state = engine.track()
    assert strategy.batches[0][1] == [1, 3]
    assert state.done
    assert engine.last_uid == 3

    # The oversized UID is behind the cursor now and never comes back.
    engine.track()
    assert all(2 not in uids for _, uids in strategy.batches)


def test_empty_mailbox_is_done(connection, checkpoints, tmp_path):
    strategy = RecordingStrategy()
    engine = _engine(connection, checkpoints, strategy, tmp_path)
    state = engine.track()
    assert state.done
    assert not state.failed
    assert strategy.batches == []
    assert engine.last_uid == 0
    assert _scratch_is_clean(tmp_path)


def test_failed_batch_keeps_checkpoint(connection, checkpoints, backend, tmp_path):
    """
    What:
        A failing ``process_all`` callback leaves the cursor untouched, marks
        the round failed and still removes the scratch directory.
    """
    backend.add_message("Training/Spam")
    engine = _engine(connection, checkpoints, RecordingStrategy(error=RuntimeError("sa-learn vanished")), tmp_path)
    state = engine.track()
    assert state.failed
    assert not state.done
    assert engine.last_uid == 0
    assert checkpoints.get(engine.checkpoint_id) == 0
    assert _scratch_is_clean(tmp_path)


def test_fetch_failure_keeps_checkpoint(connection, checkpoints, backend, tmp_path):
    backend.add_message("Training/Spam")
    strategy = RecordingStrategy()
    engine = _engine(connection, checkpoints, strategy, tmp_path)
    connection.open_mailbox("Training/Spam")
    backend.fail_next("search", IMAPClientAbortError("socket closed"))

    state = engine.track()
    assert state.failed
    assert strategy.batches == []
    assert engine.last_uid == 0

    state = engine.track()
    assert state.done
    assert engine.last_uid == 1


def test_process_single_skips_failures(connection, checkpoints, backend, tmp_path):
    """
    What:
        A failing item is logged and skipped; the cursor still advances past it.
    """
    for _ in range(3):
        backend.add_message("Training/Spam")
    seen = []

    def item(index, uid, path):
        seen.append((index, uid, path.name, path.exists()))
        if uid == 2:
            raise RuntimeError("spamc exploded")

    engine = _engine(connection, checkpoints, RecordingStrategy("single", item=item), tmp_path, batch_size=5)
    state = engine.track()
    assert seen == [(0, 1, "1", True), (1, 2, "2", True), (2, 3, "3", True)]
    assert state.done and not state.failed
    assert engine.last_uid == 3


def test_process_single_crash_advances_to_attempted_uid(connection, checkpoints, backend, tmp_path):
    """
    What:
        When the process dies while handling the second of three messages, the
        checkpoint already points at that message and the scratch directory is
        removed.

    Why:
        Per-item work such as moving spam must not be replayed after a restart.
    """
    for _ in range(3):
        backend.add_message("Training/Spam")

    def item(index, uid, path):
        if uid == 2:
            raise Crash()

    engine = _engine(connection, checkpoints, RecordingStrategy("single", item=item), tmp_path, batch_size=5)
    with pytest.raises(Crash):
        engine.track()
    assert checkpoints.get(engine.checkpoint_id) == 2
    assert _scratch_is_clean(tmp_path)


def test_advance_is_monotonic(connection, checkpoints, tmp_path):
    engine = _engine(connection, checkpoints, RecordingStrategy(), tmp_path)
    assert engine.advance(5) is True
    assert engine.advance(3) is False
    assert engine.advance(5) is False
    assert engine.last_uid == 5
    assert checkpoints.get(engine.checkpoint_id) == 5


def test_process_all_empty_batch_is_noop(connection, checkpoints, tmp_path):
    engine = _engine(connection, checkpoints, RecordingStrategy(), tmp_path)
    called = []
    engine.process_all([], tmp_path, lambda uids, path: called.append(uids))
    assert called == []
    assert engine.last_uid == 0


def test_restart_resumes_from_checkpoint(connection, checkpoints, backend, tmp_path):
    """
    What:
        A new engine over the same store picks up the persisted cursor and
        starts its window at ``lastUid + 1``.
    """
    for _ in range(4):
        backend.add_message("Training/Spam")
    _engine(connection, checkpoints, RecordingStrategy(), tmp_path).track()

    strategy = RecordingStrategy()
    restarted = _engine(connection, checkpoints, strategy, tmp_path)
    assert restarted.last_uid == 2
    assert restarted.get_uid_range(restarted.last_uid) == UidWindow(lower=3, upper=4, highest=4)
    restarted.track()
    assert strategy.batches[0][1] == [3, 4]
