"""spamsync.core.sync

What:
  Drive the checkpointed, batched synchronisation of one mailbox. A
  :class:`MailboxSyncEngine` computes the next UID window from its persisted
  cursor, downloads the window into a scratch directory, hands the batch to an
  injected processing strategy, and advances the cursor.

Why:
  The spam trainer, the ham trainer and the inbox classifier only differ in
  what they do with a batch. Keeping the window arithmetic, the download, the
  scratch lifecycle and the checkpoint discipline in a single engine means the
  resumability guarantees hold for every mailbox without per-role copies.

How:
  - ``track`` runs one round and never raises for steady-state errors; it
    returns a :class:`TrackerState` instead.
  - Strategies call back into :meth:`MailboxSyncEngine.process_all` (advance
    once the whole batch succeeded) or :meth:`MailboxSyncEngine.process_single`
    (advance after every item whatever its outcome).
  - The cursor only moves forward; :meth:`MailboxSyncEngine.advance` persists
    every step through the :class:`~spamsync.config.checkpoint_store.CheckpointStore`.

Interfaces:
  - :class:`UidWindow`, :class:`TrackerState` data holders.
  - :class:`ProcessingStrategy` protocol.
  - :class:`MailboxSyncEngine`.

Invariants & Safety:
  - Persisted checkpoints are monotonically non-decreasing.
  - After a successful round the cursor never exceeds the highest UID observed
    at the start of the round.
  - The scratch directory is removed on every exit path of ``track``.
"""
from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from ..config.checkpoint_store import CheckpointStore
from ..imap.client import ConnectionManager, EmptyMailboxError, ImapError
from ..utils.logging import get_logger


@dataclass(frozen=True)
class UidWindow:
    """UID range considered by one round.

    Attributes:
      lower: First UID after the persisted cursor.
      upper: Last UID of the batch lookahead.
      highest: Highest UID present in the mailbox when the round started.
    """

    lower: int
    upper: int
    highest: int

    @classmethod
    def after(cls, last_uid: int, batch_size: int, highest: int) -> "UidWindow":
        return cls(lower=last_uid + 1, upper=last_uid + batch_size, highest=highest)

    @property
    def target(self) -> int:
        return min(self.upper, self.highest)


@dataclass(frozen=True)
class TrackerState:
    """Outcome of a ``track`` round.

    ``done`` signals that the backlog is drained; ``failed`` that the round hit
    an error and did not complete.
    """

    done: bool = False
    failed: bool = False
    window: Optional[UidWindow] = None


class ProcessingStrategy(Protocol):
    def process(
        self,
        engine: "MailboxSyncEngine",
        window: UidWindow,
        uids: List[int],
        scratch_dir: Path,
    ) -> None: ...


BatchCallback = Callable[[List[int], Path], None]
ItemCallback = Callable[[int, int, Path], None]


class MailboxSyncEngine:
    """Incremental synchroniser for a single mailbox.

    What:
      Owns the cursor (``last_uid``) of one mailbox and runs rounds against it.

    Why:
      Processing a bounded window per round keeps memory and scratch usage
      predictable, while the persisted cursor makes the work resumable across
      restarts.

    How:
      The checkpoint key is the mailbox fingerprint derived from the
      connection settings. Missing checkpoints are bootstrapped with ``0`` and
      written immediately so operators can find and edit them.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        mailbox: str,
        strategy: ProcessingStrategy,
        checkpoints: CheckpointStore,
        *,
        max_message_size: int,
        batch_size: int,
        scratch_root: Optional[Path | str] = None,
        name: Optional[str] = None,
    ):
        """Bind the engine to ``mailbox`` and load its checkpoint.

        Args:
          connection: Shared connection manager of the account.
          mailbox: Mailbox path to synchronise.
          strategy: Batch processor invoked once per round.
          checkpoints: Cursor persistence backend.
          max_message_size: Largest message size, in bytes, that is downloaded.
          batch_size: Width of the UID lookahead.
          scratch_root: Parent directory for scratch directories; the system
            temporary directory when omitted.
          name: Role name used in log records; defaults to ``mailbox``.

        Raises:
          ValueError: If ``mailbox`` is blank or the sizes are not positive.
        """
        if not mailbox or not mailbox.strip():
            raise ValueError("mailbox path must not be empty")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if max_message_size <= 0:
            raise ValueError("max_message_size must be positive")
        self._connection = connection
        self._mailbox = mailbox
        self._strategy = strategy
        self._checkpoints = checkpoints
        self._max_message_size = max_message_size
        self._batch_size = batch_size
        self._scratch_root = str(scratch_root) if scratch_root is not None else None
        self._name = name or mailbox
        self._log = get_logger(f"sync.{self._name}")
        self._checkpoint_id = connection.identity(mailbox).fingerprint()
        self._state = TrackerState()

        stored = checkpoints.get(self._checkpoint_id)
        if stored is None:
            stored = 0
            checkpoints.set(self._checkpoint_id, stored)
            self._log.info("checkpoint_bootstrapped", mailbox=mailbox, checkpoint=self._checkpoint_id)
        self._last_uid = stored

    @property
    def mailbox(self) -> str:
        return self._mailbox

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def checkpoint_id(self) -> str:
        return self._checkpoint_id

    @property
    def last_uid(self) -> int:
        return self._last_uid

    @property
    def state(self) -> TrackerState:
        return self._state

    def advance(self, uid: int) -> bool:
        """Move the cursor forward to ``uid`` and persist it.

        Returns:
          ``True`` when the cursor moved, ``False`` when ``uid`` is not ahead.
        """

        if uid <= self._last_uid:
            return False
        self._checkpoints.set(self._checkpoint_id, uid)
        self._last_uid = uid
        return True

    def get_uid_range(self, last_uid: int) -> UidWindow:
        """Compute the window following ``last_uid``.

        Raises:
          EmptyMailboxError: When the mailbox holds no message.
        """

        highest = self._connection.get_highest_uid(self._mailbox)
        return UidWindow.after(last_uid, self._batch_size, highest)

    def _download(self, window: UidWindow, scratch_dir: Path) -> Optional[List[int]]:
        try:
            return self._connection.dump_mailbox(
                self._mailbox,
                window.lower,
                window.upper,
                self._max_message_size,
                scratch_dir,
            )
        except ImapError as exc:
            self._log.error("dump_failed", mailbox=self._mailbox, error=str(exc))
            return None

    def track(self) -> TrackerState:
        """Run one synchronisation round.

        What:
          Downloads the next window, processes it, and advances the cursor to
          ``min(upper, highest)`` when processing succeeded.

        Why:
          The orchestrator calls ``track`` in a loop and uses ``done`` to
          decide whether to keep draining this mailbox or move on.

        Returns:
          The :class:`TrackerState` of the round, also kept on :attr:`state`.
        """

        scratch_dir = Path(tempfile.mkdtemp(prefix="mail", dir=self._scratch_root))
        try:
            self._state = self._round(scratch_dir)
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)
        return self._state

    def _round(self, scratch_dir: Path) -> TrackerState:
        try:
            window = self.get_uid_range(self._last_uid)
        except EmptyMailboxError:
            self._log.info("mailbox_empty", mailbox=self._mailbox)
            return TrackerState(done=True)
        except ImapError as exc:
            self._log.error("uid_range_failed", mailbox=self._mailbox, error=str(exc))
            return TrackerState(failed=True)

        self._log.info(
            "round_started",
            mailbox=self._mailbox,
            lower=window.lower,
            upper=window.upper,
            highest=window.highest,
        )
        uids = self._download(window, scratch_dir)
        if uids is None:
            # Nothing reached the strategy, so the cursor stays where it was.
            return TrackerState(failed=True, window=window)
        failed = False
        try:
            self._strategy.process(self, window, uids, scratch_dir)
        except Exception as exc:
            failed = True
            self._log.error("process_failed", mailbox=self._mailbox, error=str(exc), last_uid=self._last_uid)
        else:
            self.advance(window.target)

        done = self._last_uid >= window.highest
        self._log.info("round_finished", mailbox=self._mailbox, last_uid=self._last_uid, done=done, failed=failed)
        return TrackerState(done=done, failed=failed, window=window)

    def process_all(self, uids: Sequence[int], scratch_dir: Path, callback: BatchCallback) -> None:
        """Process the batch with one callback call.

        The cursor advances to the last UID only when ``callback`` returns;
        exceptions propagate to ``track`` and leave the cursor untouched. An
        empty batch is a no-op.
        """

        batch = sorted(uids)
        if not batch:
            return
        callback(batch, Path(scratch_dir))
        self.advance(batch[-1])

    def process_single(self, uids: Sequence[int], scratch_dir: Path, callback: ItemCallback) -> None:
        """Process the batch one UID at a time.

        What:
          Calls ``callback(index, uid, path)`` for each UID in ascending order,
          where ``path`` is the downloaded file of that UID.

        Why:
          Per-item work (scoring, moving) must not be replayed after a crash in
          the middle of a batch. Advancing after each item bounds the replay to
          the item in progress.

        How:
          Item failures are logged and the item is skipped for good; the cursor
          is advanced and persisted in a ``finally`` block so it moves even
          when the failure escapes.
        """

        root = Path(scratch_dir)
        for index, uid in enumerate(sorted(uids)):
            try:
                callback(index, uid, root / str(uid))
            except Exception as exc:
                self._log.error("item_failed", mailbox=self._mailbox, uid=uid, error=str(exc))
            finally:
                self.advance(uid)
