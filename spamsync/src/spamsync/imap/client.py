"""Lease-based IMAP connection manager.

What:
  Wrap the third-party ``imapclient`` library with the session lifecycle the
  sync engines rely on: lazy connect, forced reconnect after a fixed lease,
  exclusive mailbox selection, UID searches, size-capped bulk downloads into a
  scratch directory, server-side moves and highest-UID lookups.

Why:
  Long-lived IMAP sessions go stale in ways that are hard to detect (silent NAT
  drops, servers that stop delivering updates). Reconnecting on a timer,
  independently of observed liveness, keeps the daemon healthy without a
  heartbeat protocol. Centralising the session also guarantees that the three
  trackers of an account never select mailboxes concurrently.

How:
  A :class:`ConnectionManager` holds at most one ``IMAPClient``. Every public
  operation goes through :meth:`ConnectionManager._session`, which honours the
  reconnect lease, and through :meth:`ConnectionManager._guarded`, which maps
  library errors onto the typed errors of this module and drops the session
  when the transport itself failed. Downloads are written to disk by a small
  worker pool gated by an :class:`InFlightCounter`.

Interfaces:
  :class:`ConnectionManager`, :class:`InFlightCounter`,
  :class:`FetchedMessage`, :func:`flatten_mailbox_tree` and the
  :class:`ImapError` hierarchy.

Invariants & Safety:
  - All message operations run in UID mode.
  - At most one mailbox is selected at a time; switching closes the previous
    selection first.
  - ``fetch_messages`` returns only after every scheduled write finished, so
    callers never move or delete files that are still being written.
  - Oversized messages are never written and never reported as accepted.
"""
from __future__ import annotations

import contextlib
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from ..config.schema import ImapSettings
from ..utils.ids import MailboxIdentity
from ..utils.logging import get_logger


FETCH_CHUNK_SIZE = 25
WRITE_WORKERS = 4


class ImapError(Exception):
    """Base class for IMAP failures surfaced by :class:`ConnectionManager`."""


class ImapConnectionError(ImapError, ConnectionError):
    """Raised when the handshake or the login fails."""


class SearchError(ImapError):
    """Raised when a UID search cannot be executed."""


class FetchError(ImapError):
    """Raised when a bulk download fails midway.

    Files already written to the destination directory are not guaranteed to be
    consistent and must be discarded by the caller.
    """


class MoveError(ImapError):
    """Raised when a server-side move is rejected."""


class EmptyMailboxError(ImapError):
    """Raised when a mailbox holds no message to derive a highest UID from."""


class InFlightCounter:
    """Count outstanding background writes and wait for them to drain.

    What:
      A thread-safe counter with a :meth:`wait_idle` join barrier.

    Why:
      Message bodies are written by worker threads while the next chunk is
      still downloading. The caller may only resolve the batch once every write
      has landed on disk.

    How:
      A :class:`threading.Condition` guards the counter; :meth:`release` wakes
      waiters when it drops back to zero.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0

    @property
    def pending(self) -> int:
        with self._cond:
            return self._count

    def acquire(self) -> None:
        with self._cond:
            self._count += 1

    def release(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._count = 0
                self._cond.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


@dataclass(frozen=True)
class FetchedMessage:
    """A message body materialised into a scratch directory."""

    uid: int
    size: int
    path: Path


@dataclass
class _MailboxNode:
    delimiter: Optional[str]
    children: Dict[str, "_MailboxNode"] = field(default_factory=dict)


def _decode(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if value is not None else ""


def build_mailbox_tree(listing: Iterable[Tuple[object, object, object]]) -> Dict[str, _MailboxNode]:
    """Rebuild the server hierarchy from a flat ``LIST`` response.

    What:
      Turn ``(flags, delimiter, name)`` tuples into nested nodes keyed by path
      segment, preserving server order.

    Why:
      Some servers omit non-selectable parents from ``LIST``; splitting every
      name on its delimiter recreates them so the flattened view stays complete.

    Args:
      listing: Tuples as returned by ``IMAPClient.list_folders``.

    Returns:
      Ordered mapping of top-level mailbox names to nodes.
    """

    tree: Dict[str, _MailboxNode] = {}
    for _flags, raw_delimiter, raw_name in listing:
        delimiter = _decode(raw_delimiter) or None
        name = _decode(raw_name)
        parts = name.split(delimiter) if delimiter else [name]
        level = tree
        for part in parts:
            node = level.get(part)
            if node is None:
                node = _MailboxNode(delimiter=delimiter)
                level[part] = node
            level = node.children
    return tree


def flatten_mailbox_tree(tree: Dict[str, _MailboxNode]) -> List[str]:
    """Flatten ``tree`` depth-first, parents before their children."""

    paths: List[str] = []

    def _visit(name: str, node: _MailboxNode, path: str) -> None:
        paths.append(path)
        for child_name, child in node.children.items():
            _visit(child_name, child, f"{path}{node.delimiter or ''}{child_name}")

    for name, node in tree.items():
        _visit(name, node, name)
    return paths


def _chunks(items: Sequence[int], size: int) -> Iterator[Sequence[int]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ConnectionManager:
    """Own the single live IMAP session of an account.

    What:
      Lazily connects, renews a reconnect lease, and exposes the mailbox
      operations used by the sync engines and the inbox classifier.

    Why:
      The engines must not care whether the session is fresh, stale or dead; a
      single owner makes reconnection and mailbox switching deterministic.

    How:
      Stores the :class:`~spamsync.config.schema.ImapSettings`, the current
      ``IMAPClient`` (or ``None``), the selected mailbox, and the monotonic
      deadline after which the session is force-closed.
    """

    def __init__(
        self,
        settings: ImapSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Prepare the manager without touching the network.

        Args:
          settings: Validated IMAP configuration.
          clock: Monotonic time source, injectable for lease tests.
        """
        self._settings = settings
        self._clock = clock
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[str] = None
        self._exists: Optional[int] = None
        self._reconnect_at = self._next_deadline()
        self._log = get_logger("imap")

    @property
    def settings(self) -> ImapSettings:
        return self._settings

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    @property
    def reconnect_at(self) -> float:
        return self._reconnect_at

    def identity(self, mailbox: str) -> MailboxIdentity:
        """Return the checkpoint identity of ``mailbox`` on this account."""

        return MailboxIdentity(
            host=self._settings.host,
            port=self._settings.port,
            user=self._settings.user,
            mailbox=mailbox,
        )

    # Session lifecycle ---------------------------------------------------
    def _next_deadline(self) -> float:
        return self._clock() + self._settings.reconnect_after_s

    def connect(self) -> IMAPClient:
        """Return the live session, establishing it when necessary.

        What:
          Opens the transport, logs in, enables TCP keepalive when configured,
          and renews the reconnect lease.

        Why:
          Idempotence lets every operation call :meth:`connect` without
          bookkeeping; the first call after a forced disconnect transparently
          rebuilds the session.

        Returns:
          The connected ``IMAPClient``.

        Raises:
          ImapConnectionError: When the handshake or the login fails.
        """

        if self._client is not None:
            return self._client

        settings = self._settings
        self._log.info("imap_connecting", host=settings.host, port=settings.port, tls=settings.tls)
        try:
            client = IMAPClient(settings.host, port=settings.port, ssl=settings.tls, timeout=settings.timeout)
        except (IMAPClientError, OSError) as exc:
            raise ImapConnectionError(f"Unable to reach {settings.host}:{settings.port}: {exc}") from exc
        try:
            client.login(settings.user, settings.password)
        except (LoginError, IMAPClientError, OSError) as exc:
            with contextlib.suppress(IMAPClientError, OSError):
                client.shutdown()
            raise ImapConnectionError(f"Login failed for {settings.user}@{settings.host}: {exc}") from exc

        if settings.keepalive:
            self._enable_keepalive(client)
        self._client = client
        self._selected = None
        self._exists = None
        self._reconnect_at = self._next_deadline()
        self._log.info("imap_connected", host=settings.host, user=settings.user)
        return client

    def _enable_keepalive(self, client: IMAPClient) -> None:
        try:
            client.socket().setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        except OSError as exc:
            self._log.warning("imap_keepalive_unavailable", error=str(exc))

    def disconnect(self, graceful: bool = True) -> None:
        """Close the session.

        What:
          ``graceful`` sends ``LOGOUT`` and waits for the reply; otherwise the
          transport is shut down immediately. Either way the handle is cleared
          so the next operation reconnects.

        Args:
          graceful: Whether to log out politely.
        """

        client = self._client
        if client is None:
            return
        self._client = None
        self._selected = None
        self._exists = None
        try:
            if graceful:
                client.logout()
            else:
                client.shutdown()
        except (IMAPClientError, OSError) as exc:
            self._log.warning("imap_disconnect_failed", graceful=graceful, error=str(exc))

    def _session(self) -> IMAPClient:
        """Return a usable session, honouring the reconnect lease.

        The lease is a deliberate simplification: sessions are recycled after a
        fixed time whether or not they still work.
        """

        if self._client is not None and self._clock() >= self._reconnect_at:
            self._log.info(
                "imap_lease_expired",
                reconnect_after_ms=self._settings.reconnect_after_ms,
            )
            self.disconnect(graceful=False)
        return self.connect()

    @contextlib.contextmanager
    def _guarded(self, error_type: type[ImapError], operation: str) -> Iterator[None]:
        """Translate library failures into ``error_type``.

        Transport-level failures (aborts, socket errors, timeouts) also drop the
        session so the next request reconnects; protocol ``NO``/``BAD`` replies
        leave it intact.
        """

        try:
            yield
        except ImapError:
            raise
        except (IMAPClientAbortError, OSError) as exc:
            self._log.error("imap_transport_error", operation=operation, error=str(exc))
            self.disconnect(graceful=False)
            raise error_type(f"{operation} failed: {exc}") from exc
        except IMAPClientError as exc:
            self._log.error("imap_command_failed", operation=operation, error=str(exc))
            raise error_type(f"{operation} failed: {exc}") from exc

    # Mailbox helpers -----------------------------------------------------
    def list_mailbox_paths(self) -> List[str]:
        """Return every mailbox path, depth-first with parents first."""

        client = self._session()
        with self._guarded(ImapError, "list"):
            listing = client.list_folders()
        return flatten_mailbox_tree(build_mailbox_tree(listing))

    def open_mailbox(self, path: str, *, refresh: bool = False) -> None:
        """Select ``path``, closing any other selected mailbox first.

        Selecting the mailbox that is already open is a no-op unless
        ``refresh`` is set, in which case it is selected again so the
        ``EXISTS`` count is current.
        """

        client = self._session()
        if self._selected == path and not refresh:
            return
        with self._guarded(ImapError, f"select {path}"):
            if self._selected is not None and self._selected != path:
                client.close_folder()
                self._selected = None
                self._exists = None
            response = client.select_folder(path)
        exists = (response or {}).get(b"EXISTS")
        self._exists = int(exists) if exists is not None else None
        self._selected = path

    def close_mailbox(self) -> None:
        if self._client is None or self._selected is None:
            return
        client = self._client
        with self._guarded(ImapError, f"close {self._selected}"):
            client.close_folder()
        self._selected = None
        self._exists = None

    def search_uids(self, criteria: List[object]) -> List[int]:
        """Run a UID search in the selected mailbox.

        Returns:
          Matching UIDs in ascending order.
        """

        client = self._session()
        with self._guarded(SearchError, f"search {criteria!r}"):
            uids = client.search(criteria)
        return sorted(int(uid) for uid in uids)

    def download_messages(
        self,
        uids: Sequence[int],
        max_size: int,
        dest_dir: Path | str,
    ) -> List[FetchedMessage]:
        """Download ``uids`` of the selected mailbox into ``dest_dir``.

        What:
          Probes ``RFC822.SIZE`` for the whole batch, skips oversized or vanished
          messages, then fetches bodies in chunks and writes each one to
          ``dest_dir/<uid>``.

        Why:
          Probing sizes first keeps oversized attachments off the wire
          entirely; chunking bounds the memory held by a single ``FETCH``.

        How:
          Writes are submitted to a :class:`~concurrent.futures.ThreadPoolExecutor`
          and tracked by an :class:`InFlightCounter`. The method waits on the
          counter before returning, then re-raises the first write failure.

        Args:
          uids: Candidate UIDs.
          max_size: Largest accepted message size in bytes.
          dest_dir: Scratch directory owned by the caller.

        Returns:
          The materialised messages, in ascending UID order.

        Raises:
          FetchError: On transport or filesystem failures.
        """

        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        if not dest.is_dir():
            raise FetchError(f"{dest} is not a directory")
        ordered = sorted(set(int(uid) for uid in uids))
        if not ordered:
            return []

        client = self._session()
        accepted: List[Tuple[int, int]] = []
        with self._guarded(FetchError, "size probe"):
            sizes = client.fetch(ordered, ["RFC822.SIZE"])
        for uid in ordered:
            size = sizes.get(uid, {}).get(b"RFC822.SIZE")
            if size is None:
                self._log.warning("imap_message_vanished", uid=uid)
            elif int(size) > max_size:
                self._log.warning("imap_message_too_large", uid=uid, size=int(size), max_size=max_size)
            else:
                accepted.append((uid, int(size)))

        in_flight = InFlightCounter()
        futures = []
        with ThreadPoolExecutor(max_workers=WRITE_WORKERS) as pool:
            for chunk in _chunks([uid for uid, _ in accepted], FETCH_CHUNK_SIZE):
                with self._guarded(FetchError, "body fetch"):
                    response = client.fetch(list(chunk), ["BODY.PEEK[]"])
                for uid in chunk:
                    body = response.get(uid, {}).get(b"BODY[]")
                    if body is None:
                        self._log.warning("imap_message_vanished", uid=uid)
                        continue
                    in_flight.acquire()
                    futures.append(pool.submit(self._write_body, in_flight, uid, body, dest / str(uid)))
            in_flight.wait_idle()

        fetched: List[FetchedMessage] = []
        for future in futures:
            try:
                fetched.append(future.result())
            except OSError as exc:
                raise FetchError(f"Unable to store message: {exc}") from exc
        fetched.sort(key=lambda message: message.uid)
        self._log.info("imap_dumped", count=len(fetched), bytes=sum(m.size for m in fetched))
        return fetched

    @staticmethod
    def _write_body(in_flight: InFlightCounter, uid: int, body: bytes, path: Path) -> FetchedMessage:
        try:
            path.write_bytes(body)
            return FetchedMessage(uid=uid, size=len(body), path=path)
        finally:
            in_flight.release()

    def fetch_messages(self, uids: Sequence[int], max_size: int, dest_dir: Path | str) -> List[int]:
        """Download ``uids`` and return the accepted UIDs, ascending."""

        return [message.uid for message in self.download_messages(uids, max_size, dest_dir)]

    def dump_mailbox(
        self,
        path: str,
        lower: int,
        upper: int,
        max_size: int,
        dest_dir: Path | str,
    ) -> List[int]:
        """Open ``path`` and download every UID in ``[lower, upper]``.

        Servers may answer a range beyond the highest UID with the last
        message, so search results are clipped to the window.
        """

        self._log.info("imap_dumping", mailbox=path, lower=lower, upper=upper, dest=str(dest_dir))
        self.open_mailbox(path)
        uids = [uid for uid in self.search_uids(["UID", f"{lower}:{upper}"]) if lower <= uid <= upper]
        return self.fetch_messages(uids, max_size, dest_dir)

    def move_messages(self, uids: Sequence[int] | int, target: str, *, source: Optional[str] = None) -> None:
        """Move ``uids`` server-side to ``target``.

        Servers without the ``MOVE`` capability get ``COPY``, ``\\Deleted`` and
        an expunge instead, restricted to ``uids`` when ``UIDPLUS`` is offered.

        Args:
          uids: A UID or a sequence of UIDs in the selected (or ``source``)
            mailbox.
          target: Destination mailbox path.
          source: Mailbox to open first, when not already selected.

        Raises:
          MoveError: When the server rejects the move.
        """

        if source is not None:
            self.open_mailbox(source)
        client = self._session()
        messages = [uids] if isinstance(uids, int) else list(uids)
        with self._guarded(MoveError, f"move to {target}"):
            if client.has_capability("MOVE"):
                client.move(messages, target)
                return
            client.copy(messages, target)
            client.delete_messages(messages)
            if client.has_capability("UIDPLUS"):
                client.uid_expunge(messages)
            else:
                client.expunge()

    def get_highest_uid(self, path: str) -> int:
        """Return the UID of the newest message of ``path``.

        The mailbox is selected again first so its ``EXISTS`` count is fresh.
        An empty mailbox is reported without the wildcard fetch, which some
        servers reject with ``BAD`` when there is nothing to match ``*``.

        Raises:
          EmptyMailboxError: When ``EXISTS`` is zero or the wildcard fetch
            yields no attributes.
        """

        self.open_mailbox(path, refresh=True)
        if self._exists == 0:
            raise EmptyMailboxError(f"Mailbox {path} does not contain any message")
        client = self._session()
        with self._guarded(ImapError, f"highest uid of {path}"):
            response = client.fetch("*", ["UID"])
        if not response:
            raise EmptyMailboxError(f"Mailbox {path} does not contain any message")
        return max(int(uid) for uid in response)
