"""Thin adapter over ``imapclient`` exposing the endpoint the core consumes.

What:
  Wrap :class:`imapclient.IMAPClient` with the handful of operations mailwatch
  needs (login, select, capabilities, IDLE, fetch by sequence range, folder
  listing) and add push-callback dispatch for responses received during IDLE.

Why:
  ``imapclient`` returns unsolicited responses from ``idle_check`` instead of
  invoking callbacks. The watch loop is written against callbacks routed
  through channels, so this module owns the reader thread that turns those
  responses into typed events.

How:
  :class:`ImapEndpoint` keeps the connection in sequence-number mode
  (``use_uid=False``). :meth:`ImapEndpoint.idle` issues ``IDLE`` and returns an
  :class:`IdleHandle` whose reader thread polls ``idle_check`` and dispatches
  ``EXISTS``/``RECENT``/``EXPUNGE``/``FETCH`` responses to the registered
  handlers in arrival order.

Interfaces:
  :class:`ImapEndpoint`, :class:`IdleHandle`, :class:`SequenceRange`,
  :class:`RawFetchedMessage`, :class:`SelectData`, :class:`FolderStatus`.

Invariants & Safety:
  - The connection is never used by two call paths at once: while an
    :class:`IdleHandle` is open only its reader touches the socket, and
    :meth:`IdleHandle.close` joins the reader before ``DONE`` is sent.
  - Reader failures are not lost: they resurface from :meth:`IdleHandle.close`.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from ..errors import IdleError, IdleStage
from ..utils.logging import JsonLogger
from .events import FetchEvent, MailboxStatusEvent


FETCH_ITEMS: Tuple[bytes, ...] = (
    b"ENVELOPE",
    b"FLAGS",
    b"INTERNALDATE",
    b"RFC822.SIZE",
    b"BODY.PEEK[]",
)

ExpungeHandler = Callable[[int], None]
MailboxHandler = Callable[[MailboxStatusEvent], None]
FetchHandler = Callable[[FetchEvent], None]


@dataclass(frozen=True)
class SequenceRange:
    """Inclusive range of message sequence numbers.

    Raises:
      ValueError: When ``start`` is below 1 or ``stop`` precedes ``start``.
    """

    start: int
    stop: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"sequence numbers start at 1, got {self.start}")
        if self.stop < self.start:
            raise ValueError(f"empty sequence range {self.start}:{self.stop}")

    def __len__(self) -> int:
        return self.stop - self.start + 1

    def __iter__(self):
        return iter(range(self.start, self.stop + 1))

    def __contains__(self, seq: object) -> bool:
        return isinstance(seq, int) and self.start <= seq <= self.stop

    def __str__(self) -> str:
        return f"{self.start}:{self.stop}"


@dataclass(frozen=True)
class RawFetchedMessage:
    """One message as returned by a range fetch, before MIME decoding."""

    seq: int
    body: bytes
    flags: Tuple[bytes, ...] = ()
    internal_date: Optional[datetime] = None
    size: Optional[int] = None
    envelope: Any = None


@dataclass(frozen=True)
class SelectData:
    num_messages: int
    uid_next: Optional[int] = None


@dataclass(frozen=True)
class FolderStatus:
    """Folder as reported by ``LIST`` (and ``STATUS`` when requested)."""

    name: str
    delimiter: Optional[str] = None
    flags: Tuple[str, ...] = ()
    messages: Optional[int] = None
    unseen: Optional[int] = None


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _attribute_map(payload: Any) -> Dict[bytes, Any]:
    if isinstance(payload, dict):
        return dict(payload)
    items = list(payload or ())
    return {items[i]: items[i + 1] for i in range(0, len(items) - 1, 2)}


@dataclass
class _Handlers:
    expunge: Optional[ExpungeHandler] = None
    mailbox: Optional[MailboxHandler] = None
    fetch: Optional[FetchHandler] = None


class ImapEndpoint:
    """Connected IMAP session speaking sequence numbers.

    What:
      Owns one ``IMAPClient`` and exposes the operations used by
      :class:`~mailwatch.session.SessionManager`.

    Why:
      Keeps every ``imapclient`` detail (response shapes, byte keys, IDLE
      polling) out of the session and loop logic.

    How:
      Methods delegate to the client and normalise the results into the
      dataclasses defined above.
    """

    def __init__(self, client: IMAPClient, logger: JsonLogger, *, idle_check_seconds: float = 1.0):
        self._client = client
        self._logger = logger
        self._idle_check_seconds = idle_check_seconds
        self._handlers = _Handlers()

    @classmethod
    def dial(
        cls,
        host: str,
        port: int,
        *,
        ssl: bool,
        timeout: Optional[float],
        logger: JsonLogger,
        idle_check_seconds: float = 1.0,
    ) -> "ImapEndpoint":
        """Open the TCP/TLS connection to ``host:port``."""

        client = IMAPClient(host, port=port, use_uid=False, ssl=ssl, timeout=timeout)
        return cls(client, logger, idle_check_seconds=idle_check_seconds)

    @property
    def client(self) -> IMAPClient:
        return self._client

    def on_unilateral(
        self,
        *,
        expunge: Optional[ExpungeHandler] = None,
        mailbox: Optional[MailboxHandler] = None,
        fetch: Optional[FetchHandler] = None,
    ) -> None:
        """Register the push handlers invoked from the IDLE reader thread."""

        self._handlers = _Handlers(expunge=expunge, mailbox=mailbox, fetch=fetch)

    def login(self, username: str, password: str) -> None:
        self._client.login(username, password)

    def select(self, folder: str) -> SelectData:
        data = self._client.select_folder(folder)
        uid_next = data.get(b"UIDNEXT")
        return SelectData(
            num_messages=int(data.get(b"EXISTS", 0)),
            uid_next=int(uid_next) if uid_next is not None else None,
        )

    def capabilities(self) -> FrozenSet[str]:
        return frozenset(_text(cap).upper() for cap in self._client.capabilities())

    def list_folders(self, pattern: str = "*", *, with_status: bool = False) -> List[FolderStatus]:
        """List folders matching ``pattern``; add message counts on request.

        ``\\Noselect`` folders never receive a ``STATUS`` query.
        """

        folders: List[FolderStatus] = []
        for flags, delimiter, name in self._client.list_folders(directory="", pattern=pattern):
            flag_names = tuple(_text(flag) for flag in flags)
            messages = unseen = None
            if with_status and "\\NOSELECT" not in {flag.upper() for flag in flag_names}:
                status = self._client.folder_status(name, [b"MESSAGES", b"UNSEEN"])
                messages = status.get(b"MESSAGES")
                unseen = status.get(b"UNSEEN")
            folders.append(
                FolderStatus(
                    name=_text(name),
                    delimiter=_text(delimiter) if delimiter else None,
                    flags=flag_names,
                    messages=messages,
                    unseen=unseen,
                )
            )
        return folders

    def idle(self) -> "IdleHandle":
        """Enter IDLE and start dispatching pushes.

        Raises:
          IdleError: ``START`` when the server rejects or the socket fails.
        """

        try:
            self._client.idle()
        except (IMAPClientError, OSError) as exc:
            raise IdleError(f"failed to start idle: {exc}", stage=IdleStage.START) from exc
        handle = IdleHandle(self, self._idle_check_seconds)
        handle.start()
        return handle

    def fetch(self, seq_range: SequenceRange, items: Sequence[bytes] = FETCH_ITEMS) -> List[RawFetchedMessage]:
        """Fetch ``items`` for every message in ``seq_range`` in ascending order."""

        response = self._client.fetch(str(seq_range), list(items))
        messages: List[RawFetchedMessage] = []
        for seq in sorted(response):
            if seq not in seq_range:
                continue
            data = response[seq]
            messages.append(
                RawFetchedMessage(
                    seq=seq,
                    body=data.get(b"BODY[]") or b"",
                    flags=tuple(data.get(b"FLAGS") or ()),
                    internal_date=data.get(b"INTERNALDATE"),
                    size=data.get(b"RFC822.SIZE"),
                    envelope=data.get(b"ENVELOPE"),
                )
            )
        return messages

    def logout(self) -> None:
        self._client.logout()

    def shutdown(self) -> None:
        self._client.shutdown()

    def dispatch(self, response: Iterable[Any]) -> None:
        """Route one untagged response to the matching push handler."""

        parts = tuple(response)
        if len(parts) < 2 or not isinstance(parts[0], int):
            return
        number, keyword = parts[0], _text(parts[1]).upper()
        handlers = self._handlers
        if keyword == "EXISTS" and handlers.mailbox is not None:
            handlers.mailbox(MailboxStatusEvent(num_messages=number))
        elif keyword == "RECENT" and handlers.mailbox is not None:
            handlers.mailbox(MailboxStatusEvent(recent=number))
        elif keyword == "EXPUNGE" and handlers.expunge is not None:
            handlers.expunge(number)
        elif keyword == "FETCH" and handlers.fetch is not None:
            payload = parts[2] if len(parts) > 2 else ()
            handlers.fetch(FetchEvent(seq=number, attributes=_attribute_map(payload)))
        else:
            self._logger.debug("ignored untagged response", keyword=keyword, number=number)


class IdleHandle:
    """An outstanding IDLE command.

    ``close`` stops the reader thread; ``wait`` sends ``DONE`` and dispatches
    any responses the server flushed before completing the command.
    """

    def __init__(self, endpoint: ImapEndpoint, check_seconds: float) -> None:
        self._endpoint = endpoint
        self._check_seconds = check_seconds
        self._stop = threading.Event()
        self._error: Optional[BaseException] = None
        self._failed = threading.Event()
        self._closed = False
        self._thread = threading.Thread(target=self._read, name="mailwatch-idle-reader", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _read(self) -> None:
        client = self._endpoint.client
        try:
            while not self._stop.is_set():
                for response in client.idle_check(timeout=self._check_seconds):
                    self._endpoint.dispatch(response)
        except Exception as exc:  # handed back to the owner through close()
            self._error = exc
            self._failed.set()

    @property
    def failed(self) -> bool:
        """``True`` once the reader thread has stopped on an error."""

        return self._failed.is_set()

    def close(self) -> None:
        """Stop reading pushes.

        Raises:
          IdleError: ``CLOSE`` when the reader thread failed.
        """

        self._stop.set()
        if self._thread.is_alive():
            self._thread.join()
        self._closed = True
        if self._error is not None:
            error, self._error = self._error, None
            raise IdleError(f"idle reader failed: {error}", stage=IdleStage.CLOSE) from error

    def wait(self) -> None:
        """Terminate IDLE on the server and drain its final responses.

        Raises:
          IdleError: ``WAIT`` when ``DONE`` is rejected or the socket fails.
        """

        if not self._closed:
            self.close()
        try:
            _, responses = self._endpoint.client.idle_done()
        except (IMAPClientError, OSError) as exc:
            raise IdleError(f"failed to finish idle: {exc}", stage=IdleStage.WAIT) from exc
        for response in responses or ():
            self._endpoint.dispatch(response)
