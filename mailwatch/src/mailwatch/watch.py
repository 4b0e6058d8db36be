"""The IDLE watch loop.

What:
  :class:`WatchLoop` repeatedly enters IDLE, waits for a mailbox-status push or
  cancellation, fetches the sequence range of newly arrived messages, decodes
  them, and hands them one at a time to the consumer channel.

Why:
  Pushes arrive on another thread and the connection drops transient errors on
  the floor at unpredictable moments. A single worker that owns the message
  count and serialises every session call keeps the state machine easy to
  reason about: the count only moves forward after a successful fetch, and an
  error that survives one retry ends the session instead of spinning forever.

How:
  The worker thread runs :meth:`WatchLoop._loop`. Failures are not retried by
  exception handlers in place; they are carried to the top of the next pass
  where :class:`RecoveryState` compares the error signature with the one
  remembered from the previous recovery. The outcome is published on a
  :class:`concurrent.futures.Future` that resolves exactly once.

Interfaces:
  :class:`WatchLoop`, :class:`WatchState`, :class:`RecoveryState`.

Invariants & Safety:
  - The last-known message count is read and written only by the worker.
  - A range is fetched only when the pushed count exceeds the last-known one,
    and the count is advanced only after that fetch succeeded.
  - The same error twice in a row (by signature) is fatal; any other error
    replaces the remembered one.
  - Cancellation is honoured immediately while waiting for a push and at the
    start of every pass otherwise.
"""
from __future__ import annotations

import enum
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from .channel import Channel, ChannelClosed
from .config.schema import WatchSettings
from .errors import DecodeError, FetchError, IdleError, MailWatchError, WatchLoopFatal
from .imap.client import IdleHandle, RawFetchedMessage, SequenceRange
from .imap.events import EventKind, MailboxStatusEvent
from .message import Message, decode
from .session import SessionManager
from .utils.logging import JsonLogger


class WatchState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_EVENT = "awaiting-event"
    RECONCILING = "reconciling"
    RECOVERING = "recovering"
    STOPPED = "stopped"
    FAILED = "failed"


class _Wakeup(enum.Enum):
    CANCELLED = "cancelled"
    REFRESH = "refresh"
    READER_FAILED = "reader_failed"


@dataclass
class RecoveryState:
    """Error remembered from the last recovery attempt."""

    last_error: Optional[MailWatchError] = None

    def is_recurrence(self, error: MailWatchError) -> bool:
        return self.last_error is not None and self.last_error.signature() == error.signature()

    def remember(self, error: MailWatchError) -> None:
        self.last_error = error

    def clear(self) -> None:
        self.last_error = None


class WatchLoop:
    """Run the watch state machine on a dedicated worker thread.

    What:
      Owns the consumer channel, the cancellation event, and the recovery
      record; borrows the :class:`SessionManager` for IDLE and fetch calls.

    Why:
      Callers only see two outputs: ``messages`` (decoded messages, closed when
      the loop exits) and the future returned by :meth:`start`.

    How:
      :meth:`start` spawns the worker and returns its completion future;
      :meth:`stop` sets the cancellation event.
    """

    def __init__(
        self,
        session: SessionManager,
        logger: JsonLogger,
        *,
        settings: Optional[WatchSettings] = None,
        messages: Optional[Channel[Message]] = None,
        decoder: Callable[[bytes], Message] = decode,
    ) -> None:
        self._session = session
        self._logger = logger.bind(mailbox=session.session.folder)
        self._settings = settings or WatchSettings()
        self.messages: Channel[Message] = messages if messages is not None else Channel()
        self._decoder = decoder
        self._cancel = threading.Event()
        self._recovery = RecoveryState()
        self._state = WatchState.IDLE
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> WatchState:
        with self._state_lock:
            return self._state

    @property
    def last_known(self) -> int:
        return self._session.session.num_messages

    @property
    def recovery(self) -> RecoveryState:
        return self._recovery

    def start(self) -> "Future[None]":
        """Spawn the worker and return the completion future.

        The future's result is ``None`` after a clean stop; on failure it holds
        a :class:`WatchLoopFatal` chained to the recurring error.
        """

        if self._thread is not None:
            raise RuntimeError("watch loop already started")
        done: "Future[None]" = Future()
        done.set_running_or_notify_cancel()
        self._thread = threading.Thread(
            target=self._run, args=(done,), name="mailwatch-watch-loop", daemon=True
        )
        self._thread.start()
        return done

    def stop(self) -> None:
        """Request cancellation; honoured at the next wait or pass."""

        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit; returns ``False`` on timeout."""

        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _set_state(self, state: WatchState) -> None:
        with self._state_lock:
            self._state = state

    def _run(self, done: "Future[None]") -> None:
        router = self._session.router
        slot = router.subscribe(EventKind.MAILBOX)
        try:
            fatal = self._loop(slot)
        except BaseException as exc:
            self._set_state(WatchState.FAILED)
            done.set_exception(exc)
            raise
        finally:
            router.unsubscribe(EventKind.MAILBOX)
            self.messages.close()
        if fatal is None:
            self._logger.info("stopped waiting for messages")
            done.set_result(None)
        else:
            self._logger.error("stopped waiting for messages with error", error=str(fatal))
            done.set_exception(fatal)

    def _loop(self, slot: "queue.Queue[MailboxStatusEvent]") -> Optional[WatchLoopFatal]:
        error: Optional[MailWatchError] = None
        while True:
            if self._cancel.is_set():
                if error is not None:
                    self._logger.error("error before cancellation", error=str(error))
                self._set_state(WatchState.STOPPED)
                return None

            if error is not None:
                if self._recovery.is_recurrence(error):
                    self._set_state(WatchState.FAILED)
                    fatal = WatchLoopFatal(f"unrecoverable error: {error}")
                    fatal.__cause__ = error
                    return fatal
                self._logger.error(
                    "error while waiting for messages, try to recover",
                    error=str(error),
                    kind=type(error).__name__,
                )
                self._set_state(WatchState.RECOVERING)
                self._recovery.remember(error)
                error = None

            self._set_state(WatchState.IDLE)
            try:
                idle = self._session.idle()
            except IdleError as exc:
                error = exc
                continue

            self._set_state(WatchState.AWAITING_EVENT)
            wakeup = self._await_event(slot, idle)
            if wakeup is _Wakeup.CANCELLED:
                self._leave_idle(idle)
                self._set_state(WatchState.STOPPED)
                return None

            try:
                idle.close()
                idle.wait()
            except IdleError as exc:
                error = exc
                continue
            if isinstance(wakeup, _Wakeup):
                self._logger.debug("idle refreshed")
                continue

            pushed = wakeup
            self._set_state(WatchState.RECONCILING)
            session = self._session.session
            if pushed > session.num_messages:
                seq_range = SequenceRange(session.num_messages + 1, pushed)
                try:
                    fetched = self._session.fetch_range(seq_range)
                except FetchError as exc:
                    error = exc
                    continue
                if not self._publish(fetched):
                    self._set_state(WatchState.STOPPED)
                    return None

            self._recovery.clear()
            session.num_messages = pushed

    def _await_event(
        self, slot: "queue.Queue[MailboxStatusEvent]", idle: IdleHandle
    ) -> Union[int, _Wakeup]:
        poll = self._settings.event_poll_seconds
        refresh = self._settings.idle_refresh_seconds
        deadline = time.monotonic() + refresh if refresh else None
        while True:
            if self._cancel.is_set():
                return _Wakeup.CANCELLED
            if idle.failed:
                return _Wakeup.READER_FAILED
            timeout = poll
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return _Wakeup.REFRESH
                timeout = min(poll, remaining)
            try:
                event = slot.get(timeout=timeout)
            except queue.Empty:
                continue
            if event.num_messages is None:
                self._logger.debug("mailbox status without message count", recent=event.recent)
                continue
            self._logger.info("mailbox changed", num_messages=event.num_messages)
            return event.num_messages

    def _publish(self, fetched: Iterable[RawFetchedMessage]) -> bool:
        for raw in fetched:
            try:
                message = self._decoder(raw.body)
            except DecodeError as exc:
                self._logger.error("failed to parse message", error=str(exc), seq=raw.seq, len=len(raw.body))
                continue
            try:
                self.messages.send(message)
            except ChannelClosed:
                return False
        return True

    def _leave_idle(self, idle: IdleHandle) -> None:
        try:
            idle.close()
            idle.wait()
        except IdleError as exc:
            self._logger.warning("failed to leave idle after cancellation", error=str(exc))
