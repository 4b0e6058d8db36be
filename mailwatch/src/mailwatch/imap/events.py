"""Routing of server-pushed (unilateral) IMAP responses.

What:
  Define the push event types and :class:`UnilateralEventRouter`, which
  republishes them on one single-slot channel per event kind.

Why:
  The endpoint delivers pushes from its IDLE reader thread. Handing them to the
  watch loop through channels keeps the loop the only owner of session state,
  and forwarding on a separate worker keeps the reader thread from blocking on
  a slow subscriber.

How:
  Each kind owns an optional ``queue.Queue(maxsize=1)`` slot and a
  single-worker :class:`~concurrent.futures.ThreadPoolExecutor`. Handlers check
  for a subscriber at call time, discard the event when there is none, and
  otherwise submit the blocking ``put`` to the kind's worker. One worker per
  kind preserves arrival order.

Interfaces:
  :class:`EventKind`, :class:`MailboxStatusEvent`, :class:`ExpungeEvent`,
  :class:`FetchEvent`, :class:`UnilateralEventRouter`.

Invariants & Safety:
  - The router is stateless with respect to the mailbox: it never reads or
    writes the session's message count.
  - :meth:`UnilateralEventRouter.close` releases forwarders blocked on a full
    slot so shutdown cannot hang.
"""
from __future__ import annotations

import enum
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..utils.logging import JsonLogger


_PUT_POLL_SECONDS = 0.1


class EventKind(str, enum.Enum):
    EXPUNGE = "expunge"
    MAILBOX = "mailbox"
    FETCH = "fetch"


@dataclass(frozen=True)
class MailboxStatusEvent:
    """Snapshot pushed by the server; ``num_messages`` is ``None`` when absent."""

    num_messages: Optional[int] = None
    recent: Optional[int] = None


@dataclass(frozen=True)
class ExpungeEvent:
    seq: int


@dataclass(frozen=True)
class FetchEvent:
    seq: int
    attributes: Dict[bytes, Any] = field(default_factory=dict)


class UnilateralEventRouter:
    """Forward push events to per-kind subscriber slots.

    What:
      Exposes one handler per event kind for the endpoint and one slot per kind
      for consumers.

    Why:
      Decouples the endpoint's dispatch thread from the watch loop so neither
      can deadlock the other.

    How:
      ``subscribe`` installs a fresh slot, ``unsubscribe`` removes it; handlers
      forward through a per-kind single-worker executor.
    """

    def __init__(self, logger: JsonLogger) -> None:
        self._logger = logger
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._slots: Dict[EventKind, Optional["queue.Queue[Any]"]] = {kind: None for kind in EventKind}
        self._forwarders = self._new_forwarders()

    def open(self) -> None:
        """Resume forwarding after :meth:`close`; subscriptions are kept."""

        with self._lock:
            if not self._closed.is_set():
                return
            self._closed = threading.Event()
            self._forwarders = self._new_forwarders()

    def register(self, endpoint: Any) -> None:
        """Install the three push handlers on ``endpoint``."""

        endpoint.on_unilateral(
            expunge=self.on_expunge,
            mailbox=self.on_mailbox,
            fetch=self.on_fetch,
        )

    def subscribe(self, kind: EventKind) -> "queue.Queue[Any]":
        """Create and return the single-slot channel for ``kind``."""

        slot: "queue.Queue[Any]" = queue.Queue(maxsize=1)
        with self._lock:
            self._slots[kind] = slot
        return slot

    def unsubscribe(self, kind: EventKind) -> None:
        with self._lock:
            self._slots[kind] = None

    def on_expunge(self, seq: int) -> None:
        self._logger.info("received unilateral expunge", seq=seq)
        self._forward(EventKind.EXPUNGE, ExpungeEvent(seq=seq))

    def on_mailbox(self, event: MailboxStatusEvent) -> None:
        self._forward(EventKind.MAILBOX, event)

    def on_fetch(self, event: FetchEvent) -> None:
        self._forward(EventKind.FETCH, event)

    def close(self) -> None:
        """Stop forwarding; pending deliveries are abandoned."""

        with self._lock:
            closed, forwarders = self._closed, list(self._forwarders.values())
        closed.set()
        for forwarder in forwarders:
            forwarder.shutdown(wait=False, cancel_futures=True)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _new_forwarders(self) -> Dict[EventKind, ThreadPoolExecutor]:
        return {
            kind: ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"mailwatch-{kind.value}")
            for kind in EventKind
        }

    def _forward(self, kind: EventKind, event: Any) -> None:
        with self._lock:
            closed, slot, forwarder = self._closed, self._slots[kind], self._forwarders[kind]
        if closed.is_set() or slot is None:
            return
        try:
            forwarder.submit(self._deliver, slot, event, closed)
        except RuntimeError:
            # close() raced with this push; the executor no longer accepts work.
            return

    def _deliver(self, slot: "queue.Queue[Any]", event: Any, closed: threading.Event) -> None:
        while not closed.is_set():
            try:
                slot.put(event, timeout=_PUT_POLL_SECONDS)
            except queue.Full:
                continue
            return
