"""
Module: tests/unit/test_events.py

What:
    Exercise the unilateral event router: forwarding to subscribed slots,
    discarding without a subscriber, ordering under backpressure, and shutdown.

Why:
    The router sits between the IDLE reader thread and the watch loop; if it
    blocks the reader or reorders pushes, new mail is missed or double-counted.

Invariants & Safety Rules:
    - Events of one kind are delivered in arrival order.
    - ``close`` never leaves a forwarder blocked on a full slot.
"""

import queue
import time

from mailwatch.imap.events import (
    EventKind,
    ExpungeEvent,
    FetchEvent,
    MailboxStatusEvent,
    UnilateralEventRouter,
)


class _Endpoint:
    def __init__(self):
        self.handlers = {}

    def on_unilateral(self, **handlers):
        self.handlers = handlers


def test_register_installs_all_three_handlers(logger):
    router = UnilateralEventRouter(logger)
    endpoint = _Endpoint()

    router.register(endpoint)

    assert set(endpoint.handlers) == {"expunge", "mailbox", "fetch"}
    router.close()


def test_mailbox_event_reaches_subscriber(logger):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.MAILBOX)

    router.on_mailbox(MailboxStatusEvent(num_messages=4))

    assert slot.get(timeout=1) == MailboxStatusEvent(num_messages=4)
    router.close()


def test_events_without_subscriber_are_discarded(logger):
    router = UnilateralEventRouter(logger)

    router.on_mailbox(MailboxStatusEvent(num_messages=1))
    slot = router.subscribe(EventKind.MAILBOX)

    try:
        slot.get(timeout=0.1)
    except queue.Empty:
        pass
    else:  # pragma: no cover - assertion path
        raise AssertionError("event published before subscription was delivered")
    router.close()


def test_expunge_is_logged_and_forwarded(logger, logs):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.EXPUNGE)

    router.on_expunge(3)

    assert slot.get(timeout=1) == ExpungeEvent(seq=3)
    assert any(entry["msg"] == "received unilateral expunge" and entry["seq"] == 3 for entry in logs())
    router.close()


def test_backpressure_preserves_arrival_order(logger):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.FETCH)

    started = time.monotonic()
    for seq in range(1, 6):
        router.on_fetch(FetchEvent(seq=seq))
    # Handlers return immediately even though the slot holds a single event.
    assert time.monotonic() - started < 0.5

    received = [slot.get(timeout=1).seq for _ in range(5)]
    assert received == [1, 2, 3, 4, 5]
    router.close()


def test_close_releases_blocked_forwarder(logger):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.MAILBOX)
    router.on_mailbox(MailboxStatusEvent(num_messages=1))
    deadline = time.monotonic() + 1
    while not slot.full() and time.monotonic() < deadline:
        time.sleep(0.01)
    router.on_mailbox(MailboxStatusEvent(num_messages=2))

    router.close()
    router.on_mailbox(MailboxStatusEvent(num_messages=3))
    time.sleep(0.3)

    assert router.closed
    assert slot.get_nowait().num_messages == 1
    time.sleep(0.2)
    assert slot.empty()


def test_unsubscribe_stops_delivery(logger):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.MAILBOX)
    router.unsubscribe(EventKind.MAILBOX)

    router.on_mailbox(MailboxStatusEvent(num_messages=9))

    time.sleep(0.1)
    assert slot.empty()
    router.close()


def test_open_resumes_forwarding_after_close(logger):
    router = UnilateralEventRouter(logger)
    slot = router.subscribe(EventKind.MAILBOX)
    router.close()

    router.open()
    router.on_mailbox(MailboxStatusEvent(num_messages=7))

    assert not router.closed
    assert slot.get(timeout=1) == MailboxStatusEvent(num_messages=7)
    router.close()
