"""Unbuffered handoff channel between the watch loop and its consumer.

What:
  Provide :class:`Channel`, a rendezvous channel: :meth:`Channel.send` returns
  only once a receiver has taken the item.

Why:
  Decoded messages are handed to the caller one at a time so the loop never
  runs more than one message ahead of the consumer. Closing the channel from
  either side releases a blocked sender, so a disconnect cannot deadlock on a
  pending handoff.

How:
  A single :class:`threading.Condition` guards one slot plus two counters
  (items offered and items taken). Senders wait for their ticket to be taken;
  receivers wait for an occupied slot.

Interfaces:
  :class:`Channel`, :class:`ChannelClosed`.
"""
from __future__ import annotations

import threading
import time
from typing import Generic, Iterator, Optional, TypeVar


T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by ``send``/``recv`` on a closed channel."""


class Channel(Generic[T]):
    """Rendezvous channel with close semantics.

    Iterating a channel yields items until it is closed.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._item: Optional[T] = None
        self._occupied = False
        self._offered = 0
        self._taken = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, item: T) -> None:
        """Hand ``item`` to a receiver, blocking until it is taken.

        Raises:
          ChannelClosed: If the channel is closed before the item is taken.
        """

        with self._cond:
            while self._occupied and not self._closed:
                self._cond.wait()
            if self._closed:
                raise ChannelClosed("send on closed channel")
            self._item = item
            self._occupied = True
            self._offered += 1
            ticket = self._offered
            self._cond.notify_all()
            while self._taken < ticket and not self._closed:
                self._cond.wait()
            if self._taken < ticket:
                self._item = None
                self._occupied = False
                raise ChannelClosed("channel closed before the item was received")

    def recv(self, timeout: Optional[float] = None) -> T:
        """Take the next item.

        Raises:
          ChannelClosed: When the channel is closed and no item is pending.
          TimeoutError: When ``timeout`` elapses first.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._occupied and not self._closed:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("no item received before timeout")
                self._cond.wait(remaining)
            if not self._occupied:
                raise ChannelClosed("receive on closed channel")
            item = self._item
            self._item = None
            self._occupied = False
            self._taken += 1
            self._cond.notify_all()
            return item  # type: ignore[return-value]

    def close(self) -> None:
        """Close the channel; idempotent."""

        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.recv()
            except ChannelClosed:
                return
