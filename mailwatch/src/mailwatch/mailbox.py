"""One-call wiring of a session and its watch loop.

What:
  :class:`Mailbox` builds the :class:`~mailwatch.session.SessionManager` and the
  :class:`~mailwatch.watch.WatchLoop` from a :class:`~mailwatch.config.WatchConfig`
  and owns their shutdown order.

Why:
  Disconnecting while the loop is blocked handing a message to a consumer, or
  while it is inside IDLE, must not hang. The order is fixed here once: cancel,
  close the message channel, wait for the worker (bounded), then close the
  connection.

Interfaces:
  :class:`Mailbox`.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import List, Optional

from .channel import Channel
from .config.schema import WatchConfig
from .imap.client import FolderStatus
from .message import Message
from .session import Dialer, Session, SessionManager, dial_endpoint
from .utils.logging import JsonLogger
from .watch import WatchLoop


class Mailbox:
    """Watch a single folder described by ``config``."""

    def __init__(self, config: WatchConfig, logger: JsonLogger, *, dialer: Dialer = dial_endpoint) -> None:
        self._config = config
        self._logger = logger
        self._manager = SessionManager(config.imap, logger, watch=config.watch, dialer=dialer)
        self._loop: Optional[WatchLoop] = None
        self._lock = threading.Lock()

    @property
    def manager(self) -> SessionManager:
        return self._manager

    @property
    def loop(self) -> Optional[WatchLoop]:
        return self._loop

    @property
    def messages(self) -> Channel[Message]:
        if self._loop is None:
            raise RuntimeError("watch() has not been called")
        return self._loop.messages

    def connect(self) -> Session:
        """Connect the session (raises :class:`~mailwatch.errors.ConnectError`)."""

        return self._manager.connect()

    def watch(self) -> "Future[None]":
        """Start the watch loop and return its completion future."""

        with self._lock:
            if self._loop is not None:
                raise RuntimeError("mailbox is already being watched")
            self._loop = WatchLoop(self._manager, self._logger, settings=self._config.watch)
            return self._loop.start()

    def stop(self) -> None:
        """Request cancellation of the watch loop."""

        if self._loop is not None:
            self._loop.stop()

    def folders(self, *, with_status: bool = True) -> List[FolderStatus]:
        return self._manager.list_folders(with_status=with_status)

    def disconnect(self) -> None:
        """Stop watching and close the connection; idempotent."""

        loop = self._loop
        if loop is not None:
            loop.stop()
            loop.messages.close()
            if not loop.join(self._config.watch.shutdown_timeout_seconds):
                self._logger.warning(
                    "watch loop did not stop in time",
                    timeout=self._config.watch.shutdown_timeout_seconds,
                )
        self._manager.disconnect()
