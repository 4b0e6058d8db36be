"""Connection lifecycle for one watched IMAP folder.

What:
  :class:`SessionManager` dials the server, authenticates, selects the folder,
  records the message count and capabilities, fetches sequence ranges, and
  disconnects.

Why:
  The connection handle has a single owner. The watch loop asks the manager
  for IDLE and fetch operations instead of touching ``imapclient`` directly, so
  all protocol failures are translated into the mailwatch error taxonomy in one
  place.

How:
  :meth:`SessionManager.connect` creates an :class:`~mailwatch.imap.ImapEndpoint`
  through an injectable dial function, registers the
  :class:`~mailwatch.imap.UnilateralEventRouter` handlers, and walks through
  login and select, closing the endpoint on any failure. A folder selection
  failure first logs the folders the server does offer.

Interfaces:
  :class:`Session`, :class:`SessionManager`.

Invariants & Safety:
  - :class:`ConnectError` is never retried here.
  - :meth:`SessionManager.disconnect` is idempotent and safe after failures.
  - The password is registered with the logger's redaction set before the
    first protocol command is sent.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional

from imapclient.exceptions import IMAPClientError

from .config.schema import ImapSettings, WatchSettings
from .errors import ConnectCause, ConnectError, FetchError
from .imap.client import FolderStatus, IdleHandle, ImapEndpoint, RawFetchedMessage, SequenceRange
from .imap.events import UnilateralEventRouter
from .utils.logging import JsonLogger


Dialer = Callable[[ImapSettings, WatchSettings, JsonLogger], ImapEndpoint]


def dial_endpoint(imap: ImapSettings, watch: WatchSettings, logger: JsonLogger) -> ImapEndpoint:
    return ImapEndpoint.dial(
        imap.host,
        imap.port,
        ssl=imap.ssl,
        timeout=imap.timeout,
        logger=logger,
        idle_check_seconds=watch.idle_check_seconds,
    )


@dataclass
class Session:
    """One authenticated, folder-selected connection."""

    address: str
    username: str
    folder: str
    num_messages: int
    uid_next: Optional[int] = None
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def supports(self, capability: str) -> bool:
        return capability.upper() in self.capabilities


class SessionManager:
    """Own the IMAP endpoint and expose the operations the watch loop needs."""

    def __init__(
        self,
        imap: ImapSettings,
        logger: JsonLogger,
        *,
        watch: Optional[WatchSettings] = None,
        router: Optional[UnilateralEventRouter] = None,
        dialer: Dialer = dial_endpoint,
    ) -> None:
        self._imap = imap
        self._watch = watch or WatchSettings()
        self._logger = logger.bind(mailbox=imap.folder)
        self._logger.add_secret(imap.password)
        self.router = router or UnilateralEventRouter(self._logger)
        self._dialer = dialer
        self._endpoint: Optional[ImapEndpoint] = None
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("IMAP session not connected")
        return self._session

    @property
    def connected(self) -> bool:
        return self._endpoint is not None

    @property
    def endpoint(self) -> ImapEndpoint:
        if self._endpoint is None:
            raise RuntimeError("IMAP session not connected")
        return self._endpoint

    def connect(self) -> Session:
        """Dial, authenticate, and select the configured folder.

        Returns:
          The new :class:`Session`.

        Raises:
          ConnectError: ``NETWORK`` when the connection cannot be opened,
            ``AUTH`` when login is refused, ``FOLDER_NOT_FOUND`` when the
            folder cannot be selected.
        """

        imap = self._imap
        try:
            endpoint = self._dialer(imap, self._watch, self._logger)
        except (IMAPClientError, OSError) as exc:
            raise ConnectError(f"failed to connect to {imap.address}: {exc}", cause=ConnectCause.NETWORK) from exc
        self.router.open()
        self.router.register(endpoint)

        try:
            endpoint.login(imap.username, imap.password or "")
        except IMAPClientError as exc:
            self._close_endpoint(endpoint)
            raise ConnectError(f"login failed for {imap.username}: {exc}", cause=ConnectCause.AUTH) from exc
        except OSError as exc:
            self._close_endpoint(endpoint)
            raise ConnectError(f"connection lost during login: {exc}", cause=ConnectCause.NETWORK) from exc

        try:
            selected = endpoint.select(imap.folder)
        except IMAPClientError as exc:
            self._log_available_folders(endpoint)
            self._close_endpoint(endpoint)
            raise ConnectError(
                f"failed to select folder {imap.folder!r}: {exc}", cause=ConnectCause.FOLDER_NOT_FOUND
            ) from exc
        except OSError as exc:
            self._close_endpoint(endpoint)
            raise ConnectError(f"connection lost during select: {exc}", cause=ConnectCause.NETWORK) from exc

        try:
            capabilities = endpoint.capabilities()
        except (IMAPClientError, OSError) as exc:
            self._close_endpoint(endpoint)
            raise ConnectError(f"failed to read capabilities: {exc}", cause=ConnectCause.NETWORK) from exc

        session = Session(
            address=imap.address,
            username=imap.username,
            folder=imap.folder,
            num_messages=selected.num_messages,
            uid_next=selected.uid_next,
            capabilities=capabilities,
        )
        with self._lock:
            self._endpoint = endpoint
            self._session = session
        self._logger.info(
            "connected",
            supports_imap4rev1=session.supports("IMAP4REV1"),
            supports_imap4rev2=session.supports("IMAP4REV2"),
            supports_idle=session.supports("IDLE"),
            uid_next=session.uid_next,
            num_messages=session.num_messages,
        )
        return session

    def idle(self) -> IdleHandle:
        """Enter IDLE on the connected endpoint (raises :class:`IdleError`)."""

        return self.endpoint.idle()

    def fetch_range(self, seq_range: SequenceRange) -> List[RawFetchedMessage]:
        """Fetch envelope, flags, date, size, and full body for ``seq_range``.

        Raises:
          FetchError: On any transport or protocol failure; no partial result
            is returned.
        """

        try:
            return self.endpoint.fetch(seq_range)
        except (IMAPClientError, OSError) as exc:
            raise FetchError(f"failed to fetch {seq_range}: {exc}") from exc

    def list_folders(self, *, with_status: bool = False) -> List[FolderStatus]:
        return self.endpoint.list_folders("*", with_status=with_status)

    def disconnect(self) -> None:
        """Close the endpoint if open; safe to call repeatedly."""

        with self._lock:
            endpoint, self._endpoint = self._endpoint, None
        self.router.close()
        if endpoint is not None:
            self._close_endpoint(endpoint)
            self._logger.info("disconnected")

    def _close_endpoint(self, endpoint: ImapEndpoint) -> None:
        try:
            endpoint.logout()
        except (IMAPClientError, OSError) as exc:
            self._logger.warning("logout failed, shutting down socket", error=str(exc))
            try:
                endpoint.shutdown()
            except OSError as shutdown_exc:
                self._logger.error("socket shutdown failed", error=str(shutdown_exc))

    def _log_available_folders(self, endpoint: ImapEndpoint) -> None:
        try:
            folders = endpoint.list_folders("*")
        except (IMAPClientError, OSError) as exc:
            self._logger.error("failed to list folders", error=str(exc))
            return
        self._logger.info("available folders:")
        for folder in folders:
            extra = {"flags": list(folder.flags)}
            if folder.messages is not None:
                extra["messages"] = folder.messages
            if folder.unseen is not None:
                extra["unseen"] = folder.unseen
            self._logger.info(folder.name, **extra)
