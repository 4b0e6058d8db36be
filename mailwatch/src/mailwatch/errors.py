"""Error taxonomy shared by the session, watch loop, and decoder.

What:
  Define the exception hierarchy raised by mailwatch components together with
  the enumerations that describe *why* an operation failed.

Why:
  The watch loop decides between recovering and giving up by comparing the
  cause of consecutive failures. Exception messages embed server text and
  counters that vary from one attempt to the next, so the comparison is done on
  a structural signature instead of ``str(exc)``.

How:
  Every error derives from :class:`MailWatchError` and exposes
  :meth:`MailWatchError.signature`, a hashable tuple built from the exception
  class, its cause/stage enum, and the type of the chained library exception.

Interfaces:
  :class:`ConnectError`, :class:`FetchError`, :class:`DecodeError`,
  :class:`IdleError`, :class:`WatchLoopFatal` and the cause enums.

Invariants & Safety:
  - Signatures never include free-form text.
  - Library exceptions are always chained (``raise ... from exc``) so the
    origin type participates in the signature.
"""
from __future__ import annotations

import enum
from typing import Hashable, Optional, Tuple


class ConnectCause(str, enum.Enum):
    """Reason a connection attempt failed."""

    NETWORK = "network"
    AUTH = "auth"
    FOLDER_NOT_FOUND = "folder-not-found"


class DecodeCause(str, enum.Enum):
    """Reason a raw message could not be decoded."""

    MALFORMED_HEADER = "malformed-header"
    MISSING_BOUNDARY = "missing-boundary"
    MALFORMED_ENCODING = "malformed-encoding"
    NOT_FOUND = "not-found"


class IdleStage(str, enum.Enum):
    """Step of the IDLE exchange that failed."""

    START = "start"
    CLOSE = "close"
    WAIT = "wait"


class MailWatchError(Exception):
    """Base class for every error raised by mailwatch."""

    def _detail(self) -> Optional[Hashable]:
        return None

    def signature(self) -> Tuple[Hashable, ...]:
        """Return the structural identity used for recurrence detection.

        Two errors with equal signatures are considered "the same error" by the
        watch loop even when their messages differ.
        """

        origin = self.__cause__
        return (
            type(self).__name__,
            self._detail(),
            type(origin).__name__ if origin is not None else None,
        )


class ConnectError(MailWatchError):
    """Raised when dialing, authenticating, or selecting the folder fails."""

    def __init__(self, message: str, *, cause: ConnectCause) -> None:
        super().__init__(message)
        self.cause = cause

    def _detail(self) -> Optional[Hashable]:
        return self.cause


class FetchError(MailWatchError):
    """Raised when a sequence range cannot be fetched."""


class DecodeError(MailWatchError):
    """Raised when a raw message cannot be turned into a :class:`Message`."""

    def __init__(self, message: str, *, cause: DecodeCause) -> None:
        super().__init__(message)
        self.cause = cause

    def _detail(self) -> Optional[Hashable]:
        return self.cause


class IdleError(MailWatchError):
    """Raised when starting, closing, or completing an IDLE command fails."""

    def __init__(self, message: str, *, stage: IdleStage) -> None:
        super().__init__(message)
        self.stage = stage

    def _detail(self) -> Optional[Hashable]:
        return self.stage


class WatchLoopFatal(MailWatchError):
    """Raised on the completion future when an error recurs after a retry."""


__all__ = [
    "ConnectCause",
    "ConnectError",
    "DecodeCause",
    "DecodeError",
    "FetchError",
    "IdleError",
    "IdleStage",
    "MailWatchError",
    "WatchLoopFatal",
]
