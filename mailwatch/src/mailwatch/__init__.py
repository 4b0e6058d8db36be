"""
Module: mailwatch.__init__

What:
  Aggregate package exports for the mailwatch IMAP folder watcher.

Why:
  Callers embedding the watcher need the mailbox facade, the message type, and
  the error taxonomy without reaching into submodules.

Interfaces:
  - Mailbox: connect, watch, and disconnect in one object.
  - SessionManager / WatchLoop: the lower-level building blocks.
  - Message / decode: MIME decoding of fetched bodies.
  - Errors: ConnectError, FetchError, DecodeError, IdleError, WatchLoopFatal.
"""

from .errors import (
    ConnectCause,
    ConnectError,
    DecodeCause,
    DecodeError,
    FetchError,
    IdleError,
    IdleStage,
    MailWatchError,
    WatchLoopFatal,
)
from .mailbox import Mailbox
from .message import Message, decode
from .session import Session, SessionManager
from .watch import WatchLoop, WatchState

__all__ = [
    "ConnectCause",
    "ConnectError",
    "DecodeCause",
    "DecodeError",
    "FetchError",
    "IdleError",
    "IdleStage",
    "MailWatchError",
    "Mailbox",
    "Message",
    "Session",
    "SessionManager",
    "WatchLoop",
    "WatchState",
    "WatchLoopFatal",
    "decode",
]
