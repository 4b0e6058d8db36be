"""Facade for the IMAP integration layer.

What:
  Surface the endpoint adapter around ``imapclient`` and the push-event router.

Why:
  The session and watch loop import these names without depending on the
  submodule layout.

Interfaces:
  ``ImapEndpoint``, ``IdleHandle``, ``SequenceRange``, ``RawFetchedMessage``,
  ``FolderStatus``, ``UnilateralEventRouter`` and the event types.
"""

from .client import (
    FolderStatus,
    IdleHandle,
    ImapEndpoint,
    RawFetchedMessage,
    SelectData,
    SequenceRange,
)
from .events import (
    EventKind,
    ExpungeEvent,
    FetchEvent,
    MailboxStatusEvent,
    UnilateralEventRouter,
)

__all__ = [
    "EventKind",
    "ExpungeEvent",
    "FetchEvent",
    "FolderStatus",
    "IdleHandle",
    "ImapEndpoint",
    "MailboxStatusEvent",
    "RawFetchedMessage",
    "SelectData",
    "SequenceRange",
    "UnilateralEventRouter",
]
