"""MIME decoding of fetched message bodies.

What:
  Turn the raw ``BODY[]`` bytes delivered by the IMAP fetch into an immutable
  :class:`Message` exposing the header block, the decoded subject, and the
  bodies of the supported content types.

Why:
  Notifications only need a subject and a readable text body. Restricting the
  decoder to ``text/plain`` and ``multipart/alternative`` keeps the behaviour
  predictable: every other content type yields an empty body map rather than a
  best-effort guess.

How:
  Frame the bytes with :class:`email.parser.BytesParser` using the ``compat32``
  policy so header values stay raw. ``text/plain`` bodies are kept byte for byte;
  ``multipart/alternative`` parts are keyed by their media type with
  quoted-printable parts decoded through :mod:`quopri`.

Interfaces:
  :func:`decode` and :class:`Message`.

Invariants & Safety:
  - A :class:`Message` is never mutated after :func:`decode` returns it.
  - Body map keys are unique; on collision the last part wins.
  - Transfer encodings other than quoted-printable are passed through as-is.
"""
from __future__ import annotations

import quopri
import re
from dataclasses import dataclass, field
from email import errors as email_errors
from email.header import decode_header, make_header
from email.message import Message as _EmailMessage
from email.parser import BytesParser
from email.policy import compat32
from email.utils import parseaddr
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .errors import DecodeCause, DecodeError


TEXT_PLAIN = "text/plain"
MULTIPART_ALTERNATIVE = "multipart/alternative"

_FOLDING = re.compile(r"\r?\n[ \t]+")
_FRAMING_DEFECTS = (
    email_errors.MissingHeaderBodySeparatorDefect,
    email_errors.FirstHeaderLineIsContinuationDefect,
)
_BOUNDARY_DEFECTS = (
    email_errors.NoBoundaryInMultipartDefect,
    email_errors.StartBoundaryNotFoundDefect,
    email_errors.CloseBoundaryNotFoundDefect,
)


@dataclass(frozen=True)
class Message:
    """Decoded representation of a fetched message.

    Attributes:
      headers: Header pairs in wire order with folded values unfolded.
      parts: Mapping of media type (e.g. ``text/plain``) to body bytes.
      charsets: Declared ``charset`` parameter per media type, when present.
    """

    headers: Tuple[Tuple[str, str], ...]
    parts: Mapping[str, bytes] = field(default_factory=lambda: MappingProxyType({}))
    charsets: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def header(self, name: str, default: str = "") -> str:
        """Return the first header named ``name`` (case-insensitive)."""

        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return default

    def subject(self) -> str:
        """Decode the ``Subject`` header, resolving RFC 2047 encoded words.

        Raises:
          DecodeError: With ``MALFORMED_ENCODING`` when an encoded word cannot
            be decoded (bad base64/quoted-printable or unknown charset).
        """

        raw = self.header("Subject")
        try:
            words = []
            for word, charset in decode_header(raw):
                # Unencoded runs come back as raw-unicode-escape bytes.
                if isinstance(word, bytes) and charset is None and not word.isascii():
                    word, charset = word.decode("raw-unicode-escape").encode("utf-8"), "utf-8"
                words.append((word, charset))
            return str(make_header(words))
        except (email_errors.HeaderParseError, LookupError, UnicodeDecodeError) as exc:
            raise DecodeError(
                f"malformed subject encoding: {exc}", cause=DecodeCause.MALFORMED_ENCODING
            ) from exc

    def sender(self) -> str:
        """Return the bare address found in the ``From`` header."""

        return parseaddr(self.header("From"))[1]

    def plain_text(self) -> str:
        """Return the ``text/plain`` body decoded with its declared charset.

        Bodies without a charset, or with one Python does not know, are read
        as UTF-8. Undecodable bytes become U+FFFD.

        Raises:
          DecodeError: With ``NOT_FOUND`` when the message carries no
            ``text/plain`` entry.
        """

        try:
            content = self.parts[TEXT_PLAIN]
        except KeyError:
            raise DecodeError("content type not found", cause=DecodeCause.NOT_FOUND) from None
        charset = self.charsets.get(TEXT_PLAIN) or "utf-8"
        try:
            return content.decode(charset, errors="replace")
        except LookupError:
            return content.decode("utf-8", errors="replace")


def decode(raw: bytes) -> Message:
    """Parse ``raw`` RFC 822 bytes into a :class:`Message`.

    What:
      Frames the header block, then extracts bodies according to the top-level
      ``Content-Type``.

    Why:
      The watch loop treats a decode failure as a per-message problem; raising a
      typed :class:`DecodeError` lets it log and skip without touching the rest
      of the batch.

    How:
      Parse with ``compat32``, reject framing defects, and dispatch on the
      lower-cased content type prefix.

    Args:
      raw: Bytes of the full message as returned by ``BODY[]``.

    Returns:
      The decoded message.

    Raises:
      DecodeError: ``MALFORMED_HEADER`` when framing fails and
        ``MISSING_BOUNDARY`` for a multipart body without a usable boundary.
    """

    if not raw or not raw.strip():
        raise DecodeError("empty message", cause=DecodeCause.MALFORMED_HEADER)
    base = BytesParser(policy=compat32).parsebytes(raw)
    for defect in base.defects:
        if isinstance(defect, _FRAMING_DEFECTS):
            raise DecodeError(
                f"malformed header block: {type(defect).__name__}",
                cause=DecodeCause.MALFORMED_HEADER,
            )
    headers = tuple((name, _header_text(_unfold(value))) for name, value in base.raw_items())
    if not headers:
        raise DecodeError("message has no headers", cause=DecodeCause.MALFORMED_HEADER)

    content_type = _unfold(base.get("Content-Type", "")).lower()
    parts: dict[str, bytes] = {}
    charsets: dict[str, str] = {}
    if content_type.startswith(TEXT_PLAIN):
        parts[TEXT_PLAIN] = _body_bytes(base)
        charset = base.get_content_charset()
        if charset:
            charsets[TEXT_PLAIN] = charset
    elif content_type.startswith(MULTIPART_ALTERNATIVE):
        parts, charsets = _parse_alternative(base)
    return Message(headers=headers, parts=MappingProxyType(parts), charsets=MappingProxyType(charsets))


def _parse_alternative(base: _EmailMessage) -> Tuple[dict[str, bytes], dict[str, str]]:
    boundary = base.get_boundary()
    if not boundary:
        raise DecodeError(
            "invalid multipart message type: missing boundary",
            cause=DecodeCause.MISSING_BOUNDARY,
        )
    for defect in base.defects:
        if isinstance(defect, _BOUNDARY_DEFECTS):
            raise DecodeError(
                f"invalid multipart body: {type(defect).__name__}",
                cause=DecodeCause.MISSING_BOUNDARY,
            )

    parts: dict[str, bytes] = {}
    charsets: dict[str, str] = {}
    payload = base.get_payload()
    if not isinstance(payload, list):
        return parts, charsets
    for part in payload:
        content_type = _unfold(part.get("Content-Type", "")).split(";", 1)[0].strip()
        if not content_type:
            continue
        content = _body_bytes(part)
        encoding = _unfold(part.get("Content-Transfer-Encoding", "")).strip().lower()
        if encoding == "quoted-printable":
            content = quopri.decodestring(content)
        # multipart/alternative carries one part per type; last one wins.
        parts[content_type] = content
        charset = part.get_content_charset()
        if charset:
            charsets[content_type] = charset
        else:
            charsets.pop(content_type, None)
    return parts, charsets


def _body_bytes(part: _EmailMessage) -> bytes:
    payload = part.get_payload()
    if isinstance(payload, list):
        flattened = part.as_bytes(policy=compat32)
        _, _, body = flattened.partition(b"\n\n")
        return body
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    # BytesParser decodes with surrogateescape; this restores the wire bytes.
    return payload.encode("ascii", "surrogateescape")


def _header_text(value: str) -> str:
    # compat32 keeps 8-bit header bytes as surrogate escapes.
    return value.encode("ascii", "surrogateescape").decode("utf-8", "replace")


def _unfold(value: Optional[str]) -> str:
    if value is None:
        return ""
    return _FOLDING.sub(" ", str(value)).strip()


__all__ = ["Message", "decode", "TEXT_PLAIN", "MULTIPART_ALTERNATIVE"]
