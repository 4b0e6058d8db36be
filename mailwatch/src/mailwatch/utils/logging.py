"""mailwatch logging helpers with JSON emission and secret redaction.

What:
  Offer a small structured logger that every mailwatch component receives at
  construction time, plus a bridge that routes the ``imapclient`` protocol
  trace through the same redaction pipeline.

Why:
  The IMAP protocol trace echoes raw commands, so the session password would
  leak into logs unless every line is scrubbed before it is written. Passing
  the logger explicitly (instead of relying on a process-wide default) makes
  the redaction set part of the component wiring and keeps tests isolated.

How:
  :class:`JsonLogger` serialises one JSON object per line with ``ts``, ``lvl``,
  ``msg``, ``component`` and bound/extra fields. Every string is passed through
  :func:`redact_secrets` and known sensitive keys are masked. The
  :class:`ProtocolTraceHandler` is a :class:`logging.Handler` that forwards
  stdlib records into a :class:`JsonLogger` at ``DEBUG``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :func:`redact_secrets`,
  :class:`ProtocolTraceHandler`, :func:`attach_protocol_trace`.

Invariants & Safety:
  - Registered secrets never appear in emitted payloads, including nested
    dictionaries and exception text.
  - Streams are flushed after every write.
  - Child loggers created with :meth:`JsonLogger.bind` share the parent's
    secret set, so a password registered after binding is still redacted.
"""
from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set


REDACTED = "***"

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "WARNING": 30, "ERROR": 40}

_SENSITIVE_KEYS = frozenset({"password", "pass", "secret"})
_WRITE_LOCK = threading.Lock()


def redact_secrets(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each non-empty secret in ``text``.

    The function is pure: it never mutates its inputs and returns ``text``
    unchanged when no secret matches.
    """

    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _level_value(level: str) -> int:
    try:
        return LEVELS[level.upper()]
    except KeyError:
        raise ValueError(f"unknown log level: {level!r}") from None


@dataclass
class JsonLogger:
    """Structured JSON logger with secret redaction.

    What:
      Emits single-line JSON entries including timestamp, severity, component,
      bound fields, and call-site fields.

    Why:
      A uniform schema lets tests and operators parse diagnostics without
      ad-hoc heuristics, and funnelling everything through one writer makes the
      password redaction impossible to bypass.

    How:
      Stores the destination stream, component label, minimum level, bound
      fields, and a shared mutable secret set. :meth:`log` filters by level,
      merges fields, redacts, serialises, and flushes.
    """

    stream: Any = field(default_factory=lambda: sys.stderr)
    component: str = "mailwatch"
    level: str = "INFO"
    fields: Dict[str, Any] = field(default_factory=dict)
    secrets: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self._threshold = _level_value(self.level)

    def add_secret(self, secret: Optional[str]) -> None:
        """Register ``secret`` so it is masked in every subsequent entry."""

        if secret:
            self.secrets.add(secret)

    def bind(self, **fields: Any) -> "JsonLogger":
        """Return a child logger that adds ``fields`` to every entry."""

        merged = dict(self.fields)
        merged.update(fields)
        return JsonLogger(
            stream=self.stream,
            component=self.component,
            level=self.level,
            fields=merged,
            secrets=self.secrets,
        )

    def enabled_for(self, level: str) -> bool:
        return _level_value(level) >= self._threshold

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        Args:
          level: Severity name (``DEBUG``, ``INFO``, ``WARN`` or ``ERROR``).
          message: Core log message.
          extra: Optional context merged over the bound fields.
        """

        if not self.enabled_for(level):
            return
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": "WARN" if level.upper() == "WARNING" else level.upper(),
            "msg": message,
            "component": self.component,
        }
        payload.update(self.fields)
        if extra:
            payload.update(extra)
        line = json.dumps(self._redact(payload), separators=(",", ":"), default=str)
        with _WRITE_LOCK:
            self.stream.write(line)
            self.stream.write("\n")
            self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def _redact(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive keys and scrub secrets from every string value."""

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _SENSITIVE_KEYS:
                result[key] = REDACTED
            else:
                result[key] = self._redact_value(value)
        return result

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._redact(value)
        if isinstance(value, (list, tuple)):
            return [self._redact_value(item) for item in value]
        if isinstance(value, str):
            return redact_secrets(value, self.secrets)
        if isinstance(value, BaseException):
            return redact_secrets(str(value), self.secrets)
        return value


class ProtocolTraceHandler(logging.Handler):
    """Forward stdlib log records (the IMAP trace) into a :class:`JsonLogger`."""

    def __init__(self, target: JsonLogger) -> None:
        super().__init__(level=logging.DEBUG)
        self._target = target

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            self.handleError(record)
            return
        self._target.debug(message, logger=record.name)


def attach_protocol_trace(target: JsonLogger, logger_name: str = "imapclient") -> ProtocolTraceHandler:
    """Route the ``imapclient`` logger hierarchy into ``target``.

    Returns the installed handler so callers can remove it on shutdown.
    """

    handler = ProtocolTraceHandler(target)
    stdlib_logger = logging.getLogger(logger_name)
    stdlib_logger.setLevel(logging.DEBUG)
    stdlib_logger.addHandler(handler)
    stdlib_logger.propagate = False
    return handler


def detach_protocol_trace(handler: ProtocolTraceHandler, logger_name: str = "imapclient") -> None:
    logging.getLogger(logger_name).removeHandler(handler)


def get_logger(component: str, *, level: str = "INFO", stream: Any = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for ``component``.

    Args:
      component: Logical subsystem name included in every payload.
      level: Minimum severity to emit.
      stream: Destination stream, ``stderr`` when omitted.
    """

    if stream is None:
        return JsonLogger(component=component, level=level)
    return JsonLogger(stream=stream, component=component, level=level)
