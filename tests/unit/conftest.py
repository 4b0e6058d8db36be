"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Make ``tests/unit`` importable and expose fixtures wiring mailwatch
  components to :class:`FakeImapBackend` and an in-memory log stream.

Why:
  Session and watch-loop tests interact with the IMAP endpoint extensively.
  Providing a consistent fake prevents tests from depending on network
  resources and keeps push delivery deterministic.

How:
  Monkeypatch ``mailwatch.imap.client.IMAPClient`` with the backend's factory so
  the production dial path is exercised end to end, and capture JSON log lines
  in a :class:`io.StringIO`.

Interfaces:
  ``backend``, ``log_stream``, ``logger``, ``logs``, ``config``, ``manager``.
"""

import io
import json
import sys
from pathlib import Path

import pytest

from mailwatch.config import load_config
from mailwatch.session import SessionManager
from mailwatch.utils.logging import JsonLogger

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    """Install a fresh in-memory backend in place of ``IMAPClient``."""

    fake = FakeImapBackend()
    monkeypatch.setattr("mailwatch.imap.client.IMAPClient", fake.factory)
    return fake


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    return JsonLogger(stream=log_stream, component="test", level="DEBUG")


@pytest.fixture
def logs(log_stream: io.StringIO):
    """Return a callable parsing every JSON line written so far."""

    def _read():
        return [json.loads(line) for line in log_stream.getvalue().splitlines() if line]

    return _read


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def manager(backend: FakeImapBackend, logger: JsonLogger, config):
    """Yield a connected :class:`SessionManager`; disconnects on teardown."""

    session_manager = SessionManager(config.imap, logger, watch=config.watch)
    session_manager.connect()
    try:
        yield session_manager
    finally:
        session_manager.disconnect()
