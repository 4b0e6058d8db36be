"""
Module: tests/unit/test_session.py

What:
    Validate the session manager: connect outcomes for each failure cause,
    folder listing on a failed select, range fetches, password redaction, and
    idempotent disconnect.

Why:
    Connection errors are reported to operators verbatim and are never retried;
    their classification must be exact.

Invariants & Safety Rules:
    - A failed connect leaves no open endpoint behind.
    - The password never appears in the log stream.
"""

import pytest
from imapclient.exceptions import IMAPClientError

from fakes import build_message
from mailwatch.errors import ConnectCause, ConnectError, FetchError
from mailwatch.imap.client import SequenceRange
from mailwatch.session import SessionManager


def _manager(config, logger, **overrides):
    imap = config.imap.model_copy(update=overrides) if overrides else config.imap
    return SessionManager(imap, logger, watch=config.watch)


def test_connect_records_session(backend, logger, logs, config):
    backend.folders["INBOX"].extend([build_message("a", "1"), build_message("b", "2")])
    manager = _manager(config, logger)

    session = manager.connect()

    assert session.address == "imap.example.org:993"
    assert session.folder == "INBOX"
    assert session.num_messages == 2
    assert session.uid_next == 3
    assert session.supports("idle")
    assert backend.logged_in == ("watcher@example.org", "s3cret-pass")
    connected = [entry for entry in logs() if entry["msg"] == "connected"]
    assert connected[0]["supports_idle"] is True
    assert connected[0]["supports_imap4rev1"] is True
    assert connected[0]["supports_imap4rev2"] is False
    assert connected[0]["mailbox"] == "INBOX"
    manager.disconnect()


def test_connect_network_failure(backend, logger, config):
    backend.fail("connect", ConnectionRefusedError("connection refused"))

    with pytest.raises(ConnectError) as excinfo:
        _manager(config, logger).connect()

    assert excinfo.value.cause is ConnectCause.NETWORK


def test_connect_auth_failure_closes_connection(backend, logger, logs, config):
    manager = _manager(config, logger, password="wrong-password")

    with pytest.raises(ConnectError) as excinfo:
        manager.connect()

    assert excinfo.value.cause is ConnectCause.AUTH
    assert backend.logged_out
    assert not manager.connected
    assert "wrong-password" not in str(logs())


def test_connect_unknown_folder_lists_available_folders(backend, logger, logs, config):
    manager = _manager(config, logger, folder="Nope")

    with pytest.raises(ConnectError) as excinfo:
        manager.connect()

    assert excinfo.value.cause is ConnectCause.FOLDER_NOT_FOUND
    messages = [entry["msg"] for entry in logs()]
    assert "available folders:" in messages
    assert {"Archive", "INBOX", "[Gmail]"} <= set(messages)
    assert backend.logged_out


def test_folder_listing_failure_keeps_select_error(backend, logger, logs, config):
    backend.fail("list_folders", IMAPClientError("LIST failed"))
    manager = _manager(config, logger, folder="Nope")

    with pytest.raises(ConnectError) as excinfo:
        manager.connect()

    assert excinfo.value.cause is ConnectCause.FOLDER_NOT_FOUND
    assert "Nope" in str(excinfo.value)
    failures = [entry for entry in logs() if entry["msg"] == "failed to list folders"]
    assert failures and failures[0]["lvl"] == "ERROR"
    assert "LIST failed" in failures[0]["error"]
    assert backend.logged_out


def test_logout_failure_falls_back_to_shutdown(backend, logger, logs, config):
    backend.fail("logout", OSError("broken pipe"))
    manager = _manager(config, logger)
    manager.connect()

    manager.disconnect()

    assert backend.shut_down
    assert any(entry["msg"] == "logout failed, shutting down socket" for entry in logs())


def test_fetch_range(manager, backend):
    backend.folders["INBOX"].extend([build_message(str(n), "body") for n in range(1, 4)])

    fetched = manager.fetch_range(SequenceRange(2, 3))

    assert [message.seq for message in fetched] == [2, 3]


def test_fetch_failure_is_wrapped(manager, backend):
    backend.fail("fetch", IMAPClientError("FETCH failed"))

    with pytest.raises(FetchError) as excinfo:
        manager.fetch_range(SequenceRange(1, 1))

    assert isinstance(excinfo.value.__cause__, IMAPClientError)


def test_disconnect_is_idempotent(manager, backend):
    manager.disconnect()
    manager.disconnect()

    assert backend.calls.count("logout") == 1
    assert manager.router.closed
    assert not manager.connected


def test_password_is_redacted_from_logs(manager, logger, logs):
    logger.info("echo", detail="LOGIN watcher s3cret-pass")

    assert "s3cret-pass" not in str(logs())
    assert logs()[-1]["detail"] == "LOGIN watcher ***"
