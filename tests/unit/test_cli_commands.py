"""CLI wiring tests driving the Typer commands against the in-memory backend.

What:
  Validate the ``watch`` and ``folders`` commands: printed output, signal
  driven shutdown, flag handling, and exit codes for configuration,
  connection, and unrecoverable watch errors.

Why:
  The CLI coordinates configuration, logging, and the mailbox facade; these
  tests catch wiring regressions that unit tests of each piece would miss.

How:
  Use :class:`typer.testing.CliRunner` with ``IMAPClient`` replaced by
  :class:`FakeImapBackend`. The watch command is stopped by sending ``SIGTERM``
  to the test process right after the first message is printed.
"""
from __future__ import annotations

import os
import signal

import pytest
from imapclient.exceptions import IMAPClientError
from typer.testing import CliRunner

from fakes import FIXTURE_MESSAGE
from mailwatch import cli
from mailwatch.cli import app


runner = CliRunner()


@pytest.fixture
def stop_after_first_message(monkeypatch: pytest.MonkeyPatch):
    original = cli._print_message

    def _print_and_terminate(message, logger):
        original(message, logger)
        os.kill(os.getpid(), signal.SIGTERM)

    monkeypatch.setattr("mailwatch.cli._print_message", _print_and_terminate)


def test_watch_prints_messages_until_terminated(backend, stop_after_first_message) -> None:
    backend.arrive(FIXTURE_MESSAGE)
    previous = signal.getsignal(signal.SIGTERM)

    result = runner.invoke(app, ["watch"])

    assert result.exit_code == 0, result.output
    assert "Subject: Hello" in result.stdout
    assert "Hello world!" in result.stdout
    assert backend.logged_out
    assert signal.getsignal(signal.SIGTERM) is previous


def test_watch_flags_override_file(backend, stop_after_first_message) -> None:
    backend.folders["Archive"].append(FIXTURE_MESSAGE)
    backend.arrive(FIXTURE_MESSAGE, folder="Archive")

    result = runner.invoke(
        app,
        [
            "watch",
            "--server",
            "imap.other.test:1143",
            "--username",
            "carol",
            "--password",
            "s3cret-pass",
            "--folder",
            "Archive",
            "--log-level",
            "ERROR",
        ],
    )

    assert result.exit_code == 0, result.output
    assert backend.connect_args["host"] == "imap.other.test"
    assert backend.connect_args["port"] == 1143
    assert backend.logged_in == ("carol", "s3cret-pass")
    assert backend.fetched == ["2:2"]


def test_watch_server_without_credentials_is_rejected(backend) -> None:
    result = runner.invoke(app, ["watch", "--server", "imap.other.test"])

    assert result.exit_code == 1
    assert "--username and --password are required" in result.output


def test_watch_missing_config_file(backend, tmp_path) -> None:
    result = runner.invoke(app, ["watch", "--config", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 1
    assert "configuration error" in result.output


def test_watch_connect_failure_exits_non_zero(backend) -> None:
    backend.password = "another-password"

    result = runner.invoke(app, ["watch"])

    assert result.exit_code == 1
    assert "failed to connect" in result.output
    assert "s3cret-pass" not in result.output


def test_watch_fatal_loop_error_exits_non_zero(backend) -> None:
    backend.fail("idle", IMAPClientError("IDLE rejected"), times=2)

    result = runner.invoke(app, ["watch"])

    assert result.exit_code == 1
    assert "watch loop failed" in result.output


def test_folders_lists_counts(backend) -> None:
    backend.folders["Archive"].append(FIXTURE_MESSAGE)

    result = runner.invoke(app, ["folders"])

    assert result.exit_code == 0, result.output
    lines = result.stdout.splitlines()
    assert "Archive\t1 messages, 1 unseen" in lines
    assert "INBOX\t0 messages, 0 unseen" in lines
    assert "[Gmail]" in lines
