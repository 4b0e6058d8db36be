"""
Module: tests/unit/test_mailbox.py

What:
    Cover the mailbox facade: connect, watch, folder listing, and the
    disconnect ordering while the loop is blocked on an unread message.

Invariants & Safety Rules:
    - ``disconnect`` returns promptly even when nobody consumes messages.
    - ``disconnect`` is idempotent.
"""

import time

import pytest

from fakes import build_message
from mailwatch.mailbox import Mailbox


def test_watch_delivers_messages(backend, logger, config):
    mailbox = Mailbox(config, logger)
    mailbox.connect()
    done = mailbox.watch()

    backend.deliver(build_message("hi", "there"))
    message = mailbox.messages.recv(timeout=2)
    mailbox.disconnect()

    assert message.subject() == "hi"
    assert done.result(timeout=1) is None
    assert backend.logged_out


def test_disconnect_with_unread_message_does_not_hang(backend, logger, config):
    mailbox = Mailbox(config, logger)
    mailbox.connect()
    done = mailbox.watch()
    backend.deliver(build_message("unread", "body"))
    deadline = time.monotonic() + 2
    while backend.fetched != ["1:1"] and time.monotonic() < deadline:
        time.sleep(0.01)

    started = time.monotonic()
    mailbox.disconnect()
    mailbox.disconnect()

    assert time.monotonic() - started < 2
    assert done.done()
    assert backend.calls.count("logout") == 1


def test_watch_twice_is_rejected(backend, logger, config):
    mailbox = Mailbox(config, logger)
    mailbox.connect()
    mailbox.watch()
    try:
        with pytest.raises(RuntimeError):
            mailbox.watch()
    finally:
        mailbox.disconnect()


def test_messages_before_watch_is_an_error(backend, logger, config):
    with pytest.raises(RuntimeError):
        Mailbox(config, logger).messages


def test_folders_include_counts(backend, logger, config):
    backend.folders["Archive"].append(build_message("old", "mail"))
    mailbox = Mailbox(config, logger)
    mailbox.connect()
    try:
        folders = {folder.name: folder for folder in mailbox.folders()}
    finally:
        mailbox.disconnect()

    assert folders["Archive"].messages == 1
    assert folders["[Gmail]"].messages is None
