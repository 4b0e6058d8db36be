"""mailwatch command-line interface.

What:
  Provide the Typer application with the ``watch`` and ``folders`` commands.
  ``watch`` connects to the configured folder, prints the subject and plain
  text body of every new message, and runs until interrupted or until the
  watch loop gives up. ``folders`` lists what the server offers.

Why:
  Operators run mailwatch from a shell or a service manager, so exit codes and
  signal handling have to follow shell conventions: ``SIGINT``/``SIGTERM``
  cancel the loop cleanly and a fatal loop error exits non-zero.

How:
  Resolve the configuration from flags (``--server`` and friends) on top of an
  optional YAML file, build a :class:`~mailwatch.mailbox.Mailbox`, install the
  signal handlers, and drain the message channel on the main thread.

Interfaces:
  ``app`` (Typer application), ``watch``, ``folders``, ``main``.

Invariants & Safety:
  - Exit codes: ``0`` after a clean stop, ``1`` on configuration, connection,
    or unrecoverable watch errors.
  - The password never reaches the log stream; it is registered for redaction
    before the connection is dialled.
"""
from __future__ import annotations

import signal
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import typer

from .config import ConfigLoadError, WatchConfig, config_from_values, load_config
from .errors import ConnectError, DecodeError, WatchLoopFatal
from .mailbox import Mailbox
from .message import Message
from .utils.logging import JsonLogger, attach_protocol_trace, detach_protocol_trace, get_logger


app = typer.Typer(help="Watch an IMAP folder for new messages")


def _resolve_config(
    *,
    config_path: Optional[Path],
    server: Optional[str],
    username: Optional[str],
    password: Optional[str],
    folder: Optional[str],
) -> WatchConfig:
    """Merge command-line flags over the configuration file.

    Without ``--server`` the file is mandatory. With ``--server`` the file is
    only read when ``--config`` names it explicitly, and ``--username`` plus
    ``--password`` become required.
    """

    if server is None:
        config = load_config(config_path)
        if folder is not None:
            imap = config.imap.model_copy(update={"folder": folder})
            config = config.model_copy(update={"imap": imap})
        return config
    if not username or not password:
        raise ConfigLoadError("--username and --password are required with --server")
    base = load_config(config_path) if config_path is not None else None
    return config_from_values(
        server=server,
        username=username,
        password=password,
        folder=folder or (base.imap.folder if base is not None else "INBOX"),
        base=base,
    )


def _make_logger(config: WatchConfig, level: Optional[str]) -> JsonLogger:
    logger = get_logger("mailwatch", level=level or config.logging.level)
    logger.add_secret(config.imap.password)
    return logger


def _install_signal_handlers(on_signal: Callable[[], None]) -> Dict[int, Any]:
    previous: Dict[int, Any] = {}

    def _handler(signum: int, frame: Any) -> None:
        on_signal()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, _handler)
        except ValueError:
            # Only the main thread may install handlers.
            continue
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _print_message(message: Message, logger: JsonLogger) -> None:
    try:
        subject = message.subject()
    except DecodeError as exc:
        logger.error("failed to decode subject", error=str(exc))
        subject = message.header("Subject") or ""
    typer.echo(f"Subject: {subject}")
    try:
        typer.echo(message.plain_text())
    except DecodeError:
        logger.info("message has no plain text body", subject=subject)
    typer.echo("")


def _finish(done: "Future[None]", logger: JsonLogger) -> int:
    try:
        done.result()
    except WatchLoopFatal as exc:
        logger.error("watch loop failed", error=str(exc))
        return 1
    return 0


@app.command("watch")
def watch(
    server: Optional[str] = typer.Option(None, "--server", help="IMAP server as host:port"),
    username: Optional[str] = typer.Option(None, "--username", help="Login name"),
    password: Optional[str] = typer.Option(
        None, "--password", envvar="MAILWATCH_PASSWORD", help="Login password"
    ),
    folder: Optional[str] = typer.Option(None, "--folder", help="Folder to watch (default INBOX)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to mailwatch.yaml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARN or ERROR"),
) -> None:
    """Watch the folder and print every new message until interrupted."""

    try:
        config = _resolve_config(
            config_path=config_path, server=server, username=username, password=password, folder=folder
        )
    except ConfigLoadError as exc:
        typer.echo(f"configuration error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    logger = _make_logger(config, log_level)
    trace = attach_protocol_trace(logger) if config.logging.protocol_trace else None
    mailbox = Mailbox(config, logger)
    previous = _install_signal_handlers(mailbox.stop)
    try:
        try:
            mailbox.connect()
        except ConnectError as exc:
            logger.error("failed to connect", error=str(exc), cause=exc.cause.value)
            raise typer.Exit(code=1) from exc
        done = mailbox.watch()
        for message in mailbox.messages:
            _print_message(message, logger)
        code = _finish(done, logger)
    finally:
        mailbox.disconnect()
        _restore_signal_handlers(previous)
        if trace is not None:
            detach_protocol_trace(trace)
    if code:
        raise typer.Exit(code=code)


@app.command("folders")
def folders(
    server: Optional[str] = typer.Option(None, "--server", help="IMAP server as host:port"),
    username: Optional[str] = typer.Option(None, "--username", help="Login name"),
    password: Optional[str] = typer.Option(
        None, "--password", envvar="MAILWATCH_PASSWORD", help="Login password"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to mailwatch.yaml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARN or ERROR"),
) -> None:
    """List the server's folders with message and unseen counts."""

    try:
        config = _resolve_config(
            config_path=config_path, server=server, username=username, password=password, folder=None
        )
    except ConfigLoadError as exc:
        typer.echo(f"configuration error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    logger = _make_logger(config, log_level)
    mailbox = Mailbox(config, logger)
    try:
        try:
            mailbox.connect()
        except ConnectError as exc:
            logger.error("failed to connect", error=str(exc), cause=exc.cause.value)
            raise typer.Exit(code=1) from exc
        for entry in mailbox.folders():
            counts = ""
            if entry.messages is not None:
                counts = f"\t{entry.messages} messages, {entry.unseen or 0} unseen"
            typer.echo(f"{entry.name}{counts}")
    finally:
        mailbox.disconnect()


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
