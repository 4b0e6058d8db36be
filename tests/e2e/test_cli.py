"""End-to-end tests asserting the CLI module starts as operators run it.

What:
  Launch ``mailwatch.cli`` through ``python -m`` and validate observable
  behaviour that needs no IMAP server: the help text and the configuration
  error exit path.

Why:
  These tests ensure the entry point wiring and environment bootstrapping work
  when invoked the same way a service manager does.

How:
  Construct subprocess invocations with a controlled ``PYTHONPATH`` pointing to
  the in-repo source tree and assert on return codes and output.

Interfaces:
  ``test_cli_help``, ``test_cli_watch_rejects_missing_config``.

Invariants & Safety:
  - Tests run against the local source tree to avoid depending on installed
    packages.
  - Commands must finish without requiring network access.
"""

import os
import pathlib
import subprocess
import sys


PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]


def _run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    """Execute ``python -m mailwatch.cli`` with ``args`` and capture its output."""

    cmd = [sys.executable, "-m", "mailwatch.cli", *args]
    env = dict(os.environ)
    env["PYTHONPATH"] = f"{PROJECT_ROOT / 'mailwatch' / 'src'}{os.pathsep}{env.get('PYTHONPATH', '')}"
    return subprocess.run(cmd, text=True, capture_output=True, cwd=PROJECT_ROOT, env=env, timeout=60)


def test_cli_help() -> None:
    result = _run_cli("--help")

    assert result.returncode == 0
    assert "watch" in result.stdout
    assert "folders" in result.stdout


def test_cli_watch_rejects_missing_config(tmp_path: pathlib.Path) -> None:
    """Ensure ``watch`` exits with status 1 when ``--config`` names no file."""

    result = _run_cli("watch", "--config", str(tmp_path / "missing.yaml"))

    assert result.returncode == 1
    assert "configuration error" in result.stderr
    assert "missing.yaml" in result.stderr
