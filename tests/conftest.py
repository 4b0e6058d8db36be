"""Pytest configuration shared by every suite.

What:
  Establish project import paths and point the configuration loader at the
  canned ``tests/data/config.yaml`` for every test.

Why:
  The tests import the ``mailwatch`` package from the source tree rather than
  an installed wheel, and the loader memoises its result globally. Without an
  explicit reset, tests could depend on execution order.

How:
  Prepend ``mailwatch/src`` to ``sys.path`` at import time and define the
  autouse :func:`watch_config` fixture that sets ``MAILWATCH_CONFIG_PATH`` and
  clears the cache before and after each test.

Interfaces:
  :func:`watch_config` (pytest fixture), ``CONFIG_PATH``.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailwatch" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailwatch.config.loader import reset_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def watch_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test."""

    monkeypatch.setenv("MAILWATCH_CONFIG_PATH", str(CONFIG_PATH))
    monkeypatch.delenv("MAILWATCH_PASSWORD", raising=False)
    reset_config()
    try:
        yield
    finally:
        reset_config()
