"""Expose the public utility surface for mailwatch.

What:
  Re-export the structured logging helpers that every component receives at
  construction time.

Why:
  Call sites import ``from mailwatch.utils import get_logger`` without depending
  on the module layout.
"""

from .logging import JsonLogger, get_logger, redact_secrets

__all__ = ["JsonLogger", "get_logger", "redact_secrets"]
