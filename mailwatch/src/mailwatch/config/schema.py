"""Pydantic models describing the mailwatch configuration document."""
from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ImapSettings(BaseModel):
    """Server endpoint, credentials, and the folder to watch."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: int = Field(default=993, gt=0, lt=65536)
    ssl: bool = True
    username: str
    password: Optional[str] = None
    password_env: Optional[str] = None
    folder: str = "INBOX"
    timeout: Optional[float] = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def _resolve_password(self) -> "ImapSettings":
        if self.password is None and self.password_env:
            self.password = os.environ.get(self.password_env)
        if not self.password:
            raise ValueError("imap.password (or imap.password_env) must be provided")
        return self

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class WatchSettings(BaseModel):
    """Tuning knobs for the watch loop."""

    model_config = ConfigDict(extra="forbid")

    idle_refresh_seconds: Optional[float] = Field(default=1500.0, gt=0)
    event_poll_seconds: float = Field(default=0.2, gt=0)
    idle_check_seconds: float = Field(default=1.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingSettings(BaseModel):
    """Log threshold and protocol trace switch."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"
    protocol_trace: bool = False


class WatchConfig(BaseModel):
    """Root configuration loaded from ``mailwatch.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    imap: ImapSettings
    watch: WatchSettings = Field(default_factory=WatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
