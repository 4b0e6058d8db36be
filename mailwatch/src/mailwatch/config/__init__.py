"""mailwatch configuration package.

What:
  Provide the import surface for configuration loading and the pydantic schema.

Why:
  Callers go through the schema types so credentials and tuning values are
  validated before any connection is attempted.

Interfaces:
  - load_config / get_config / reset_config: resolve and cache ``mailwatch.yaml``.
  - config_from_values / parse_address: build a configuration from CLI flags.
  - WatchConfig / ImapSettings / WatchSettings / LoggingSettings: schema models.
  - ConfigLoadError: raised for every loading or validation failure.
"""

from .loader import (
    ConfigLoadError,
    config_from_values,
    get_config,
    load_config,
    parse_address,
    reset_config,
)
from .schema import ImapSettings, LoggingSettings, WatchConfig, WatchSettings

__all__ = [
    "ConfigLoadError",
    "config_from_values",
    "get_config",
    "load_config",
    "parse_address",
    "reset_config",
    "ImapSettings",
    "LoggingSettings",
    "WatchConfig",
    "WatchSettings",
]
