"""Strict loader for the mailwatch configuration document.

What:
  Locate, parse, validate, and cache ``mailwatch.yaml``, and build a
  configuration directly from command-line values when no file is used.

Why:
  The configuration carries credentials and lives outside the package. A single
  loader enforces the same precedence order and the same validation whether the
  values come from disk or from the CLI.

How:
  Resolve candidate paths from an explicit argument, the
  ``MAILWATCH_CONFIG_PATH`` environment variable, and well-known defaults. Parse
  YAML with :func:`yaml.safe_load`, validate through
  :class:`~mailwatch.config.schema.WatchConfig`, and memoise the result.

Interfaces:
  :func:`load_config`, :func:`get_config`, :func:`reset_config`,
  :func:`config_from_values`, :func:`parse_address`, :class:`ConfigLoadError`.

Invariants:
  - Every returned object has passed strict pydantic validation.
  - The cache honours explicit ``reload`` requests and path changes.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError

from .schema import WatchConfig


class ConfigLoadError(Exception):
    """Raised when the configuration cannot be located, parsed, or validated."""


_CONFIG_ENV = "MAILWATCH_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("mailwatch.yaml"),
    Path("~/.config/mailwatch/config.yaml"),
    Path("/etc/mailwatch/config.yaml"),
)
_CONFIG_CACHE: Optional[Tuple[Path, WatchConfig]] = None


def _candidate_paths() -> Iterable[Path]:
    """Yield configuration file locations in priority order, deduplicated."""

    seen: set[Path] = set()
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate
    for default in _DEFAULT_LOCATIONS:
        candidate = default.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_payload(text: str, source: Path) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"{source} must contain a mapping at the top-level")
    return payload


def _validate(payload: dict[str, Any], source: str) -> WatchConfig:
    try:
        return WatchConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid configuration in {source}: {exc}") from exc


def _load_from_path(path: Path) -> WatchConfig:
    try:
        text = path.read_text()
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise ConfigLoadError(f"Unable to read configuration file {path}: {exc}") from exc
    return _validate(_parse_payload(text, path), str(path))


def load_config(path: Optional[Path | str] = None, *, reload: bool = False) -> WatchConfig:
    """Resolve, parse, and cache the configuration.

    What:
      Locate ``mailwatch.yaml`` using the precedence chain and return a
      validated :class:`WatchConfig`.

    Why:
      The CLI and tests both need the same resolution rules; caching avoids
      re-reading the file while ``reload`` forces a fresh read.

    Args:
      path: Optional explicit file location.
      reload: Bypass the cache when ``True``.

    Returns:
      The validated configuration.

    Raises:
      ConfigLoadError: If an explicit ``path`` is missing or invalid, if no
        candidate exists, or if the first existing one is invalid.
    """

    global _CONFIG_CACHE

    requested = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _CONFIG_CACHE is not None:
        cached_path, cached_config = _CONFIG_CACHE
        if requested is None or cached_path == requested:
            return cached_config

    if requested is not None:
        config = _load_from_path(requested)
        _CONFIG_CACHE = (requested, config)
        return config

    searched: list[str] = []
    for candidate in _candidate_paths():
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_from_path(candidate)
        _CONFIG_CACHE = (candidate, config)
        return config

    raise ConfigLoadError(f"Unable to locate mailwatch.yaml (searched: {', '.join(searched) or '<none>'})")


def get_config() -> WatchConfig:
    """Return the cached configuration, loading it on demand."""

    return load_config()


def reset_config() -> None:
    """Clear the configuration cache."""

    global _CONFIG_CACHE
    _CONFIG_CACHE = None


def parse_address(address: str, *, default_port: int = 993) -> Tuple[str, int]:
    """Split ``host[:port]`` into its parts.

    Raises:
      ConfigLoadError: When the host is empty or the port is not an integer.
    """

    host, sep, port = address.strip().rpartition(":")
    if not sep:
        host, port = port, ""
    if not host:
        raise ConfigLoadError(f"Invalid server address: {address!r}")
    if not port:
        return host, default_port
    try:
        return host, int(port)
    except ValueError as exc:
        raise ConfigLoadError(f"Invalid port in server address: {address!r}") from exc


def config_from_values(
    *,
    server: str,
    username: str,
    password: str,
    folder: str = "INBOX",
    base: Optional[WatchConfig] = None,
) -> WatchConfig:
    """Build a :class:`WatchConfig` from CLI flags, optionally over ``base``.

    Values from ``base`` (a loaded file) are kept for every section the flags
    do not cover.
    """

    host, port = parse_address(server)
    payload: dict[str, Any] = base.model_dump(mode="json") if base is not None else {}
    imap = dict(payload.get("imap") or {})
    imap.update(
        host=host,
        port=port,
        username=username,
        password=password,
        password_env=None,
        folder=folder,
    )
    payload["imap"] = imap
    return _validate(payload, "command line")
