"""Contacts configuration loading and validation.

Resolves the data directory from ``CONTACTS_DIR`` (or ``~/.config/contacts``),
reads an optional ``config.toml`` from it, and returns a validated
``ContactsConfig`` dataclass.

Example ``config.toml``::

    [contacts]
    redirect_port = 8080

    [contacts.logging]
    level = "DEBUG"
    format = "json"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from contacts import ContactsError

CONFIG_FILENAME = "config.toml"
PEOPLE_DIRNAME = "people"
CREDENTIALS_FILENAME = "google_creds.json"
SYNC_CURSOR_FILENAME = "google_sync_token.txt"

DEFAULT_REDIRECT_PORT = 8080
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("text", "json")


class ConfigError(ContactsError):
    """Raised when contacts configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [contacts.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class ContactsConfig:
    """Resolved configuration for one contacts data directory."""

    data_dir: Path
    redirect_port: int = DEFAULT_REDIRECT_PORT
    logging: LoggingConfig | None = None

    def __post_init__(self) -> None:
        if self.logging is None:
            self.logging = LoggingConfig()

    @property
    def people_dir(self) -> Path:
        return self.data_dir / PEOPLE_DIRNAME

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / CREDENTIALS_FILENAME

    @property
    def sync_cursor_path(self) -> Path:
        return self.data_dir / SYNC_CURSOR_FILENAME

    def ensure_dir(self) -> None:
        """Create the data directory if it does not exist."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Failed to create data directory {self.data_dir}: {exc}") from exc


def default_data_dir() -> Path:
    """Return ``$CONTACTS_DIR`` or ``~/.config/contacts``."""
    override = os.environ.get("CONTACTS_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    try:
        home = Path.home()
    except RuntimeError:
        return Path(".contacts")
    return home / ".config" / "contacts"


def _parse_port(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"contacts.redirect_port must be an integer, got {raw!r}")
    if not 1 <= raw <= 65535:
        raise ConfigError(f"contacts.redirect_port must be between 1 and 65535, got {raw}")
    return raw


def _parse_logging(raw: Any) -> LoggingConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("[contacts.logging] must be a table")

    level = os.environ.get("CONTACTS_LOG_LEVEL") or raw.get("level", "INFO")
    fmt = os.environ.get("CONTACTS_LOG_FORMAT") or raw.get("format", "text")

    if not isinstance(level, str) or level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"Invalid log level {level!r}; expected one of: {', '.join(_LOG_LEVELS)}"
        )
    if not isinstance(fmt, str) or fmt.lower() not in _LOG_FORMATS:
        raise ConfigError(
            f"Invalid log format {fmt!r}; expected one of: {', '.join(_LOG_FORMATS)}"
        )
    return LoggingConfig(level=level.upper(), format=fmt.lower())


def load_config(data_dir: Path | None = None) -> ContactsConfig:
    """Load configuration for *data_dir* (default: :func:`default_data_dir`).

    A missing ``config.toml`` is not an error; defaults apply.

    Raises
    ------
    ConfigError
        If ``config.toml`` exists but cannot be parsed or holds invalid values.
    """
    data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
    config_path = data_dir / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.is_file():
        try:
            with open(config_path, "rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Failed to read {config_path}: {exc}") from exc

    section = raw.get("contacts", {})
    if not isinstance(section, dict):
        raise ConfigError(f"[contacts] in {config_path} must be a table")

    port = _parse_port(section.get("redirect_port", DEFAULT_REDIRECT_PORT))
    logging_config = _parse_logging(section.get("logging"))

    return ContactsConfig(data_dir=data_dir, redirect_port=port, logging=logging_config)
