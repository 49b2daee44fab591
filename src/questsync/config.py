"""Sync service configuration loading and validation.

Reads ``questsync.toml`` (when present), resolves ``${VAR}`` references from
the environment, and returns a validated ``SyncServiceConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_FILENAME = "questsync.toml"
DEFAULT_PAGE_SIZE = 250
DEFAULT_MAX_PAGES = 4
DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_LOOKAHEAD_MONTHS = 3
# Tokens expiring within this margin are refreshed before use.
DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS = 300

# ${NAME} placeholders resolved from the environment.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Bad or missing configuration."""


@dataclass
class LoggingConfig:
    """Logging configuration from [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class GoogleConfig:
    """OAuth client credentials from [google] section.

    Both values are optional: without them stored access tokens are still
    used until they expire, but no refresh can happen.
    """

    client_id: str | None = None
    client_secret: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return f"GoogleConfig(client_id={self.client_id!r}, client_secret=<REDACTED>)"


@dataclass
class SyncConfig:
    """Sync window and fetch behaviour from [sync] section."""

    provider: str = "google"
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    lookahead_months: int = DEFAULT_LOOKAHEAD_MONTHS
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES
    fetch_concurrency: int = 1
    default_timezone: str = "UTC"
    token_refresh_margin_seconds: int = DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS
    default_quest_title: str = "Calendar Imports"


@dataclass
class DatabaseConfig:
    """Database target from [database] section.

    Connection parameters (host, credentials) come from ``DATABASE_URL`` or
    ``POSTGRES_*`` variables; only the database name lives in the file.
    """

    name: str = "questsync"


@dataclass
class SyncServiceConfig:
    """Parsed and validated configuration."""

    sync: SyncConfig = field(default_factory=SyncConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate(text: str) -> str:
    unresolved = [name for name in _ENV_VAR_PATTERN.findall(text) if name not in os.environ]
    if unresolved:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(unresolved)} "
            f"(original: {text!r})"
        )
    return _ENV_VAR_PATTERN.sub(lambda m: os.environ[m.group(1)], text)


def resolve_env_vars(value: Any) -> Any:
    """Substitute ``${VAR}`` references in every string of a decoded TOML tree.

    Every missing variable in a string is named in one ``ConfigError``.
    """
    if isinstance(value, str):
        return _interpolate(value)
    if isinstance(value, list):
        return list(map(resolve_env_vars, value))
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    return value


def _positive_int(section: dict[str, Any], key: str, default: int, *, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    provider = str(section.get("provider", "google")).strip().lower()
    if provider != "google":
        raise ConfigError(f"Unsupported sync.provider: {provider!r}. Only 'google' is available.")

    raw_lookback = section.get("lookback_days", DEFAULT_LOOKBACK_DAYS)
    try:
        lookback_days = int(raw_lookback)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid sync.lookback_days: {raw_lookback!r}") from exc
    if lookback_days < 0:
        raise ConfigError(f"Invalid sync.lookback_days: {lookback_days!r}. Must be >= 0.")

    page_size = _positive_int(section, "page_size", DEFAULT_PAGE_SIZE, path="sync")
    if page_size > 2500:
        raise ConfigError(f"Invalid sync.page_size: {page_size!r}. Google allows at most 2500.")

    timezone = _optional_text(section.get("default_timezone")) or "UTC"
    quest_title = _optional_text(section.get("default_quest_title")) or "Calendar Imports"

    return SyncConfig(
        provider=provider,
        lookback_days=lookback_days,
        lookahead_months=_positive_int(
            section, "lookahead_months", DEFAULT_LOOKAHEAD_MONTHS, path="sync"
        ),
        page_size=page_size,
        max_pages=_positive_int(section, "max_pages", DEFAULT_MAX_PAGES, path="sync"),
        fetch_concurrency=_positive_int(section, "fetch_concurrency", 1, path="sync"),
        default_timezone=timezone,
        token_refresh_margin_seconds=_positive_int(
            section,
            "token_refresh_margin_seconds",
            DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS,
            path="sync",
        ),
        default_quest_title=quest_title,
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=_optional_text(section.get("log_root")),
    )


def _parse_google(section: dict[str, Any]) -> GoogleConfig:
    client_id = _optional_text(section.get("client_id"))
    client_secret = _optional_text(section.get("client_secret"))
    # Fall back to the environment when the file leaves credentials out.
    if client_id is None:
        client_id = _optional_text(os.environ.get("GOOGLE_CLIENT_ID"))
    if client_secret is None:
        client_secret = _optional_text(os.environ.get("GOOGLE_CLIENT_SECRET"))
    return GoogleConfig(client_id=client_id, client_secret=client_secret)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return section


def parse_config(data: dict[str, Any]) -> SyncServiceConfig:
    """Validate an already-decoded TOML mapping."""
    data = resolve_env_vars(data)

    database_section = _section(data, "database")
    db_name = str(database_section.get("name", "questsync")).strip()
    if not db_name:
        raise ConfigError("database.name must be a non-empty string")

    return SyncServiceConfig(
        sync=_parse_sync(_section(data, "sync")),
        google=_parse_google(_section(data, "google")),
        database=DatabaseConfig(name=db_name),
        logging=_parse_logging(_section(data, "logging")),
    )


def load_config(config_path: Path | None = None) -> SyncServiceConfig:
    """Load and validate sync configuration.

    Parameters
    ----------
    config_path:
        Path to a TOML file, or a directory containing ``questsync.toml``.
        When ``None``, ``QUESTSYNC_CONFIG`` is consulted; without either,
        defaults (plus ``GOOGLE_CLIENT_ID`` / ``GOOGLE_CLIENT_SECRET``) are
        returned.

    Raises
    ------
    ConfigError
        If an explicit file is missing, contains invalid TOML, or fails
        validation.
    """
    if config_path is None:
        env_path = os.environ.get("QUESTSYNC_CONFIG")
        if not env_path:
            return parse_config({})
        config_path = Path(env_path)

    toml_path = config_path / DEFAULT_CONFIG_FILENAME if config_path.is_dir() else config_path
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
