"""Application configuration loading and validation.

Reads ``slotwise.toml`` (or the file named by ``SLOTWISE_CONFIG``), resolves
``${VAR}`` references against the environment, fills gaps from well-known
environment variables, and returns a validated :class:`AppConfig`.

Example::

    [server]
    base_url = "https://calendar.example.com"

    [storage]
    backend = "postgres"
    database_url = "${DATABASE_URL}"

    [oauth.google]
    client_id = "${GOOGLE_CLIENT_ID}"
    client_secret = "${GOOGLE_CLIENT_SECRET}"
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_BASE_URL = "http://localhost:5000"
DEFAULT_CONFIG_FILENAME = "slotwise.toml"
CONFIG_PATH_ENV = "SLOTWISE_CONFIG"

# ${VAR_NAME} placeholders; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_VALID_BACKENDS = {"memory", "postgres"}
_VALID_LOG_FORMATS = {"text", "json"}
_OAUTH_PROVIDERS = ("google", "outlook")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class StorageConfig:
    """Storage backend selection from the [storage] section."""

    backend: str = "memory"
    database_url: str | None = None


@dataclass
class OAuthAppConfig:
    """OAuth client registration for one provider."""

    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str


@dataclass
class SyncConfig:
    """Provider import window, in days relative to now."""

    past_days: int = 30
    future_days: int = 90


@dataclass
class AppConfig:
    """Validated application configuration."""

    base_url: str = DEFAULT_BASE_URL
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    storage: StorageConfig = field(default_factory=StorageConfig)
    google: OAuthAppConfig | None = None
    outlook: OAuthAppConfig | None = None
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    http_timeout_seconds: float = 30.0

    def oauth_app(self, provider: str) -> OAuthAppConfig:
        """Return the OAuth registration for *provider* or raise ConfigError."""
        app = getattr(self, provider, None) if provider in _OAUTH_PROVIDERS else None
        if app is None:
            raise ConfigError(f"OAuth is not configured for provider: {provider}")
        return app


def resolve_env_vars(value: Any) -> Any:
    """Substitute ``${VAR_NAME}`` placeholders throughout a parsed TOML tree.

    Tables and arrays are rebuilt; only string leaves are rewritten.

    Raises
    ------
    ConfigError
        Naming every placeholder whose variable is unset.
    """
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value

    unset = [
        name for name in _ENV_VAR_PATTERN.findall(value) if os.environ.get(name) is None
    ]
    if unset:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(unset)}"
        )
    return _ENV_VAR_PATTERN.sub(lambda m: os.environ[m.group(1)], value)


def _require_table(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{key}] must be a table")
    return section


def _parse_non_negative_int(section: dict[str, Any], key: str, default: int, label: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{label}.{key} must be a non-negative integer, got {value!r}")
    return value


def _parse_oauth(
    oauth_section: dict[str, Any], provider: str, base_url: str
) -> OAuthAppConfig | None:
    section = oauth_section.get(provider, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[oauth.{provider}] must be a table")

    env_prefix = provider.upper()
    client_id = section.get("client_id") or os.environ.get(f"{env_prefix}_CLIENT_ID")
    client_secret = section.get("client_secret") or os.environ.get(f"{env_prefix}_CLIENT_SECRET")
    if not client_id and not client_secret:
        return None
    if not client_id or not client_secret:
        raise ConfigError(f"[oauth.{provider}] requires both client_id and client_secret")

    redirect_uri = section.get("redirect_uri") or (
        f"{base_url}/api/integrations/{provider}/callback"
    )
    return OAuthAppConfig(
        client_id=str(client_id).strip(),
        client_secret=str(client_secret).strip(),
        redirect_uri=str(redirect_uri).strip(),
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Build an :class:`AppConfig` from an already-parsed TOML mapping."""
    data = resolve_env_vars(data)

    server = _require_table(data, "server")
    base_url = str(
        server.get("base_url") or os.environ.get("BASE_URL") or DEFAULT_BASE_URL
    ).rstrip("/")
    cors_origins = server.get("cors_origins", ["http://localhost:5173"])
    if not isinstance(cors_origins, list) or not all(isinstance(o, str) for o in cors_origins):
        raise ConfigError("server.cors_origins must be a list of strings")

    storage_section = _require_table(data, "storage")
    database_url = storage_section.get("database_url") or os.environ.get("DATABASE_URL")
    backend = storage_section.get("backend") or ("postgres" if database_url else "memory")
    if backend not in _VALID_BACKENDS:
        raise ConfigError(
            f"storage.backend must be one of {sorted(_VALID_BACKENDS)}, got {backend!r}"
        )
    if backend == "postgres" and not database_url:
        raise ConfigError("storage.backend = 'postgres' requires storage.database_url")

    oauth_section = _require_table(data, "oauth")

    sync_section = _require_table(data, "sync")
    sync = SyncConfig(
        past_days=_parse_non_negative_int(sync_section, "past_days", 30, "sync"),
        future_days=_parse_non_negative_int(sync_section, "future_days", 90, "sync"),
    )

    logging_section = _require_table(data, "logging")
    log_format = logging_section.get("format", "text")
    if log_format not in _VALID_LOG_FORMATS:
        raise ConfigError(
            f"logging.format must be one of {sorted(_VALID_LOG_FORMATS)}, got {log_format!r}"
        )
    logging_config = LoggingConfig(
        level=str(logging_section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    timeout = data.get("http_timeout_seconds", 30.0)
    if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout <= 0:
        raise ConfigError(f"http_timeout_seconds must be a positive number, got {timeout!r}")

    return AppConfig(
        base_url=base_url,
        cors_origins=list(cors_origins),
        storage=StorageConfig(backend=backend, database_url=database_url),
        google=_parse_oauth(oauth_section, "google", base_url),
        outlook=_parse_oauth(oauth_section, "outlook", base_url),
        sync=sync,
        logging=logging_config,
        http_timeout_seconds=float(timeout),
    )


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from *path*, ``$SLOTWISE_CONFIG`` or ``./slotwise.toml``.

    When no file is named and ``./slotwise.toml`` does not exist, the
    configuration is built from environment variables and defaults alone.

    Raises
    ------
    ConfigError
        If a named file is missing, is not valid TOML, or fails validation.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if env_path:
            path = Path(env_path)
        elif Path(DEFAULT_CONFIG_FILENAME).is_file():
            path = Path(DEFAULT_CONFIG_FILENAME)

    if path is None:
        return parse_config({})

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return parse_config(data)
