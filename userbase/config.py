"""Configuration management for the user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .schema import SchemaOptions

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

_SCHEMA_ENV = {
    "USERBASE_REQUIRE_USERNAME": "require_username",
    "USERBASE_UNIQUE_EMAIL": "unique_email",
    "USERBASE_UNIQUE_USERNAME": "unique_username",
    "USERBASE_TIMESTAMPS": "timestamps",
    "USERBASE_ALLOW_EXTRA_FIELDS": "allow_extra_fields",
}


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def default_store_url() -> str:
    return f"sqlite:///{(_project_root() / 'data' / 'userbase.sqlite3').resolve(strict=False)}"


def _parse_flag(key: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"Invalid boolean value for {key}: {value!r}")


def _parse_int(key: str, value: object) -> int:
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer value for {key}: {value!r}") from exc


def _parse_float(key: str, value: object) -> float:
    try:
        parsed = float(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid number for {key}: {value!r}") from exc
    if parsed <= 0:
        raise ValueError(f"{key} must be positive")
    return parsed


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its document store."""

    store_url: str = field(default_factory=default_store_url)
    host: str = "0.0.0.0"
    port: int = 8000
    store_timeout: float = 5.0
    log_level: str = "INFO"
    schema: SchemaOptions = field(default_factory=SchemaOptions)

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw configuration file data."""

        known = {"store_url", "host", "port", "store_timeout", "log_level", "schema"}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        defaults = Settings()
        store_url = str(data.get("store_url") or defaults.store_url)
        if base_path is not None:
            store_url = _relative_to(store_url, base_path)

        schema_raw = data.get("schema") or {}
        if not isinstance(schema_raw, Mapping):
            raise ValueError("The 'schema' configuration section must be a mapping")
        schema_fields = set(SchemaOptions.__dataclass_fields__)
        unknown_schema = set(schema_raw.keys()) - schema_fields
        if unknown_schema:
            raise ValueError(f"Unknown schema options: {', '.join(sorted(unknown_schema))}")
        schema = SchemaOptions(
            **{key: _parse_flag(f"schema.{key}", value) for key, value in schema_raw.items()}
        )

        return Settings(
            store_url=store_url,
            host=str(data.get("host", defaults.host)),
            port=_parse_int("port", data.get("port", defaults.port)),
            store_timeout=_parse_float("store_timeout", data.get("store_timeout", defaults.store_timeout)),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
            schema=schema,
        )

    def with_environment(self, environ: Mapping[str, str]) -> "Settings":
        """Return a copy with ``USERBASE_*`` environment overrides applied."""

        updates: Dict[str, Any] = {}
        if environ.get("USERBASE_STORE_URL"):
            updates["store_url"] = environ["USERBASE_STORE_URL"].strip()
        if environ.get("USERBASE_HOST"):
            updates["host"] = environ["USERBASE_HOST"].strip()
        if environ.get("USERBASE_PORT"):
            updates["port"] = _parse_int("USERBASE_PORT", environ["USERBASE_PORT"])
        if environ.get("USERBASE_STORE_TIMEOUT"):
            updates["store_timeout"] = _parse_float("USERBASE_STORE_TIMEOUT", environ["USERBASE_STORE_TIMEOUT"])
        if environ.get("USERBASE_LOG_LEVEL"):
            updates["log_level"] = environ["USERBASE_LOG_LEVEL"].strip().upper()

        schema_updates = {
            attr: _parse_flag(key, environ[key])
            for key, attr in _SCHEMA_ENV.items()
            if environ.get(key, "").strip()
        }
        if schema_updates:
            updates["schema"] = replace(self.schema, **schema_updates)

        return replace(self, **updates) if updates else self


def _relative_to(store_url: str, base_path: Path) -> str:
    prefix = "sqlite:///"
    if not store_url.startswith(prefix):
        return store_url
    raw = store_url[len(prefix):]
    if not raw or raw == ":memory:" or Path(raw).expanduser().is_absolute():
        return store_url
    return f"{prefix}{(base_path / raw).resolve(strict=False)}"


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (_project_root() / "config" / "userbase.yaml").resolve(strict=False)
    return candidate


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from defaults, an optional YAML file and the environment.

    An explicitly named file (argument or ``USERBASE_CONFIG``) must exist; the
    default ``config/userbase.yaml`` is skipped when missing.
    """
    env = os.environ if environ is None else environ
    explicit = config_path or env.get("USERBASE_CONFIG")
    path = resolve_config_path(explicit)

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        settings = Settings.from_dict(raw, base_path=path.parent)
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {path}")
    else:
        settings = Settings()

    return settings.with_environment(env)


__all__ = ["Settings", "default_store_url", "load_settings", "resolve_config_path"]
