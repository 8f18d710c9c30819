"""Configuration resolver with layered priority.

Priority (highest to lowest):
1. CLI arguments
2. Environment variables (FILEINGEST_*)
3. Config files (user > system)
4. Defaults

The resolver returns raw values; ``resolve_ingest_settings`` turns them into
a typed, validated ``IngestSettings`` for the session.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from fileingest.core.errors import ConfigError

ALLOWED_LOGGING_LEVELS = frozenset({"quiet", "normal", "verbose", "debug"})
DEFAULT_LOGGING_LEVEL = "normal"

ENV_PREFIX = "FILEINGEST_"

CONFIG_TYPE_ANY = "any"
CONFIG_TYPE_STRING = "string"
CONFIG_TYPE_INT = "int"
CONFIG_TYPE_BOOL = "bool"
CONFIG_TYPE_LIST = "list"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ConfigSource:
    """Represents where a config value came from."""

    value: Any
    source: str  # 'cli' | 'env' | 'user_config' | 'system_config' | 'default'


@dataclass(frozen=True)
class ConfigKeySchema:
    """Schema metadata for a single config key (inferred from defaults)."""

    key_path: str
    type: str
    default: Any | None = None
    unknown: bool = False


def _infer_schema_type(value: Any) -> str:
    if isinstance(value, bool):
        return CONFIG_TYPE_BOOL
    if isinstance(value, int):
        return CONFIG_TYPE_INT
    if isinstance(value, list):
        return CONFIG_TYPE_LIST
    if isinstance(value, str):
        return CONFIG_TYPE_STRING
    return CONFIG_TYPE_ANY


def _flatten_items(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    """Flatten nested dicts to dot-notation key paths.

    Lists and scalars are leaves; dicts recurse.
    """
    items: list[tuple[str, Any]] = []

    for key, value in data.items():
        key_path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, dict):
            items.extend(_flatten_items(value, key_path))
        else:
            items.append((key_path, value))

    return items


@dataclass(frozen=True)
class LoggingPolicy:
    """Resolved, immutable logging policy."""

    level_name: str  # quiet | normal | verbose | debug
    emit_info: bool
    emit_debug: bool
    color: bool
    sources: dict[str, ConfigSource]


def default_config() -> dict[str, Any]:
    """Default configuration."""
    home = Path.home()
    return {
        "logging": {
            "level": DEFAULT_LOGGING_LEVEL,
            "color": True,
        },
        "loader": {
            # 0 = every accepted file starts reading immediately
            "max_concurrent": 0,
            "chunk_size": 64 * 1024,
        },
        "validation": {
            "max_file_size": 10 * 1024 * 1024,
            "allowed_types": [
                "image/jpeg",
                "image/jpg",
                "image/png",
                "image/svg+xml",
                "image/gif",
                "image/webp",
            ],
        },
        "registry": {
            "max_id_length": 200,
        },
        "bridge": {
            "backup_key": "fileingest.mainImageBackup",
            "backup_max_age_seconds": 5 * 60,
            "cleanup_max_age_seconds": 60 * 60,
        },
        "diagnostics": {
            "enabled": False,
            "path": str(home / ".fileingest" / "diagnostics.jsonl"),
        },
        "storage": {
            "path": str(home / ".fileingest" / "state.json"),
        },
    }


class ConfigResolver:
    """Resolve configuration with strict layered priority.

    Example:
        resolver = ConfigResolver(
            cli_args={'loader': {'max_concurrent': 2}},
            user_config_path=Path('~/.config/fileingest/config.yaml'),
        )

        value, source = resolver.resolve('loader.max_concurrent')
        # value = 2, source = 'cli'
    """

    def __init__(
        self,
        cli_args: dict[str, Any] | None = None,
        user_config_path: Path | None = None,
        system_config_path: Path | None = None,
        defaults: dict[str, Any] | None = None,
    ) -> None:
        """Initialize config resolver.

        Args:
            cli_args: Arguments from CLI (highest priority, nested or dotted keys)
            user_config_path: Path to user config file
            system_config_path: Path to system config file
            defaults: Default values (lowest priority)
        """
        self.cli_args = cli_args or {}
        self.user_config_path = user_config_path or Path.home() / ".config/fileingest/config.yaml"
        self.system_config_path = system_config_path or Path("/etc/fileingest/config.yaml")
        self.defaults = defaults if defaults is not None else default_config()

        self._schema = {
            key_path: ConfigKeySchema(
                key_path=key_path,
                type=_infer_schema_type(value),
                default=value,
            )
            for key_path, value in _flatten_items(self.defaults)
        }

        self._user_config: dict[str, Any] | None = None
        self._system_config: dict[str, Any] | None = None

    def resolve(self, key: str) -> tuple[Any, str]:
        """Resolve config value with priority.

        Args:
            key: Config key (dot notation: 'loader.max_concurrent')

        Returns:
            (value, source) tuple

        Raises:
            ConfigError: If key not found in any source
        """
        value = self._from_cli(key)
        if value is not None:
            return value, "cli"

        value = self._from_env(key)
        if value is not None:
            return value, "env"

        value = self._get_nested(self._get_user_config(), key)
        if value is not None:
            return value, "user_config"

        value = self._get_nested(self._get_system_config(), key)
        if value is not None:
            return value, "system_config"

        value = self._get_nested(self.defaults, key)
        if value is not None:
            return value, "default"

        raise ConfigError(f"Config key '{key}' not found in any source")

    def resolve_or(self, key: str, fallback: Any) -> tuple[Any, str]:
        """Like resolve(), but return (fallback, 'fallback') for a missing key."""
        try:
            return self.resolve(key)
        except ConfigError:
            return fallback, "fallback"

    def resolve_logging_level(self) -> str:
        """Resolve and validate logging.level.

        Raises:
            ConfigError: If the resolved value is invalid.
        """
        level, _src = self._resolve_logging_level_and_source()
        return level

    def resolve_logging_policy(self) -> LoggingPolicy:
        """Resolve the canonical logging policy (side-effect free)."""
        level_name, src = self._resolve_logging_level_and_source()
        color_raw, _color_src = self.resolve_or("logging.color", True)
        return LoggingPolicy(
            level_name=level_name,
            emit_info=level_name != "quiet",
            emit_debug=level_name in {"verbose", "debug"},
            color=coerce_bool("logging.color", color_raw),
            sources={"level_name": src},
        )

    def _resolve_logging_level_and_source(self) -> tuple[str, ConfigSource]:
        key = "logging.level"
        value, source = self.resolve_or(key, None)
        if value is None:
            return DEFAULT_LOGGING_LEVEL, ConfigSource(DEFAULT_LOGGING_LEVEL, "default")

        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")
        norm = value.strip().lower()
        if norm not in ALLOWED_LOGGING_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOGGING_LEVELS))
            raise ConfigError(f"Invalid '{key}': {value!r}. Allowed values: {allowed}")
        return norm, ConfigSource(value=norm, source=source)

    def list_known_keys(self) -> list[str]:
        """Return a deterministic list of known keys (defaults-derived)."""
        return sorted(self._schema)

    def get_key_schema(self, key_path: str) -> ConfigKeySchema:
        """Return schema metadata; unknown keys come back as type 'any'."""
        known = self._schema.get(key_path)
        if known is not None:
            return known
        return ConfigKeySchema(key_path=key_path, type=CONFIG_TYPE_ANY, unknown=True)

    def validate_value(self, key_path: str, value: Any) -> None:
        """Validate a value against the schema (no coercion).

        Unknown keys and None are not validated.
        """
        schema = self.get_key_schema(key_path)
        if schema.unknown or value is None or schema.type == CONFIG_TYPE_ANY:
            return

        expected: dict[str, type | tuple[type, ...]] = {
            CONFIG_TYPE_STRING: str,
            CONFIG_TYPE_INT: int,
            CONFIG_TYPE_BOOL: bool,
            CONFIG_TYPE_LIST: list,
        }
        py_type = expected[schema.type]
        if schema.type == CONFIG_TYPE_INT and isinstance(value, bool):
            raise ConfigError(f"Config key '{key_path}' must be an int")
        if not isinstance(value, py_type):
            raise ConfigError(
                f"Config key '{key_path}' must be a {schema.type}, got {type(value).__name__}"
            )

    def resolve_all(self) -> dict[str, ConfigSource]:
        """Resolve all known keys plus any leaf found in CLI args or config files."""
        all_keys: set[str] = set(self.list_known_keys())
        all_keys.update(k for k, _v in _flatten_items(self.cli_args))
        all_keys.update(k for k, _v in _flatten_items(self._get_user_config()))
        all_keys.update(k for k, _v in _flatten_items(self._get_system_config()))

        result: dict[str, ConfigSource] = {}
        for key in sorted(all_keys):
            try:
                value, source = self.resolve(key)
            except ConfigError:
                continue
            result[key] = ConfigSource(value=value, source=source)
        return result

    def _from_cli(self, key: str) -> Any | None:
        if key in self.cli_args:
            return self.cli_args[key]
        return self._get_nested(self.cli_args, key)

    def _from_env(self, key: str) -> Any | None:
        """Environment variable format: FILEINGEST_LOADER_MAX_CONCURRENT."""
        env_key = f"{ENV_PREFIX}{key.upper().replace('.', '_')}"
        return os.environ.get(env_key)

    def _get_user_config(self) -> dict[str, Any]:
        if self._user_config is None:
            self._user_config = self._load_yaml(self.user_config_path)
        return self._user_config

    def _get_system_config(self) -> dict[str, Any]:
        if self._system_config is None:
            self._system_config = self._load_yaml(self.system_config_path)
        return self._system_config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _get_nested(self, data: dict[str, Any], key: str) -> Any | None:
        """Get nested value using dot notation.

        Example:
            data = {'loader': {'chunk_size': 4096}}
            _get_nested(data, 'loader.chunk_size') -> 4096
        """
        current: Any = data
        for part in key.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
            if current is None:
                return None
        return current


# ---------------------------------------------------------------------------
# Typed settings
# ---------------------------------------------------------------------------


def coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    s = str(value).strip().lower()
    if s in _TRUE_VALUES:
        return True
    if s in _FALSE_VALUES:
        return False
    raise ConfigError(f"Config key '{key}' must be a bool, got {value!r}")


def coerce_int(key: str, value: Any, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Config key '{key}' must be an int, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        number = int(value.strip())
    else:
        raise ConfigError(f"Config key '{key}' must be an int, got {value!r}")
    if number < minimum:
        raise ConfigError(f"Config key '{key}' must be >= {minimum}, got {number}")
    return number


def coerce_str_list(key: str, value: Any) -> tuple[str, ...]:
    # Environment values arrive as comma separated strings.
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = [str(part).strip() for part in value]
    else:
        raise ConfigError(f"Config key '{key}' must be a list, got {type(value).__name__}")
    return tuple(item for item in items if item)


def _coerce_str(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Config key '{key}' must be a non-empty string")
    return value.strip()


@dataclass(frozen=True)
class IngestSettings:
    """Validated runtime settings for one ingest session."""

    max_concurrent: int = 0
    chunk_size: int = 64 * 1024
    max_file_size: int = 10 * 1024 * 1024
    allowed_types: tuple[str, ...] = (
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/svg+xml",
        "image/gif",
        "image/webp",
    )
    max_id_length: int = 200
    backup_key: str = "fileingest.mainImageBackup"
    backup_max_age_seconds: int = 5 * 60
    cleanup_max_age_seconds: int = 60 * 60
    diagnostics_enabled: bool = False
    diagnostics_path: str = ""
    storage_path: str = ""


def resolve_ingest_settings(resolver: ConfigResolver | None = None) -> IngestSettings:
    """Resolve and validate every setting the session needs.

    Raises:
        ConfigError: If any value has the wrong type or range.
    """
    resolver = resolver or ConfigResolver()

    def _get(key: str) -> Any:
        value, _src = resolver.resolve(key)
        return value

    settings = IngestSettings(
        max_concurrent=coerce_int("loader.max_concurrent", _get("loader.max_concurrent")),
        chunk_size=coerce_int("loader.chunk_size", _get("loader.chunk_size"), minimum=1),
        max_file_size=coerce_int(
            "validation.max_file_size", _get("validation.max_file_size"), minimum=1
        ),
        allowed_types=coerce_str_list(
            "validation.allowed_types", _get("validation.allowed_types")
        ),
        max_id_length=coerce_int("registry.max_id_length", _get("registry.max_id_length"), minimum=16),
        backup_key=_coerce_str("bridge.backup_key", _get("bridge.backup_key")),
        backup_max_age_seconds=coerce_int(
            "bridge.backup_max_age_seconds", _get("bridge.backup_max_age_seconds")
        ),
        cleanup_max_age_seconds=coerce_int(
            "bridge.cleanup_max_age_seconds", _get("bridge.cleanup_max_age_seconds")
        ),
        diagnostics_enabled=coerce_bool("diagnostics.enabled", _get("diagnostics.enabled")),
        diagnostics_path=_coerce_str("diagnostics.path", _get("diagnostics.path")),
        storage_path=_coerce_str("storage.path", _get("storage.path")),
    )
    if not settings.allowed_types:
        raise ConfigError("Config key 'validation.allowed_types' must not be empty")
    return settings
