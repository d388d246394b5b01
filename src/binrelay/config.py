"""Layered configuration loading for binrelay.

Settings are merged from several sources, later sources overriding earlier
ones:

    defaults < configuration file < environment variables < explicit overrides

Files are YAML or JSON and may be flat or sectioned. A sectioned file

    batch:
      size: 500
      timeout: 2.5
    compression:
      algorithm: lz4
    logging:
      level: DEBUG

flattens to ``batch_size``, ``batch_timeout``, ``compression_algorithm`` and
``logging_level``, the same keys a flat file or the environment
(``BINRELAY_BATCH_SIZE=500``) would use.

Usage:
    >>> from binrelay.config import load_settings
    >>>
    >>> settings = load_settings("binrelay.yaml", overrides={"batch_size": 50})
    >>> settings.batch.batch_size
    50
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from binrelay.batching.base import BatchConfig
from binrelay.errors import ConfigError, ValidationError


logger = logging.getLogger(__name__)

SECTIONS = ("batch", "compression", "queue", "delivery", "overflow", "logging")

# Sectioned keys whose flattened name differs from the field name.
_ALIASES = {
    "delivery_capacity": "overflow_capacity",
    "logging_fmt": "logging_format",
}

_LOG_FORMATS = ("console", "json")


# =============================================================================
# Settings
# =============================================================================


@dataclass
class LoggingConfig:
    """Logging configuration used by the CLI.

    Attributes:
        level: Standard level name.
        format: ``console`` for human-readable lines, ``json`` for one JSON
            object per record.
    """

    level: str = "INFO"
    format: str = "console"

    def validate(self) -> None:
        if not isinstance(logging.getLevelName(str(self.level).upper()), int):
            raise ValidationError(f"unknown level '{self.level}'", "logging_level")
        if self.format not in _LOG_FORMATS:
            raise ValidationError(
                f"unknown format '{self.format}', expected one of {', '.join(_LOG_FORMATS)}",
                "logging_format",
            )


@dataclass
class Settings:
    """Complete runtime configuration."""

    batch: BatchConfig = field(default_factory=BatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def known_keys(cls) -> set[str]:
        return BatchConfig.field_names() | {f"logging_{f.name}" for f in fields(LoggingConfig)}

    @classmethod
    def from_flat(cls, data: Mapping[str, Any]) -> "Settings":
        """Build settings from flat keys, ignoring unknown ones."""
        batch_keys = BatchConfig.field_names()
        log_keys = {f.name for f in fields(LoggingConfig)}
        batch: dict[str, Any] = {}
        log: dict[str, Any] = {}
        for key, value in data.items():
            if key in batch_keys:
                batch[key] = _coerce(key, value)
            elif key.startswith("logging_") and key[len("logging_") :] in log_keys:
                log[key[len("logging_") :]] = value
        return cls(batch=BatchConfig.from_dict(batch), logging=LoggingConfig(**log))

    def validate(self) -> None:
        """Validate every section.

        Raises:
            ValidationError: On the first invalid value.
        """
        self.batch.validate()
        self.logging.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch": self.batch.to_dict(),
            "logging": {"level": self.logging.level, "format": self.logging.format},
        }


def _coerce(key: str, value: Any) -> Any:
    if key in ("compression_enabled", "queue_enabled") and isinstance(value, int):
        return bool(value)
    if key in ("compression_algorithm", "queue_connection", "queue_name") and isinstance(
        value, (int, float)
    ):
        return str(value)
    if key in ("batch_timeout", "delivery_timeout") and isinstance(value, int) and not isinstance(
        value, bool
    ):
        return float(value)
    return value


# =============================================================================
# Configuration Sources
# =============================================================================


class ConfigSource(ABC):
    """A provider of flat configuration keys."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Load configuration from the source.

        Returns:
            Flat dictionary of configuration values.
        """
        pass


class FileConfigSource(ConfigSource):
    """YAML or JSON configuration file, flat or sectioned."""

    def __init__(self, path: str | Path, *, required: bool = True) -> None:
        """Initialize file source.

        Args:
            path: Path to the configuration file.
            required: Raise if the file does not exist.
        """
        self._path = Path(path)
        self._required = required

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Load and flatten the file.

        Raises:
            ConfigError: If the file is missing (when required), unreadable,
                malformed or not a mapping.
        """
        if not self._path.exists():
            if self._required:
                raise ConfigError(f"Configuration file not found: {self._path}")
            return {}

        suffix = self._path.suffix.lower()
        try:
            content = self._path.read_text(encoding="utf-8")
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content)
            elif suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(f"Unsupported file format: {suffix or self._path.name}")
        except ConfigError:
            raise
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config {self._path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"Configuration file {self._path} must contain a mapping")
        return flatten(data)


class EnvConfigSource(ConfigSource):
    """Environment variable configuration source.

    Example:
        BINRELAY_BATCH_SIZE=500
        BINRELAY_COMPRESSION_LEVELS={"gzip": 9}

        Will produce:
        {"batch_size": 500, "compression_levels": {"gzip": 9}}
    """

    def __init__(self, prefix: str = "BINRELAY", environ: Mapping[str, str] | None = None) -> None:
        self._prefix = f"{prefix}_"
        self._environ = environ

    def load(self) -> dict[str, Any]:
        environ = os.environ if self._environ is None else self._environ
        result: dict[str, Any] = {}
        for key, value in environ.items():
            if key.startswith(self._prefix):
                name = key[len(self._prefix) :].lower()
                result[_ALIASES.get(name, name)] = self._parse_value(value)
        return result

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        # Number
        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        # Boolean
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        # None
        if value.lower() in ("null", "none", ""):
            return None

        # JSON array/object
        if value.startswith(("[", "{")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value


class DictConfigSource(ConfigSource):
    """In-memory overrides, flat or sectioned."""

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = data

    def load(self) -> dict[str, Any]:
        return flatten(self._data)


def flatten(data: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten known sections to ``section_key`` names.

    Only the top level is flattened, so mapping values such as
    ``compression.levels`` are kept intact.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        key = str(key)
        if key in SECTIONS and isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                name = f"{key}_{sub_key}"
                result[_ALIASES.get(name, name)] = sub_value
        else:
            result[_ALIASES.get(key, key)] = value
    return result


# =============================================================================
# Loading
# =============================================================================


def load_settings(
    path: str | Path | None = None,
    *,
    env_prefix: str = "BINRELAY",
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from defaults, a file, the environment and overrides.

    Args:
        path: Configuration file. A path that does not exist is an error.
        env_prefix: Prefix of the environment variables to read.
        overrides: Values applied last, flat or sectioned. ``None`` values
            are skipped so unset CLI options do not mask other sources.
        environ: Environment mapping, defaults to ``os.environ``.

    Returns:
        Validated settings.

    Raises:
        ConfigError: If the file cannot be loaded.
        ValidationError: If a merged value is invalid.
    """
    sources: list[ConfigSource] = []
    if path is not None:
        sources.append(FileConfigSource(path))
    sources.append(EnvConfigSource(env_prefix, environ))
    if overrides:
        sources.append(
            DictConfigSource({k: v for k, v in overrides.items() if v is not None})
        )

    merged: dict[str, Any] = {}
    for source in sources:
        merged.update(source.load())

    known = Settings.known_keys()
    for key in sorted(set(merged) - known):
        logger.warning("Ignoring unknown configuration key '%s'", key)

    settings = Settings.from_flat(merged)
    settings.validate()
    return settings
