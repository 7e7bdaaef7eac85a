"""
Configuration management for changelens.

Every option is declared once in ``OPTION_TABLE``. ``resolve_config`` merges
the sources in order and returns one validated ``ChangelensConfig`` before any
other component runs.

Sources, lowest to highest priority:
    1. built-in defaults
    2. environment variables (``CHANGELENS_*``)
    3. configuration file (``.changelens.yaml``, ``.changelens`` or ``.env``)
    4. explicit overrides (command-line flags)
"""

import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Dict, Any, Tuple, Mapping, List, Callable

import yaml
from dotenv import dotenv_values

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHANGELENS_"
CONFIG_FILE_NAMES = ('.changelens.yaml', '.changelens.yml', '.changelens', '.env')


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('true', '1', 'yes', 'on'):
        return True
    if text in ('false', '0', 'no', 'off', ''):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    return int(str(value).strip())


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ConfigOption:
    name: str
    default: Any
    convert: Callable[[Any], Any]
    help: str = ""

    @property
    def env_var(self) -> str:
        return ENV_PREFIX + self.name.upper()


OPTION_TABLE: Tuple[ConfigOption, ...] = (
    ConfigOption('cache_enabled', True, _to_bool, "Read and write the result cache"),
    ConfigOption('state_dir', '.changelens', str, "Repository-relative state directory"),
    ConfigOption('max_cache_size_bytes', 100 * 1024 * 1024, _to_int, "Global cache size budget"),
    ConfigOption('max_age_days', 30, _to_int, "Entries older than this are pruned"),
    ConfigOption('max_entries_per_category', 2, _to_int, "Cap per per-analyzer category"),
    ConfigOption('max_changeset_entries', 2, _to_int, "Cap for the changeset category"),
    ConfigOption('concurrency', 8, _to_int, "Bounded fetcher ceiling"),
    ConfigOption('unified', 0, _to_int, "Context lines in fetched diffs"),
    ConfigOption('log_level', 'info', str, "Console log level"),
    ConfigOption('log_path', None, _to_optional_str, "Directory for log files"),
)

OPTIONS_BY_NAME: Dict[str, ConfigOption] = {option.name: option for option in OPTION_TABLE}


@dataclass
class ChangelensConfig:
    """Fully resolved configuration for one invocation."""

    cache_enabled: bool = True
    state_dir: str = '.changelens'
    max_cache_size_bytes: int = 100 * 1024 * 1024
    max_age_days: int = 30
    max_entries_per_category: int = 2
    max_changeset_entries: int = 2
    concurrency: int = 8
    unified: int = 0
    log_level: str = 'info'
    log_path: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If a value is out of range
        """
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if self.unified < 0:
            raise ConfigurationError("unified must not be negative")
        if self.max_cache_size_bytes < 0:
            raise ConfigurationError("max_cache_size_bytes must not be negative")
        if self.max_age_days < 0:
            raise ConfigurationError("max_age_days must not be negative")
        if self.max_entries_per_category < 1 or self.max_changeset_entries < 1:
            raise ConfigurationError("per-category entry limits must be at least 1")
        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        if not self.state_dir:
            raise ConfigurationError("state_dir must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def describe(self, sources: Optional[Mapping[str, str]] = None) -> List[str]:
        """Human readable ``name = value (source)`` lines."""
        sources = sources or {}
        lines = []
        for name, value in self.to_dict().items():
            lines.append(f"{name} = {value!r} ({sources.get(name, 'default')})")
        return lines


class ConfigurationLoader:
    """Handles loading configuration from the supported sources."""

    def __init__(self, cwd: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.environ = os.environ if environ is None else environ
        self.sources: Dict[str, str] = {}

    def load(self, config_path: Optional[str] = None,
             overrides: Optional[Mapping[str, Any]] = None) -> ChangelensConfig:
        """
        Load and validate configuration.

        Args:
            config_path: Optional explicit config file
            overrides: Values that win over every other source; None values are ignored

        Returns:
            Validated configuration

        Raises:
            ConfigurationError: If a source is unreadable or a value is invalid
        """
        raw: Dict[str, Any] = {option.name: option.default for option in OPTION_TABLE}
        self.sources = {}

        self._merge(raw, self._load_from_environment(), "environment")

        config_file = self._find_config_file(config_path)
        if config_file is not None:
            self._merge(raw, self._load_from_file(config_file), f"file {config_file}")
            logger.debug(f"Loaded configuration from {config_file}")

        if overrides:
            self._merge(raw, {k: v for k, v in overrides.items() if v is not None}, "override")

        config = ChangelensConfig(**self._convert(raw))
        config.validate()
        return config

    def _merge(self, target: Dict[str, Any], values: Mapping[str, Any], source: str) -> None:
        for key, value in values.items():
            if key not in OPTIONS_BY_NAME:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            target[key] = value
            self.sources[key] = source

    def _convert(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        converted = {}
        for name, value in raw.items():
            option = OPTIONS_BY_NAME[name]
            if value is None:
                value = option.default
            try:
                converted[name] = option.convert(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid value for {name}: {e}")
        return converted

    def _load_from_environment(self) -> Dict[str, str]:
        return self._select_env_style(self.environ)

    @staticmethod
    def _select_env_style(values: Mapping[str, Any]) -> Dict[str, Any]:
        config = {}
        for option in OPTION_TABLE:
            if option.env_var in values and values[option.env_var] is not None:
                config[option.name] = values[option.env_var]
        return config

    def _find_config_file(self, config_path: Optional[str]) -> Optional[Path]:
        if config_path:
            config_file = Path(config_path)
            if not config_file.is_absolute():
                config_file = self.cwd / config_file
            if not config_file.exists():
                raise ConfigurationError(f"Config file not found: {config_path}")
            return config_file

        current = self.cwd.resolve()
        while True:
            for name in CONFIG_FILE_NAMES:
                candidate = current / name
                if candidate.is_file():
                    return candidate
            if (current / '.git').exists() or current == current.parent:
                return None
            current = current.parent

    def _load_from_file(self, config_file: Path) -> Dict[str, Any]:
        try:
            if config_file.suffix in ('.yaml', '.yml'):
                return self._load_yaml(config_file)
            if config_file.name == '.env':
                return self._select_env_style(dotenv_values(config_file))
            return self._load_key_value(config_file)
        except ConfigurationError:
            raise
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {config_file}: {e}")

    def _load_yaml(self, config_file: Path) -> Dict[str, Any]:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {config_file} must contain a mapping")
        return {str(k).replace('-', '_'): v for k, v in data.items()}

    def _load_key_value(self, config_file: Path) -> Dict[str, str]:
        """Load ``key=value`` lines; keys are option names or CHANGELENS_* variables."""
        config = {}
        with open(config_file, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' not in line:
                    logger.warning(f"Invalid config line {line_num} in {config_file}: {line}")
                    continue
                key, value = line.split('=', 1)
                key = key.strip()
                if key.upper().startswith(ENV_PREFIX):
                    key = key[len(ENV_PREFIX):]
                config[key.lower()] = value.strip()
        return config


def resolve_config(overrides: Optional[Mapping[str, Any]] = None,
                   config_path: Optional[str] = None,
                   cwd: Optional[str] = None,
                   environ: Optional[Mapping[str, str]] = None) -> ChangelensConfig:
    """Resolve the configuration for one invocation."""
    return ConfigurationLoader(cwd=cwd, environ=environ).load(config_path, overrides)
