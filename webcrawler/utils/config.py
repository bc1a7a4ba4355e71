"""
Configuration management for the web crawler system.
"""

import yaml
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union, get_args, get_origin

from ..errors import ConfigurationError

DEFAULT_USER_AGENT = "webcrawler/1.0"


@dataclass(frozen=True)
class CrawlConfiguration:
    """Configuration for crawler behavior. Read-only for the whole run."""
    worker_count: int = 4
    max_depth: int = 2
    max_retries: int = 2
    per_request_delay: float = 0.0
    allowed_domains: FrozenSet[str] = frozenset()
    timeout: Optional[float] = None
    respect_robots: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0
    max_content_size: int = 10 * 1024 * 1024
    progress_interval: float = 30.0

    def __post_init__(self):
        # YAML hands us lists; keep the frozen type
        domains = self.allowed_domains
        if isinstance(domains, str):
            domains = domains.split(',')
        object.__setattr__(
            self, 'allowed_domains',
            frozenset(d.strip().lower() for d in domains if d and d.strip())
        )

    def validate(self) -> 'CrawlConfiguration':
        """Raise ConfigurationError for out-of-range values."""
        if self.worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")

        if self.max_depth < 0:
            raise ConfigurationError("max_depth must be non-negative")

        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")

        if self.per_request_delay < 0:
            raise ConfigurationError("per_request_delay must be non-negative")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

        if self.max_content_size <= 0:
            raise ConfigurationError("max_content_size must be positive")

        if self.progress_interval < 0:
            raise ConfigurationError("progress_interval must be non-negative")

        if not self.user_agent:
            raise ConfigurationError("user_agent must not be empty")

        return self

    def with_allowed_domains(self, domains: Iterable[str]) -> 'CrawlConfiguration':
        return replace(self, allowed_domains=frozenset(domains))


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: Optional[int] = None
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlConfiguration = field(default_factory=CrawlConfiguration)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _matches_type(value: Any, expected) -> bool:
    """Check a raw YAML/CLI value against a dataclass field annotation."""
    origin = get_origin(expected)
    if origin is Union:
        return any(_matches_type(value, arg) for arg in get_args(expected))
    if expected is type(None):
        return value is None
    if origin in (frozenset, set, list):
        # Domain lists may also be given as one comma separated string
        return isinstance(value, str) or (
            isinstance(value, (list, tuple, set, frozenset))
            and all(isinstance(v, str) for v in value)
        )
    if expected is bool:
        return isinstance(value, bool)
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if expected is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, expected)


def _type_name(expected) -> str:
    args = [a for a in get_args(expected) if a is not type(None)]
    if get_origin(expected) is Union and len(args) == 1:
        return _type_name(args[0])
    if get_origin(expected) in (frozenset, set, list):
        return "list of strings"
    return getattr(expected, '__name__', str(expected))


def _build_section(section_cls, data: Optional[Dict[str, Any]], name: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping")

    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in section '{name}': {', '.join(sorted(unknown))}"
        )

    types = {f.name: f.type for f in fields(section_cls)}
    for key, value in data.items():
        if not _matches_type(value, types[key]):
            raise ConfigurationError(
                f"Invalid value for '{name}.{key}': expected {_type_name(types[key])}, "
                f"got {value!r}"
            )

    try:
        return section_cls(**data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid section '{name}': {e}") from e


class ConfigManager:
    """Manages configuration loading and validation."""

    SECTIONS = {
        'crawler': CrawlConfiguration,
        'logging': LoggingConfig,
        'monitoring': MonitoringConfig,
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[Config] = None

    def load_config(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Config:
        """
        Load configuration from the YAML file (if any) and apply overrides.

        Args:
            overrides: Per-section values that win over the file, e.g.
                {'crawler': {'worker_count': 8}}. None values are ignored.
        """
        config_data: Dict[str, Any] = {}

        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")

            try:
                with open(self.config_path, 'r') as file:
                    config_data = yaml.safe_load(file) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Cannot parse {self.config_path}: {e}") from e

            if not isinstance(config_data, dict):
                raise ConfigurationError(f"{self.config_path} must contain a mapping")

        unknown = set(config_data) - set(self.SECTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")

        merged: Dict[str, Dict[str, Any]] = {}
        for name in self.SECTIONS:
            section = config_data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"Section '{name}' must be a mapping")
            section = dict(section)
            for key, value in ((overrides or {}).get(name) or {}).items():
                if value is not None:
                    section[key] = value
            merged[name] = section

        self._config = Config(**{
            name: _build_section(section_cls, merged[name], name)
            for name, section_cls in self.SECTIONS.items()
        })

        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded")

        self._config.crawler.validate()

        level = self._config.logging.level.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(f"Unknown log level: {self._config.logging.level}")

        port = self._config.monitoring.prometheus_port
        if port is not None and not (0 < port < 65536):
            raise ConfigurationError("prometheus_port must be between 1 and 65535")

        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: Optional[str] = None,
                overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config(overrides)
