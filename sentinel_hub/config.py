"""
Hub configuration loaded from config.yml, with environment variable expansion.
"""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

import yaml

from sentinel_hub.errors import ConfigError

DB_URL_ENV = 'SENTINEL_DB_URL'
SINK_OUTPUTS = ('postgres', 'file')
LOG_FORMATS = ('json', 'text')


@dataclass
class SinkConfig:
    output: str = 'postgres'
    postgres_url: Optional[str] = None
    output_dir: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = 'INFO'
    format: str = 'json'
    file: Optional[str] = None


@dataclass
class HubConfig:
    host: str = '0.0.0.0'
    port: int = 8080
    data_file: str = 'agents.json'
    collection_interval: float = 30.0
    fetch_timeout: float = 5.0
    discovery_timeout: float = 3.0
    max_workers: int = 16
    cors_origins: List[str] = field(default_factory=lambda: ['*'])
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)

    def with_overrides(self, **overrides) -> 'HubConfig':
        """Copy with CLI options applied; None means 'not given'"""
        given = {key: value for key, value in overrides.items() if value is not None}
        level = given.pop('log_level', None)
        config = replace(self, **given)
        if level is not None:
            config.logging = replace(config.logging, level=level)
        return config

    def validate(self) -> 'HubConfig':
        """
        Check the configuration is usable

        Raises:
            ConfigError: If a required value is missing or out of range
        """
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.collection_interval <= 0:
            raise ConfigError("collection_interval must be positive")
        if self.fetch_timeout <= 0:
            raise ConfigError("fetch_timeout must be positive")
        if self.fetch_timeout >= self.collection_interval:
            raise ConfigError(
                f"fetch_timeout ({self.fetch_timeout}s) must be shorter than "
                f"collection_interval ({self.collection_interval}s)"
            )
        if self.discovery_timeout <= 0:
            raise ConfigError("discovery_timeout must be positive")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if not self.data_file:
            raise ConfigError("data_file is required")

        if self.logging.format not in LOG_FORMATS:
            raise ConfigError(f"Invalid logging format: {self.logging.format}. Must be one of {list(LOG_FORMATS)}")

        if self.sink.output not in SINK_OUTPUTS:
            raise ConfigError(f"Invalid sink output: {self.sink.output}. Must be one of {list(SINK_OUTPUTS)}")
        if self.sink.output == 'postgres' and not self.sink.postgres_url:
            raise ConfigError(
                f"postgres_url not configured in sink section and {DB_URL_ENV} is not set"
            )
        if self.sink.output == 'file' and not self.sink.output_dir:
            raise ConfigError("output_dir not configured for file output mode")

        return self


def _expand(value):
    if isinstance(value, str):
        return os.path.expandvars(value)
    return value


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return {key: _expand(value) for key, value in section.items()}


def _build(cls, values: dict, section: str):
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid key in '{section}' section: {e}") from e


def parse_config(data: Optional[dict]) -> HubConfig:
    """Build a HubConfig from parsed YAML"""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    hub = _section(data, 'hub')
    logging_section = _section(data, 'logging')
    sink_section = _section(data, 'sink')

    sink_section.setdefault('postgres_url', None)
    if not sink_section['postgres_url']:
        sink_section['postgres_url'] = os.getenv(DB_URL_ENV)

    try:
        for key in ('port', 'max_workers'):
            if key in hub:
                hub[key] = int(hub[key])
        for key in ('collection_interval', 'fetch_timeout', 'discovery_timeout'):
            if key in hub:
                hub[key] = float(hub[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid number in 'hub' section: {e}") from e

    if isinstance(hub.get('cors_origins'), str):
        hub['cors_origins'] = [o.strip() for o in hub['cors_origins'].split(',') if o.strip()]

    config = _build(HubConfig, hub, 'hub')
    config.logging = _build(LoggingConfig, logging_section, 'logging')
    config.sink = _build(SinkConfig, sink_section, 'sink')
    return config


def load_config(path: Optional[str] = None) -> HubConfig:
    """
    Load configuration from a YAML file, or defaults plus environment when path is None

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if path is None:
        return parse_config({})

    try:
        with Path(path).open() as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}")

    return parse_config(data)
