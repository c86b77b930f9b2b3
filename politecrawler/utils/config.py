"""
Configuration management for the polite crawler.
"""

import argparse
import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:38.0) Gecko/20100101 "
    "Firefox/38.0 Iceweasel/38.7.1"
)

# Additional level names accepted for --log-level and logging.level.
LOG_LEVEL_ALIASES = {
    'SEVERE': 'ERROR',
    'CONFIG': 'INFO',
    'FINE': 'DEBUG',
    'FINER': 'DEBUG',
    'FINEST': 'DEBUG',
    'ALL': 'DEBUG',
    'OFF': 'CRITICAL',
}


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_urls: List[str] = field(default_factory=list)
    politeness_interval: float = 5.0
    poll_interval: float = 0.5
    max_redirects: int = 3
    request_timeout: Optional[float] = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    temp_directory: str = "tmpdata"
    final_directory: str = "data"
    exclude_file: Optional[str] = None
    include_file: Optional[str] = None
    stats_interval: float = 30.0


@dataclass
class DatabaseConfig:
    """Configuration for the frontier database."""
    type: str = "sqlite"
    sqlite: Dict[str, Any] = field(default_factory=lambda: {'path': 'urlsDB.sqlite3'})
    redis: Dict[str, Any] = field(default_factory=lambda: {
        'host': 'localhost',
        'port': 6379,
        'db': 0,
        'password': None,
        'key_prefix': 'urlsDB',
    })


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def parse_config(config_data: Optional[Dict[str, Any]]) -> Config:
    """Build a Config from a parsed YAML mapping. Missing keys keep their defaults."""
    config_data = config_data or {}

    database_data = dict(config_data.get('database') or {})
    database_config = DatabaseConfig(type=database_data.pop('type', 'sqlite'))
    database_config.sqlite.update(database_data.pop('sqlite', None) or {})
    database_config.redis.update(database_data.pop('redis', None) or {})
    if database_data:
        raise ValueError(f"Unknown database settings: {sorted(database_data)}")

    return Config(
        crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
        database=database_config,
        logging=LoggingConfig(**(config_data.get('logging') or {})),
        monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
    )


def apply_database_overrides(config: Config, host: Optional[str] = None,
                             port: Optional[int] = None,
                             database_name: Optional[str] = None) -> Config:
    """
    Apply the command-line database options.

    A host and port select the Redis server; the database name becomes the
    SQLite file stem or the Redis key prefix.
    """
    if host is not None:
        config.database.type = 'redis'
        config.database.redis['host'] = host
        config.database.redis['port'] = port

    if database_name is not None:
        config.database.sqlite['path'] = f"{database_name}.sqlite3"
        config.database.redis['key_prefix'] = database_name

    return config


def resolve_log_level(name: str) -> int:
    """Numeric logging level for a level name, accepting SEVERE and FINE-style aliases."""
    upper = str(name).upper()
    upper = LOG_LEVEL_ALIASES.get(upper, upper)
    levels = logging.getLevelNamesMapping()
    if upper not in levels:
        raise ValueError(f"Unknown log level: {name}")
    return levels[upper]


def log_level_name(value: str) -> str:
    """argparse type for a log level name."""
    try:
        resolve_log_level(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid level '{value}'")
    return value.upper()


def validate_config(config: Config):
    """Validate configuration values."""
    if config.crawler.politeness_interval < 0:
        raise ValueError("politeness_interval must be non-negative")

    if config.crawler.poll_interval <= 0:
        raise ValueError("poll_interval must be positive")

    if config.crawler.max_redirects < 0:
        raise ValueError("max_redirects must be non-negative")

    if config.crawler.request_timeout is not None and config.crawler.request_timeout <= 0:
        raise ValueError("request_timeout must be positive or null")

    if config.database.type not in ['sqlite', 'redis']:
        raise ValueError("Database type must be 'sqlite' or 'redis'")

    resolve_log_level(config.logging.level)

    logging.debug("Configuration validation passed")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None

    def load_config(self) -> Config:
        """Load configuration from YAML file, or defaults when no file is given."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}

        config = parse_config(config_data)
        validate_config(config)
        return config


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()


def port_number(value: str) -> int:
    """argparse type for a TCP port."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port '{value}'")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Invalid port '{value}'")
    return port


def add_database_arguments(parser: argparse.ArgumentParser):
    """Add the options selecting the frontier database."""
    parser.add_argument('--host', help='Redis server host (default: embedded SQLite)')
    parser.add_argument('--port', type=port_number, help='Redis server port')
    parser.add_argument('--database-name', help='Database name (SQLite file stem or Redis key prefix)')


def check_database_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace):
    """Exit with a usage error unless host and port are given together."""
    if args.host is not None and args.port is None:
        parser.error("A host has been specified but no port.")
    if args.port is not None and args.host is None:
        parser.error("A port has been specified but no host.")
