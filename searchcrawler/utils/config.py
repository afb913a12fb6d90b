"""
Configuration management for the search crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field


DEFAULT_SEEDS = [
    "https://moz.com/top500/domains",
    "https://domainpunch.com/tlds/topm.php",
    "https://www.wikipedia.org/",
]


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seeds: List[str] = field(default_factory=lambda: list(DEFAULT_SEEDS))
    workers: int = 100
    time: float = 300.0               # seconds the session runs
    since: float = 30 * 24 * 3600.0   # freshness window in seconds
    timeout: float = 25.0             # per-request HTTP timeout
    max_bytes: int = 1024000          # -1 for no limit
    max_queue_links: int = 100000
    max_links: int = 100              # per document, -1 for no limit
    max_domain_links: int = 10000
    truncate_title: int = 100         # chars
    truncate_keywords: int = 25       # words
    truncate_description: int = 250   # chars
    useragent_full: str = "Mozilla/5.0 (compatible; searchcrawlerbot/1.0)"
    useragent_short: str = "searchcrawlerbot"
    queued_ttl: int = 600
    reserve_ttl: int = 600
    dns_cache_ttl: int = 600
    robots_max_redirects: int = 10
    shutdown_grace: float = 1.0
    idle_wait: float = 0.05


@dataclass
class DatabaseConfig:
    """Configuration for document storage."""
    type: str = "file"
    cassandra: Dict[str, Any] = field(default_factory=dict)
    file: Dict[str, Any] = field(default_factory=lambda: {'data_directory': 'data'})


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "searchcrawler:"


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json_format: bool = False


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
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        self._config = parse_config(config_data)
        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        validate_config(self._config)

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def parse_config(config_data: Dict[str, Any]) -> Config:
    """Build a Config from a mapping; missing sections and keys keep their defaults."""
    return Config(
        crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
        database=DatabaseConfig(**(config_data.get('database') or {})),
        redis=RedisConfig(**(config_data.get('redis') or {})),
        logging=LoggingConfig(**(config_data.get('logging') or {})),
        monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
    )


def validate_config(config: Config):
    """Raise ValueError for settings the crawler cannot run with."""
    crawler = config.crawler

    if not crawler.seeds:
        raise ValueError("At least one seed URL must be provided")

    if crawler.workers < 1:
        raise ValueError("workers must be at least 1")

    if crawler.time <= 0:
        raise ValueError("time must be positive")

    if crawler.timeout <= 0:
        raise ValueError("timeout must be positive")

    if crawler.since < 0:
        raise ValueError("since must be non-negative")

    if crawler.max_bytes < -1 or crawler.max_links < -1:
        raise ValueError("max_bytes and max_links must be -1 (no limit) or non-negative")

    if config.database.type not in ['cassandra', 'file']:
        raise ValueError("Database type must be 'cassandra' or 'file'")

    # in-flight requests are allowed to finish after the deadline
    if crawler.timeout >= crawler.time:
        logging.warning("HTTP timeout (%ss) is not shorter than the session (%ss)",
                        crawler.timeout, crawler.time)

    logging.info("Configuration validation passed")


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
