"""Configuration handling for the Reddit Analyzer."""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv


@dataclass
class RateLimitConfig:
    """Local request pacing applied before every Reddit API call."""

    max_requests_per_minute: int = 30
    min_request_interval_sec: float = 2.0


@dataclass
class CacheConfig:
    """Response cache configuration."""

    enabled: bool = True
    url: str = "redis://localhost:6379/0"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""

    enable_prometheus: bool = False
    prometheus_port: int = 8000


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "reddit_analyzer"
    user: str = "postgres"
    password: str = ""
    url: Optional[str] = None
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def async_url(self) -> str:
        """SQLAlchemy URL using the asyncpg driver."""
        if self.url:
            if self.url.startswith("postgresql://"):
                return self.url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return self.url
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


_NESTED_SECTIONS = {
    "rate_limit": RateLimitConfig,
    "cache": CacheConfig,
    "monitoring": MonitoringConfig,
    "postgres": PostgresConfig,
}


def _merge_section(section: Any, values: Dict[str, Any]) -> None:
    """Copy known keys from a YAML mapping onto a config dataclass."""
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key in known:
            setattr(section, key, value)


@dataclass
class Config:
    """Application configuration combining environment variables and YAML config."""

    # Reddit API credentials from environment
    client_id: str = ""
    client_secret: str = ""
    user_agent: str = "RedditAnalyzer/1.0"

    # YAML config values with defaults
    subreddits: List[str] = field(default_factory=list)
    default_limit: int = 100
    batch_pause_sec: float = 1.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)

    @classmethod
    def from_files(cls, config_path: str, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from environment variables and an optional YAML file.

        Environment values are read first; keys present in the YAML file win.

        Args:
            config_path: Path to YAML configuration file (may not exist)
            env_path: Optional path to .env file (defaults to .env in current directory)

        Returns:
            Config instance with merged configuration
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        config = cls()

        config.client_id = os.getenv("REDDIT_CLIENT_ID", "")
        config.client_secret = os.getenv("REDDIT_CLIENT_SECRET", "")
        config.user_agent = os.getenv("REDDIT_USER_AGENT", "RedditAnalyzer/1.0")

        config.rate_limit = RateLimitConfig(
            max_requests_per_minute=int(os.getenv("REDDIT_RATE_LIMIT_PER_MINUTE", "30")),
            min_request_interval_sec=int(os.getenv("REDDIT_MIN_REQUEST_INTERVAL_MS", "2000")) / 1000.0,
        )
        config.cache = CacheConfig(
            enabled=os.getenv("USE_REDIS", "true").lower() == "true",
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        )
        config.postgres = PostgresConfig(
            host=os.getenv("PG_HOST", "localhost"),
            port=int(os.getenv("PG_PORT", "5432")),
            database=os.getenv("PG_DB", "reddit_analyzer"),
            user=os.getenv("PG_USER", "postgres"),
            password=os.getenv("PG_PASSWORD", ""),
            url=os.getenv("DATABASE_URL") or None,
        )

        if config_path and os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as file:
                yaml_config = yaml.safe_load(file) or {}

            for key, value in yaml_config.items():
                if key in _NESTED_SECTIONS:
                    if isinstance(value, dict):
                        _merge_section(getattr(config, key), value)
                elif hasattr(config, key):
                    setattr(config, key, value)

        return config

    def validate(self, require_credentials: bool = True) -> List[str]:
        """
        Validate configuration and return a list of validation errors.

        Args:
            require_credentials: Whether missing Reddit API credentials are an error

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if require_credentials:
            if not self.client_id:
                errors.append("Missing REDDIT_CLIENT_ID in environment")
            if not self.client_secret:
                errors.append("Missing REDDIT_CLIENT_SECRET in environment")

        if self.rate_limit.max_requests_per_minute <= 0:
            errors.append("rate_limit.max_requests_per_minute must be greater than 0")
        if self.rate_limit.min_request_interval_sec < 0:
            errors.append("rate_limit.min_request_interval_sec must not be negative")

        if self.default_limit <= 0:
            errors.append("default_limit must be greater than 0")
        if self.batch_pause_sec < 0:
            errors.append("batch_pause_sec must not be negative")

        if not self.postgres.url:
            if not self.postgres.host:
                errors.append("PG_HOST must be specified")
            if self.postgres.port <= 0:
                errors.append("PG_PORT must be a positive integer")
            if not self.postgres.database:
                errors.append("PG_DB must be specified")

        return errors
