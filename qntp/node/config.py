"""
qntp Daemon Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from qntp.constants import (
    MIN_POLL,
    MAX_POLL,
    DEFAULT_GOOD_FILTER,
    DEFAULT_MAX_SAMPLES,
    DEFAULT_MAX_STD_SEC,
    DEFAULT_QUERY_TIMEOUT_SEC,
    DEFAULT_RATE_SIZE,
    DEFAULT_RATE_INTERVAL_SEC,
)
from qntp.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PEERS = [
    "0.pool.ntp.org",
    "1.pool.ntp.org",
    "2.pool.ntp.org",
    "3.pool.ntp.org",
]


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class Config:
    """
    Complete daemon configuration.

    Call clamp() before handing it to the daemon; validate() reports what
    clamping cannot fix.
    """
    peers: List[str] = field(default_factory=lambda: list(DEFAULT_PEERS))

    # Poll control
    min_poll: int = MIN_POLL
    max_poll: int = 7

    # Peer query
    max_samples: int = DEFAULT_MAX_SAMPLES
    max_std: float = DEFAULT_MAX_STD_SEC
    query_timeout: float = DEFAULT_QUERY_TIMEOUT_SEC

    # Selection
    good_filter: int = DEFAULT_GOOD_FILTER

    # Clock
    force_update: bool = False
    dry_run: bool = False

    # Serving ("host:port", empty disables)
    listen: str = ""
    drop_cidr: List[str] = field(default_factory=list)
    rate_size: int = DEFAULT_RATE_SIZE
    rate_interval: float = DEFAULT_RATE_INTERVAL_SEC

    # Metrics and status HTTP server ("host:port", empty disables)
    metric: str = ""

    log: LogConfig = field(default_factory=LogConfig)

    def clamp(self) -> "Config":
        """Force numeric settings into their valid ranges."""
        if self.min_poll < MIN_POLL:
            self.min_poll = MIN_POLL
        if self.max_poll > MAX_POLL:
            self.max_poll = MAX_POLL
        if self.max_poll < self.min_poll:
            self.max_poll = self.min_poll
        if self.min_poll > MAX_POLL:
            self.min_poll = self.max_poll = MAX_POLL

        if self.rate_size < 0:
            self.rate_size = 0
        if self.max_samples < 1:
            self.max_samples = 1
        if self.good_filter < 1:
            self.good_filter = 1
        return self

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.peers:
            errors.append("at least one peer is required")
        for name in self.peers:
            if not name or not name.strip():
                errors.append("peer names cannot be empty")
                break

        if self.max_std <= 0:
            errors.append(f"max_std must be positive: {self.max_std}")
        if self.query_timeout <= 0:
            errors.append(f"query_timeout must be positive: {self.query_timeout}")
        if self.rate_interval < 0:
            errors.append(f"rate_interval cannot be negative: {self.rate_interval}")

        for name, value in (("listen", self.listen), ("metric", self.metric)):
            if value and ":" not in value:
                errors.append(f"{name} must be host:port, got {value!r}")

        return errors

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        data = dict(data)
        log = data.pop("log", None)
        try:
            config = cls(**data)
            if log is not None:
                config.log = LogConfig(**log)
        except TypeError as e:
            raise ConfigError(f"unknown configuration key: {e}") from e
        return config

    @classmethod
    def load(cls, path: str) -> "Config":
        """Load configuration from file."""
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot read {path}: {e}", {"path": path}) from e

        config = cls.from_dict(data)
        logger.info(f"Configuration loaded from {path}")
        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return asdict(self)


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
        force=True,
    )
