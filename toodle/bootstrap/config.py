"""
bootstrap/config.py - Application configuration

Provides configuration loading from files, environment variables, and defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path
import os
import json
import logging

from toodle.core.constants import (
    DEFAULT_HIERARCHY_DEPTH,
    MAX_LINKS_PER_BATCH,
    MAX_TOTAL_LINKS,
    PROPAGATION_RECENCY_WINDOW_MS,
)

logger = logging.getLogger("bootstrap.config")


@dataclass
class LinkConfig:
    """Bounds on the link graph."""

    max_links_per_batch: int = MAX_LINKS_PER_BATCH
    max_total_links: int = MAX_TOTAL_LINKS
    max_hierarchy_depth: int = DEFAULT_HIERARCHY_DEPTH

    @classmethod
    def from_env(cls) -> "LinkConfig":
        return cls(
            max_links_per_batch=int(os.getenv("TOODLE_LINK_MAX_BATCH", str(MAX_LINKS_PER_BATCH))),
            max_total_links=int(os.getenv("TOODLE_LINK_MAX_TOTAL", str(MAX_TOTAL_LINKS))),
            max_hierarchy_depth=int(os.getenv("TOODLE_LINK_MAX_DEPTH", str(DEFAULT_HIERARCHY_DEPTH))),
        )


@dataclass
class TransactionConfig:
    """Write transaction settings."""

    lock_timeout_seconds: float = 5.0
    retry_attempts: int = 2  # Retries after the first lock attempt
    retry_delay_ms: int = 50
    max_history: int = 100

    @classmethod
    def from_env(cls) -> "TransactionConfig":
        return cls(
            lock_timeout_seconds=float(os.getenv("TOODLE_TXN_LOCK_TIMEOUT", "5.0")),
            retry_attempts=int(os.getenv("TOODLE_TXN_RETRY_ATTEMPTS", "2")),
            retry_delay_ms=int(os.getenv("TOODLE_TXN_RETRY_DELAY_MS", "50")),
            max_history=int(os.getenv("TOODLE_TXN_MAX_HISTORY", "100")),
        )


@dataclass
class EventConfig:
    """Change-feed settings."""

    max_history: int = 100

    @classmethod
    def from_env(cls) -> "EventConfig":
        return cls(
            max_history=int(os.getenv("TOODLE_EVENT_MAX_HISTORY", "100")),
        )


@dataclass
class ReconcilerConfig:
    """Client cache reconciliation settings."""

    recency_window_ms: int = PROPAGATION_RECENCY_WINDOW_MS
    max_seen_events: int = 1000
    max_tracked_entities: int = 5000
    trust_event_cause: bool = True

    @classmethod
    def from_env(cls) -> "ReconcilerConfig":
        return cls(
            recency_window_ms=int(os.getenv("TOODLE_RECONCILER_WINDOW_MS", str(PROPAGATION_RECENCY_WINDOW_MS))),
            max_seen_events=int(os.getenv("TOODLE_RECONCILER_MAX_SEEN", "1000")),
            max_tracked_entities=int(os.getenv("TOODLE_RECONCILER_MAX_TRACKED", "5000")),
            trust_event_cause=os.getenv("TOODLE_RECONCILER_TRUST_CAUSE", "true").lower() == "true",
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    enable_docs: bool = True
    docs_url: str = "/docs"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    # Users allowed to run graph-wide integrity reads and repair
    operator_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "APIConfig":
        cors = os.getenv("TOODLE_API_CORS_ORIGINS", "*")
        operators = os.getenv("TOODLE_API_OPERATORS", "")
        return cls(
            host=os.getenv("TOODLE_API_HOST", "0.0.0.0"),
            port=int(os.getenv("TOODLE_API_PORT", "8000")),
            workers=int(os.getenv("TOODLE_API_WORKERS", "1")),
            enable_docs=os.getenv("TOODLE_API_ENABLE_DOCS", "true").lower() == "true",
            docs_url=os.getenv("TOODLE_API_DOCS_URL", "/docs"),
            cors_origins=cors.split(",") if cors else ["*"],
            operator_ids=[u for u in operators.split(",") if u],
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("TOODLE_LOG_LEVEL", "INFO"),
            log_file=os.getenv("TOODLE_LOG_FILE"),
            json_logs=os.getenv("TOODLE_JSON_LOGS", "false").lower() == "true",
        )


@dataclass
class ToodleConfig:
    """Root configuration."""

    environment: str = "development"
    debug: bool = False
    version: str = "1.0.0"

    link: LinkConfig = field(default_factory=LinkConfig)
    transaction: TransactionConfig = field(default_factory=TransactionConfig)
    events: EventConfig = field(default_factory=EventConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "ToodleConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("TOODLE_ENVIRONMENT", "development"),
            debug=os.getenv("TOODLE_DEBUG", "false").lower() == "true",
            link=LinkConfig.from_env(),
            transaction=TransactionConfig.from_env(),
            events=EventConfig.from_env(),
            reconciler=ReconcilerConfig.from_env(),
            api=APIConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "ToodleConfig":
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "ToodleConfig":
        """Create config from dictionary; file values override the environment."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]
        if "debug" in data:
            config.debug = data["debug"]

        for section in ("link", "transaction", "events", "reconciler", "api", "logging"):
            if section not in data:
                continue
            target = getattr(config, section)
            for key, value in data[section].items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Unknown config key ignored: {section}.{key}")

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize config to dictionary."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "version": self.version,
            "link": {
                "max_links_per_batch": self.link.max_links_per_batch,
                "max_total_links": self.link.max_total_links,
                "max_hierarchy_depth": self.link.max_hierarchy_depth,
            },
            "transaction": {
                "lock_timeout_seconds": self.transaction.lock_timeout_seconds,
                "retry_attempts": self.transaction.retry_attempts,
                "retry_delay_ms": self.transaction.retry_delay_ms,
            },
            "reconciler": {
                "recency_window_ms": self.reconciler.recency_window_ms,
                "trust_event_cause": self.reconciler.trust_event_cause,
                "max_tracked_entities": self.reconciler.max_tracked_entities,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
                "workers": self.api.workers,
            },
        }


# Global config instance
_config: Optional[ToodleConfig] = None


def load_config(filepath: str = None) -> ToodleConfig:
    """
    Load configuration from file or environment.

    Args:
        filepath: Optional path to JSON config file

    Returns:
        ToodleConfig instance
    """
    global _config

    if filepath:
        _config = ToodleConfig.from_file(filepath)
    else:
        default_paths = [
            "./toodle.json",
            "./config/toodle.json",
            os.path.expanduser("~/.toodle/config.json"),
        ]

        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                _config = ToodleConfig.from_file(path)
                return _config

        _config = ToodleConfig.from_env()

    logger.info(f"Configuration loaded: environment={_config.environment}")
    return _config


def get_config() -> ToodleConfig:
    """Get current configuration, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
