"""
bootstrap/ - Bootstrap Layer

Provides configuration, application wiring and entry points.

The app and entry points are imported from their modules directly
(toodle.bootstrap.app, toodle.bootstrap.entrypoints); the engine
modules import their config sections from here.
"""

from .config import (
    ToodleConfig,
    LinkConfig,
    TransactionConfig,
    EventConfig,
    ReconcilerConfig,
    APIConfig,
    LoggingConfig,
    load_config,
    get_config,
)


__all__ = [
    # Config
    "ToodleConfig",
    "LinkConfig",
    "TransactionConfig",
    "EventConfig",
    "ReconcilerConfig",
    "APIConfig",
    "LoggingConfig",
    "load_config",
    "get_config",
]
