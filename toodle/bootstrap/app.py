"""
bootstrap/app.py - Application builder and lifecycle

Wires the link store, change feed, transaction manager and linking
service together from one ToodleConfig.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum
import logging
import time

from toodle.events.bus import ChangeEventBus
from toodle.links.service import LinkingService
from toodle.links.store import LinkStore
from toodle.reconciler.reconciler import CacheReconciler
from toodle.transactions.manager import TransactionManager
from .config import ToodleConfig, load_config

logger = logging.getLogger("bootstrap.app")


class AppState(Enum):
    """Application lifecycle states."""
    CREATED = "created"
    CONFIGURING = "configuring"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class AppContext:
    """Runtime application context."""
    config: ToodleConfig = None
    store: LinkStore = None
    event_bus: ChangeEventBus = None
    transactions: TransactionManager = None
    service: LinkingService = None
    state: AppState = AppState.CREATED
    start_time: float = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_uptime(self) -> float:
        """Get application uptime in seconds."""
        if self.start_time == 0:
            return 0
        return time.time() - self.start_time

    def create_reconciler(self, user_id: str, list_id: Optional[str] = None) -> CacheReconciler:
        """Client cache for one user, attached to this app's change feed."""
        reconciler = CacheReconciler(user_id, config=self.config.reconciler)
        reconciler.attach(self.event_bus, list_id=list_id)
        return reconciler


class ToodleApp:
    """
    Main application class.

    Usage:
        app = ToodleApp().build()
        app.service.create_parent_child_link(parent_id, [child_id], actor_id=user_id)
    """

    def __init__(self, config_file: str = None, config: ToodleConfig = None):
        self._config_file = config_file
        self._context = AppContext(config=config)
        self._startup_hooks: List[Callable] = []
        self._shutdown_hooks: List[Callable] = []
        self._initialized = False

    @property
    def config(self) -> ToodleConfig:
        return self._context.config

    @property
    def context(self) -> AppContext:
        return self._context

    @property
    def service(self) -> LinkingService:
        return self._context.service

    def build(self) -> "ToodleApp":
        """Build the component graph in dependency order."""
        self._context.state = AppState.CONFIGURING

        if self._context.config is None:
            self._context.config = load_config(self._config_file)
        config = self._context.config

        store = LinkStore()
        bus = ChangeEventBus(
            audience_resolver=store.list_audience,
            max_history=config.events.max_history,
        )
        transactions = TransactionManager(store, event_bus=bus, config=config.transaction)

        self._context.store = store
        self._context.event_bus = bus
        self._context.transactions = transactions
        self._context.service = LinkingService(store, transactions, config=config.link)
        self._context.metadata["environment"] = config.environment

        self._initialized = True
        logger.info("Application built successfully")
        return self

    def start(self) -> None:
        """Start application and run startup hooks."""
        if not self._initialized:
            self.build()

        self._context.start_time = time.time()
        for hook in self._startup_hooks:
            try:
                hook(self._context)
            except Exception as e:
                logger.error(f"Startup hook failed: {e}")
                self._context.state = AppState.FAILED
                raise

        self._context.state = AppState.RUNNING
        logger.info("Application started")

    def stop(self) -> None:
        """Stop application and run shutdown hooks."""
        for hook in reversed(self._shutdown_hooks):
            try:
                hook(self._context)
            except Exception as e:
                logger.error(f"Shutdown hook failed: {e}")

        self._context.state = AppState.STOPPED
        logger.info("Application stopped")

    def on_startup(self, hook: Callable) -> "ToodleApp":
        """Register startup hook."""
        self._startup_hooks.append(hook)
        return self

    def on_shutdown(self, hook: Callable) -> "ToodleApp":
        """Register shutdown hook."""
        self._shutdown_hooks.append(hook)
        return self

    def run_api(self) -> None:
        """Run API server."""
        import uvicorn

        from toodle.deployment.api import create_fastapi_app

        self.start()
        try:
            uvicorn.run(
                create_fastapi_app(self._context),
                host=self.config.api.host,
                port=self.config.api.port,
                workers=self.config.api.workers,
            )
        finally:
            self.stop()


def create_app(config_file: str = None) -> ToodleApp:
    """Create and configure the application."""
    return ToodleApp(config_file).build()
