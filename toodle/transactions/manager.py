"""
transactions/manager.py - Transaction management

Every mutation of the link store runs inside one transaction:
- begin acquires the store write lock (with timeout and retry) and
  enters tentative mode
- commit publishes the tentative state, then hands the resulting
  change events to the event bus before the lock is released
- rollback discards the tentative state

A transaction begun while the same thread already holds one joins it.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import List, Optional, TYPE_CHECKING
import logging
import threading
import time
import uuid

from toodle.bootstrap.config import TransactionConfig
from toodle.core.models import utcnow
from toodle.errors import StorageError, TransactionError, WriteConflictError
from .schemas import Transaction, TransactionStatus

if TYPE_CHECKING:
    from toodle.events.bus import ChangeEventBus
    from toodle.events.events import ChangeEvent
    from toodle.links.store import LinkStore


class TransactionManager:
    """Manages atomic write transactions against a LinkStore."""

    def __init__(
        self,
        store: "LinkStore",
        event_bus: Optional["ChangeEventBus"] = None,
        config: Optional[TransactionConfig] = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.config = config or TransactionConfig()
        self.logger = logging.getLogger("transactions")

        # Active transactions
        self._transactions = {}

        # Per-thread transaction stack (for nesting)
        self._local = threading.local()

        # Completed transactions (for audit)
        self._history: List[Transaction] = []
        self._history_lock = threading.Lock()
        self._max_history = self.config.max_history

    @property
    def _stack(self) -> List[str]:
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        return self._local.stack

    @property
    def active_transaction(self) -> Optional[Transaction]:
        """Get the calling thread's innermost active transaction."""
        if self._stack:
            return self._transactions.get(self._stack[-1])
        return None

    @property
    def active_transaction_id(self) -> Optional[str]:
        return self._stack[-1] if self._stack else None

    def begin(self, source: str = "", description: str = "") -> Transaction:
        """Begin a new transaction, joining the thread's open one if present."""
        tx = Transaction(
            transaction_id=str(uuid.uuid4())[:8],
            status=TransactionStatus.ACTIVE,
            source=source,
            description=description,
        )

        if self._stack and self.store.owns_transaction():
            tx.parent_transaction_id = self._stack[-1]
        else:
            self._acquire_lock(tx)
            try:
                self.store.begin_tentative(tx.transaction_id)
            except Exception:
                self.store.release_write()
                raise

        self._transactions[tx.transaction_id] = tx
        self._stack.append(tx.transaction_id)

        self.logger.debug(
            f"Transaction {tx.transaction_id} started ({source or 'unknown'})"
            + (f" inside {tx.parent_transaction_id}" if tx.is_nested else "")
        )
        return tx

    def _acquire_lock(self, tx: Transaction) -> None:
        attempts = self.config.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            tx.lock_attempts = attempt
            if self.store.acquire_write(timeout=self.config.lock_timeout_seconds):
                return
            self.logger.warning(
                f"Transaction {tx.transaction_id}: write lock busy "
                f"(attempt {attempt}/{attempts})"
            )
            if attempt < attempts:
                time.sleep(self.config.retry_delay_ms / 1000.0)

        tx.status = TransactionStatus.FAILED
        tx.completed_at = utcnow()
        tx.error = "write lock not acquired"
        self._add_to_history(tx)
        raise WriteConflictError(attempts=attempts, transaction_id=tx.transaction_id)

    def commit(self, transaction_id: str = None) -> bool:
        """
        Commit a transaction.

        Raises StorageError if the store fails to publish; in that case
        nothing was applied.
        """
        tx = self._get_active(transaction_id, "commit")
        if tx is None:
            return False

        self._pop(tx)

        if tx.is_nested:
            self._finish(tx, TransactionStatus.COMMITTED)
            return True

        try:
            try:
                events = self.store.commit_tentative()
            except Exception as e:
                self.store.rollback_tentative()
                self._finish(tx, TransactionStatus.FAILED, error=str(e))
                self.logger.error(f"Transaction {tx.transaction_id} failed to commit: {e}")
                if isinstance(e, TransactionError):
                    raise
                raise StorageError(
                    f"Commit failed: {e}", transaction_id=tx.transaction_id
                ) from e

            tx.event_ids = [event.event_id for event in events]
            self._finish(tx, TransactionStatus.COMMITTED)
            self.logger.info(
                f"Transaction {tx.transaction_id} committed "
                f"({tx.source}: {len(events)} change(s))"
            )
            self._publish(events)
        finally:
            self.store.release_write()

        return True

    def rollback(self, transaction_id: str = None) -> bool:
        """Rollback a transaction."""
        tx = self._get_active(transaction_id, "rollback")
        if tx is None:
            return False

        self._pop(tx)

        if tx.is_nested:
            self._finish(tx, TransactionStatus.ROLLED_BACK)
            return True

        try:
            self.store.rollback_tentative()
        finally:
            self.store.release_write()

        self._finish(tx, TransactionStatus.ROLLED_BACK)
        self.logger.info(f"Transaction {tx.transaction_id} rolled back")
        return True

    @contextmanager
    def transaction(self, source: str = "", description: str = ""):
        """Context manager: commit on success, rollback and re-raise on error."""
        tx = self.begin(source=source, description=description)
        try:
            yield tx
        except Exception:
            self.rollback(tx.transaction_id)
            raise
        self.commit(tx.transaction_id)

    def _get_active(self, transaction_id: Optional[str], operation: str) -> Optional[Transaction]:
        tx_id = transaction_id or self.active_transaction_id
        tx = self._transactions.get(tx_id) if tx_id else None
        if tx is None:
            self.logger.error(f"Cannot {operation}: transaction {tx_id} not found")
            return None
        if tx.status != TransactionStatus.ACTIVE:
            self.logger.error(f"Cannot {operation}: transaction {tx_id} is {tx.status.value}")
            return None
        return tx

    def _pop(self, tx: Transaction) -> None:
        if tx.transaction_id in self._stack:
            self._stack.remove(tx.transaction_id)
        self._transactions.pop(tx.transaction_id, None)

    def _finish(self, tx: Transaction, status: TransactionStatus, error: str = None) -> None:
        tx.status = status
        tx.completed_at = utcnow()
        tx.error = error
        self._add_to_history(tx)

    def _publish(self, events: List["ChangeEvent"]) -> None:
        if self.event_bus is None or not events:
            return
        self.event_bus.publish_many(events)

    def _add_to_history(self, tx: Transaction) -> None:
        """Add transaction to history."""
        with self._history_lock:
            self._history.append(tx)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

    def get_history(self, limit: int = 20) -> List[Transaction]:
        """Get transaction history."""
        with self._history_lock:
            return self._history[-limit:]
