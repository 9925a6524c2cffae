"""
Deduplication of delivered shield transactions.

The log subscription may deliver the same transaction more than once (for
example after a reconnect). The DedupTracker remembers which transaction
signatures were already handed to the sink so each one is delivered at most
once per tracker lifetime.

The in-memory store is best-effort only: its memory is lost on restart. Use
SqliteDedupStore when the guarantee must survive process restarts.
"""

import logging
import sqlite3
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DedupStore(Protocol):
    """Set-like storage for processed transaction ids."""

    def __contains__(self, tx_id: object) -> bool: ...

    def add(self, tx_id: str) -> None: ...

    def discard(self, tx_id: str) -> None: ...

    def __len__(self) -> int: ...


class InMemoryDedupStore:
    """
    Process-local store of transaction ids.

    Uses OrderedDict for O(1) lookups while keeping insertion order, so that
    an optional size bound can evict the oldest ids first. Unbounded by
    default; once an id is evicted it can be processed again.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, tx_id: object) -> bool:
        return tx_id in self._ids

    def add(self, tx_id: str) -> None:
        if tx_id in self._ids:
            self._ids.move_to_end(tx_id)
            return
        if self.max_entries is not None and len(self._ids) >= self.max_entries:
            evicted, _ = self._ids.popitem(last=False)
            logger.debug(f"Evicted oldest processed id {evicted[:10]}... due to capacity")
        self._ids[tx_id] = None

    def discard(self, tx_id: str) -> None:
        self._ids.pop(tx_id, None)

    def __len__(self) -> int:
        return len(self._ids)


class SqliteDedupStore:
    """Durable store of transaction ids backed by a SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Access is serialised by DedupTracker's lock
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_transactions (
                tx_id TEXT PRIMARY KEY,
                processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.commit()
        logger.info(f"SQLite dedup store initialized: {self.db_path} ({len(self)} ids)")

    def __contains__(self, tx_id: object) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM processed_transactions WHERE tx_id = ?", (tx_id,)
        ).fetchone()
        return row is not None

    def add(self, tx_id: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO processed_transactions (tx_id) VALUES (?)", (tx_id,)
            )

    def discard(self, tx_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM processed_transactions WHERE tx_id = ?", (tx_id,))

    def __len__(self) -> int:
        (count,) = self._conn.execute("SELECT COUNT(*) FROM processed_transactions").fetchone()
        return count

    def close(self) -> None:
        self._conn.close()


class DedupTracker:
    """Remembers which transaction ids have already been delivered."""

    def __init__(self, store: DedupStore | None = None) -> None:
        """
        Args:
            store: Backing store, defaults to a best-effort in-memory store
        """
        self.store: DedupStore = store if store is not None else InMemoryDedupStore()
        self._lock = threading.Lock()

    def should_process(self, tx_id: str) -> bool:
        """Return True if tx_id has not been marked processed."""
        with self._lock:
            return tx_id not in self.store

    def mark_processed(self, tx_id: str) -> None:
        with self._lock:
            self.store.add(tx_id)

    def claim(self, tx_id: str) -> bool:
        """
        Atomically check and mark a transaction id.

        Returns:
            True if the caller now owns tx_id, False if it was already processed
        """
        with self._lock:
            if tx_id in self.store:
                return False
            self.store.add(tx_id)
            return True

    def release(self, tx_id: str) -> None:
        """Undo a claim so a later redelivery of tx_id is processed again."""
        with self._lock:
            self.store.discard(tx_id)

    def __len__(self) -> int:
        return len(self.store)
