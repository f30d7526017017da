from __future__ import annotations

import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path


def _now_ms() -> int:
    return int(time.time() * 1000)


class PurchaseLedger(ABC):
    """Records which bundles each Spotify user has paid for.

    ``record_purchase`` is idempotent per ``(user_id, bundle_id)``.
    """

    @abstractmethod
    async def has_purchased(self, user_id: str, bundle_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def record_purchase(
        self, user_id: str, bundle_id: str, purchased_at: int | None = None
    ) -> bool:
        """Returns True if a new row was written, False for a duplicate."""
        raise NotImplementedError

    @abstractmethod
    async def purchased_bundles(self, user_id: str) -> set[str]:
        raise NotImplementedError


class MemoryPurchaseLedger(PurchaseLedger):
    def __init__(self) -> None:
        self._purchases: dict[tuple[str, str], int] = {}

    async def has_purchased(self, user_id: str, bundle_id: str) -> bool:
        return (user_id, bundle_id) in self._purchases

    async def record_purchase(
        self, user_id: str, bundle_id: str, purchased_at: int | None = None
    ) -> bool:
        key = (user_id, bundle_id)
        if key in self._purchases:
            return False
        self._purchases[key] = _now_ms() if purchased_at is None else purchased_at
        return True

    async def purchased_bundles(self, user_id: str) -> set[str]:
        return {bundle_id for owner, bundle_id in self._purchases if owner == user_id}


class SqlitePurchaseLedger(PurchaseLedger):
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS purchases (
            user_id TEXT NOT NULL,
            bundle_id TEXT NOT NULL,
            purchased_at INTEGER NOT NULL,
            PRIMARY KEY (user_id, bundle_id)
        )
    """

    def __init__(self, path: str | Path = "purchases.db") -> None:
        self._path = str(path)
        self._lock = threading.Lock()
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        with self._conn:
            self._conn.execute(self.SCHEMA)

    async def has_purchased(self, user_id: str, bundle_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM purchases WHERE user_id = ? AND bundle_id = ?",
                (user_id, bundle_id),
            ).fetchone()
        return row is not None

    async def record_purchase(
        self, user_id: str, bundle_id: str, purchased_at: int | None = None
    ) -> bool:
        timestamp = _now_ms() if purchased_at is None else purchased_at
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO purchases (user_id, bundle_id, purchased_at) "
                "VALUES (?, ?, ?)",
                (user_id, bundle_id, timestamp),
            )
        return cursor.rowcount == 1

    async def purchased_bundles(self, user_id: str) -> set[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT bundle_id FROM purchases WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        return {row[0] for row in rows}

    def close(self) -> None:
        with self._lock:
            self._conn.close()
