"""Local cache and repositories for StockLedger.

The cache is a plain string key/value store (``get``/``set``). Items and stock
movements are kept as JSON arrays under their own keys, and every read or
write goes through :class:`ItemRepository` / :class:`MovementRepository` so
that no other module touches the raw cache entries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, TypeVar

from core.models import Item, StockMovement
from settings import ITEMS_KEY, MOVEMENTS_KEY, default_cache_path

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepositoryError(Exception):
    """Raised when a repository operation references a missing record."""


class LocalCache(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryCache:
    """In-process cache used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


# ---------------------------------------------------------------------------
# SQLite backed cache
# ---------------------------------------------------------------------------
KV_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteCache:
    """Persist cache entries to a single SQLite file."""

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self._path = Path(path or default_cache_path()).resolve()
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_database(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            if self._path.parent:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path)
            try:
                conn.execute(KV_TABLE_SQL)
                conn.commit()
            finally:
                conn.close()
            self._schema_ready = True

    def get_connection(self) -> sqlite3.Connection:
        self._ensure_database()
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------
class _JsonCollection:
    """A list of JSON records stored under one cache key."""

    def __init__(
        self,
        cache: LocalCache,
        key: str,
        decode: Callable[[Mapping[str, Any]], T],
        encode: Callable[[T], Dict[str, Any]],
    ) -> None:
        self._cache = cache
        self._key = key
        self._decode = decode
        self._encode = encode

    def load(self) -> List[Any]:
        raw = self._cache.get(self._key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Cache entry %s is not valid JSON; treating it as empty", self._key)
            return []
        records: List[Any] = []
        for entry in payload if isinstance(payload, list) else []:
            if not isinstance(entry, Mapping):
                continue
            try:
                records.append(self._decode(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable %s record %r: %s", self._key, entry.get("id"), exc)
        return records

    def save(self, records: List[Any]) -> None:
        self._cache.set(self._key, json.dumps([self._encode(record) for record in records]))


class ItemRepository:
    """CRUD access to the cached item list."""

    def __init__(self, cache: LocalCache) -> None:
        self._collection = _JsonCollection(cache, ITEMS_KEY, Item.from_json, Item.to_json)

    def list(self) -> List[Item]:
        return self._collection.load()

    def get(self, item_id: str) -> Optional[Item]:
        for item in self.list():
            if item.id == item_id:
                return item
        return None

    def get_by_code(self, code: str) -> Optional[Item]:
        for item in self.list():
            if item.code == code:
                return item
        return None

    def create(self, item: Item) -> Item:
        items = self.list()
        if any(existing.id == item.id for existing in items):
            raise RepositoryError(f"Item {item.id} already exists")
        items.append(item)
        self._collection.save(items)
        return item

    def update(self, item: Item) -> Item:
        items = self.list()
        for index, existing in enumerate(items):
            if existing.id == item.id:
                items[index] = item
                self._collection.save(items)
                return item
        raise RepositoryError(f"Item {item.id} does not exist")

    def delete(self, item_id: str) -> Optional[Item]:
        items = self.list()
        removed = next((item for item in items if item.id == item_id), None)
        if removed is None:
            return None
        self._collection.save([item for item in items if item.id != item_id])
        return removed


class MovementRepository:
    """Append/delete access to the cached movement list.

    Movements are immutable, so there is intentionally no ``update``.
    """

    def __init__(self, cache: LocalCache) -> None:
        self._collection = _JsonCollection(
            cache, MOVEMENTS_KEY, StockMovement.from_json, StockMovement.to_json
        )

    def list(self) -> List[StockMovement]:
        return self._collection.load()

    def list_for_item(self, item_id: str) -> List[StockMovement]:
        return [movement for movement in self.list() if movement.item_id == item_id]

    def get(self, movement_id: str) -> Optional[StockMovement]:
        for movement in self.list():
            if movement.id == movement_id:
                return movement
        return None

    def create(self, movement: StockMovement) -> StockMovement:
        movements = self.list()
        if any(existing.id == movement.id for existing in movements):
            raise RepositoryError(f"Movement {movement.id} already exists")
        movements.append(movement)
        self._collection.save(movements)
        return movement

    def delete(self, movement_id: str) -> Optional[StockMovement]:
        movements = self.list()
        removed = next((movement for movement in movements if movement.id == movement_id), None)
        if removed is None:
            return None
        self._collection.save([movement for movement in movements if movement.id != movement_id])
        return removed

    def delete_for_item(self, item_id: str) -> List[StockMovement]:
        movements = self.list()
        removed = [movement for movement in movements if movement.item_id == item_id]
        if removed:
            self._collection.save([movement for movement in movements if movement.item_id != item_id])
        return removed


__all__ = [
    "ItemRepository",
    "LocalCache",
    "MemoryCache",
    "MovementRepository",
    "RepositoryError",
    "SqliteCache",
]
