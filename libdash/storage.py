"""Key/value storage backends.

Both backends expose the same small surface: string values under string
keys. The library store serializes its document to JSON before handing
it over.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from libdash.database import get_db_connection, initialize_database

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Interface shared by the in-memory and the SQLite storage."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)


class MemoryStorage(KeyValueStorage):
    """Dictionary backed storage, used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


class SQLiteStorage(KeyValueStorage):
    """Persistent storage in a single SQLite table."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        initialize_database(db_file)
        logger.debug("Using SQLite storage at %s", db_file)

    def get_item(self, key: str) -> Optional[str]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def set_item(self, key: str, value: str) -> None:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def remove_item(self, key: str) -> None:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def keys(self) -> List[str]:
        conn = get_db_connection(self.db_file)
        try:
            return [row["key"] for row in conn.execute("SELECT key FROM kv_store ORDER BY key")]
        finally:
            conn.close()

    def clear(self) -> None:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("DELETE FROM kv_store")
            conn.commit()
        finally:
            conn.close()
