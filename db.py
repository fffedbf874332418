import sqlite3
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "local_storage": """CREATE TABLE local_storage (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );""",
    }

    def __init__(self, db_path: str = "timers.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, sql in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql)

    def _ensure_table(self, conn: sqlite3.Connection, table: str, sql: str) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class LocalStorageRepository(BaseRepository):
    """Key/value blobs persisted in SQLite, one row per key."""

    def get_item(self, key: str) -> Optional[str]:
        rows = self.fetch_all(
            "SELECT value FROM local_storage WHERE key = ?;", (key,)
        )
        return rows[0][0] if rows else None

    def set_item(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO local_storage (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )

    def remove_item(self, key: str) -> None:
        self.execute("DELETE FROM local_storage WHERE key = ?;", (key,))

    def keys(self) -> List[str]:
        rows = self.fetch_all("SELECT key FROM local_storage ORDER BY key;")
        return [r[0] for r in rows]

    def clear(self) -> None:
        self._delete_all("local_storage")


class MemoryStorage:
    """In-memory drop-in for :class:`LocalStorageRepository`."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self.data)

    def clear(self) -> None:
        self.data.clear()
