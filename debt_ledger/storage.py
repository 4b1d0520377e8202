"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Atomic blocks hold the backend lock for their whole duration, so a
read-compute-write sequence (read balances, allocate, write balances) is
serialized against every other writer of the same store.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

from .currency import Money, Currency


def to_storage_value(value: Any) -> Any:
    """Convert a Python value to its JSON-friendly stored form"""
    if isinstance(value, Money):
        return str(value.amount)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Currency):
        return value.code
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [to_storage_value(v) for v in value]
    if isinstance(value, dict):
        return {k: to_storage_value(v) for k, v in value.items()}
    return value


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date, tolerating None and full datetimes"""
    if not value:
        return None
    return date.fromisoformat(value[:10])


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: to_storage_value(getattr(self, f.name)) for f in fields(self)}


class StorageInterface(ABC):
    """
    Table-of-JSON-documents store used by every manager

    Records are plain dicts keyed by id within a named table. Implementations
    return copies, so callers may mutate what they load.
    """

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """The record, or None when absent"""

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Every record of a table, oldest created first"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Remove a record; False when it did not exist"""

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    def close(self) -> None:
        """Release backend resources"""

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose top-level keys equal every filter value"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    @contextmanager
    def atomic(self):
        """
        Run a block as one unit of work

        The backend lock is held until the block ends, and any exception
        undoes every write made inside it. Blocks nest; only the outermost
        one commits or rolls back.
        """
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(record, default=str))


class InMemoryStorage(StorageInterface):
    """Dict-backed store; a rollback restores a snapshot taken at the outermost begin"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[str] = None

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return _copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = json.dumps(self._tables)
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._tables = json.loads(self._snapshot)
            self._snapshot = None
        self._lock.release()


class SQLiteStorage(StorageInterface):
    """
    One SQLite table per ledger table, each row holding a JSON document

    Writes outside an atomic block commit immediately. Inside a block they
    join one SQLite transaction that ends with the outermost block.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._lock = threading.RLock()
        self._depth = 0
        self._known_tables: set = set()

        if self.db_path != ":memory:":
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.commit()

    def _execute(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a statement against a table, creating the table on first use"""
        with self._lock:
            if table not in self._known_tables:
                self._connection.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    "(id TEXT PRIMARY KEY, data TEXT NOT NULL, created_at TEXT NOT NULL)"
                )
                self._known_tables.add(table)
            return self._connection.execute(sql.format(table=table), params)

    def _write(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._execute(table, sql, params)
            if self._depth == 0:
                self._connection.commit()
            return cursor

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        created_at = str(data.get('created_at') or datetime.now().isoformat())
        self._write(
            table,
            "INSERT INTO {table} (id, data, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
            (record_id, json.dumps(data, default=str), created_at)
        )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._execute(table, "SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row[0]) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._execute(table, "SELECT data FROM {table} ORDER BY created_at, rowid").fetchall()
        return [json.loads(row[0]) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        return self._write(table, "DELETE FROM {table} WHERE id = ?", (record_id,)).rowcount > 0

    def count(self, table: str) -> int:
        with self._lock:
            return self._execute(table, "SELECT COUNT(*) FROM {table}").fetchone()[0]

    def clear_table(self, table: str) -> None:
        self._write(table, "DELETE FROM {table}")

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.rollback()
                # CREATE TABLE statements are rolled back too
                self._known_tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def create_storage(backend: str, sqlite_path: str = ":memory:") -> StorageInterface:
    """Build a storage backend by name ("memory" or "sqlite")"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(sqlite_path)
    raise ValueError(f"Unknown storage backend: {backend}")
