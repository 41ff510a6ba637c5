from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .categories import CATEGORY_SPECS, ResourceCategory, get_spec
from .state import from_epoch_ms, minutes_from_now_ms


@dataclass(frozen=True)
class StorageInfo:
    exists: bool
    reprocess_time: Optional[datetime] = None


def _connect(path: Optional[Path]) -> sqlite3.Connection:
    if path is None:
        return sqlite3.connect(":memory:")
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    return conn


def _create_table(conn: sqlite3.Connection, table: str) -> None:
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {table} (id INTEGER PRIMARY KEY, reprocess_time INTEGER) WITHOUT ROWID"
    )


class StoreSession:
    """Row access for one category's table over an open connection."""

    def __init__(self, conn: sqlite3.Connection, category: ResourceCategory):
        self.category = ResourceCategory(category)
        self.table = get_spec(self.category).table
        self._conn = conn

    def get_storage_info(self, item_id: int) -> StorageInfo:
        row = self._conn.execute(
            f"SELECT id, reprocess_time FROM {self.table} WHERE id = ?",
            (int(item_id),),
        ).fetchone()
        if row is None:
            return StorageInfo(exists=False, reprocess_time=None)
        return StorageInfo(exists=True, reprocess_time=from_epoch_ms(row[1]))

    def upsert(self, item_id: int, minutes_until_reprocess: Optional[float] = None) -> None:
        reprocess_time = (
            minutes_from_now_ms(minutes_until_reprocess)
            if minutes_until_reprocess is not None and minutes_until_reprocess > 0
            else None
        )
        self._conn.execute(
            f"""
            INSERT INTO {self.table} (id, reprocess_time) VALUES (?, ?)
            ON CONFLICT (id) DO UPDATE SET reprocess_time = excluded.reprocess_time
            """,
            (int(item_id), reprocess_time),
        )
        self._conn.commit()


class DedupStore:
    """Per-category record of handled items and when they may be handled again.

    With a path, every session opens its own connection and closes it when
    done, so sessions from different categories can overlap. Without a path
    the store lives in one in-memory connection owned by this object.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._memory_conn: Optional[sqlite3.Connection] = None

    def setup(self, logger=None) -> None:
        if self.path is not None and not self.path.exists() and logger is not None:
            logger.info("Creating database file path=%s", self.path)
        with self._connection() as conn:
            for spec in CATEGORY_SPECS.values():
                _create_table(conn, spec.table)
            conn.commit()
        if logger is not None:
            logger.info("Dedup store ready path=%s tables=%s", self.path or ":memory:", len(CATEGORY_SPECS))

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if self.path is None:
            if self._memory_conn is None:
                self._memory_conn = _connect(None)
            yield self._memory_conn
            return
        conn = _connect(self.path)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def session(self, category: ResourceCategory) -> Iterator[StoreSession]:
        with self._connection() as conn:
            yield StoreSession(conn, category)

    def get_storage_info(self, category: ResourceCategory, item_id: int) -> StorageInfo:
        with self.session(category) as session:
            return session.get_storage_info(item_id)

    def upsert(
        self,
        category: ResourceCategory,
        item_id: int,
        minutes_until_reprocess: Optional[float] = None,
    ) -> None:
        with self.session(category) as session:
            session.upsert(item_id, minutes_until_reprocess)

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
