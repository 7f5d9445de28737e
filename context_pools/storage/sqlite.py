"""SQLiteStore: append-only version table using stdlib sqlite3."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping

from ..core.store import VersionedStore, matches
from ..types import PutReceipt, StoreUnavailable, VersionedObject
from .helpers import (
    as_utc,
    decode_document,
    dt_to_str,
    encode_document,
    next_valid_time,
    stamped_document,
    str_to_dt,
    utc_now,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS versions (
    id TEXT NOT NULL,
    version INTEGER NOT NULL,
    type TEXT NOT NULL,
    valid_from TEXT NOT NULL,
    tx_time TEXT NOT NULL,
    object_hash TEXT NOT NULL DEFAULT '',
    doc_json TEXT NOT NULL,
    PRIMARY KEY (id, version)
);

CREATE INDEX IF NOT EXISTS idx_versions_valid_from ON versions(id, valid_from);
CREATE INDEX IF NOT EXISTS idx_versions_type ON versions(type);
"""

LATEST_SQL = """\
SELECT v.id, v.doc_json FROM versions v
JOIN (SELECT id, MAX(version) AS version FROM versions GROUP BY id) latest
  ON v.id = latest.id AND v.version = latest.version
"""


class SQLiteStore(VersionedStore):
    """SQLite-backed version chains. Timestamps are fixed-width UTC ISO strings
    so ``get_as_of`` is an indexed range query."""

    backend_name = "sqlite"

    def __init__(
        self,
        db_path: str | Path,
        clock: Callable[[], datetime] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utc_now
        self._timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path), timeout=self._timeout, check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        try:
            conn = self._get_conn()
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except sqlite3.OperationalError as e:
            logger.error("SQLite schema setup failed for %s: %s", self.db_path, e)
            raise StoreUnavailable(f"SQLite unavailable: {e}", backend=self.backend_name) from e

    def _fetch(self, sql: str, params: tuple = (), *, many: bool = False) -> Any:
        try:
            cur = self._get_conn().execute(sql, params)
            return cur.fetchall() if many else cur.fetchone()
        except sqlite3.OperationalError as e:
            logger.error("SQLite read failed: %s", e)
            raise StoreUnavailable(f"SQLite read failed: {e}", backend=self.backend_name) from e

    def put(self, obj: VersionedObject) -> PutReceipt:
        with self._lock:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT version, valid_from FROM versions WHERE id = ? "
                    "ORDER BY version DESC LIMIT 1",
                    (obj.id,),
                ).fetchone()
                previous = str_to_dt(row["valid_from"]) if row else None
                version = row["version"] + 1 if row else 0
                valid_from = next_valid_time(self._clock(), previous)
                doc = stamped_document(obj, valid_from)
                cur = conn.execute(
                    """INSERT INTO versions
                       (id, version, type, valid_from, tx_time, object_hash, doc_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        obj.id,
                        version,
                        obj.type.value,
                        dt_to_str(valid_from),
                        dt_to_str(utc_now()),
                        obj.object_hash,
                        encode_document(doc),
                    ),
                )
                conn.commit()
            except sqlite3.OperationalError as e:
                conn.rollback()
                logger.error("SQLite write failed for %s: %s", obj.id, e)
                raise StoreUnavailable(f"SQLite write failed: {e}", backend=self.backend_name) from e
        return PutReceipt(id=obj.id, version=version, timestamp=valid_from, tx_id=cur.lastrowid)

    def get(self, object_id: str) -> VersionedObject | None:
        row = self._fetch(
            "SELECT doc_json FROM versions WHERE id = ? ORDER BY version DESC LIMIT 1",
            (object_id,),
        )
        return decode_document(row["doc_json"]) if row else None

    def get_as_of(self, object_id: str, at: datetime) -> VersionedObject | None:
        row = self._fetch(
            "SELECT doc_json FROM versions WHERE id = ? AND valid_from <= ? "
            "ORDER BY valid_from DESC LIMIT 1",
            (object_id, dt_to_str(as_utc(at))),
        )
        return decode_document(row["doc_json"]) if row else None

    def history(self, object_id: str) -> list[VersionedObject]:
        rows = self._fetch(
            "SELECT doc_json FROM versions WHERE id = ? ORDER BY version",
            (object_id,),
            many=True,
        )
        return [decode_document(r["doc_json"]) for r in rows]

    def get_version(self, object_id: str, index: int) -> VersionedObject | None:
        if index < 0:
            return super().get_version(object_id, index)
        row = self._fetch(
            "SELECT doc_json FROM versions WHERE id = ? AND version = ?",
            (object_id, index),
        )
        return decode_document(row["doc_json"]) if row else None

    def query(self, where: Mapping[str, Any]) -> set[str]:
        rows = self._fetch(LATEST_SQL, many=True)
        result: set[str] = set()
        for row in rows:
            if matches(json.loads(row["doc_json"]), where):
                result.add(row["id"])
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
