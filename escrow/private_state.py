"""
Private State Store

Persistent per-contract private state, keyed by state id.

PRINCIPLES:
===========
1. Read before write: every circuit call reads the current blob first
2. Absent state is the empty state b"{}", never an error
3. Blobs are opaque here; only circuits interpret them
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List
import hashlib
import logging
import sqlite3

logger = logging.getLogger(__name__)

EMPTY_STATE = b"{}"


@dataclass(frozen=True)
class PutAck:
    store_name: str
    state_id: str
    content_hash: str
    stored_at: datetime


class PrivateStateStore:
    """
    SQLite-backed store, one database per store name under `base_path`.
    """

    def __init__(self, base_path: Path, store_name: str):
        if not store_name:
            raise ValueError("store_name is required")
        self._base_path = Path(base_path)
        self._store_name = store_name
        self._db_path = self._base_path / f"{store_name}.db"

        self._base_path.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def store_name(self) -> str:
        return self._store_name

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS private_state (
                    store_name TEXT NOT NULL,
                    state_id TEXT NOT NULL,
                    blob BLOB NOT NULL,
                    content_hash TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (store_name, state_id)
                );
            ''')

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get(self, state_id: str) -> bytes:
        with self._get_conn() as conn:
            row = conn.execute(
                'SELECT blob FROM private_state WHERE store_name = ? AND state_id = ?',
                (self._store_name, state_id)
            ).fetchone()
        if row is None:
            return EMPTY_STATE
        return bytes(row['blob'])

    def put(self, state_id: str, blob: bytes) -> PutAck:
        if not state_id:
            raise ValueError("state_id is required")
        stored_at = datetime.now(timezone.utc)
        content_hash = hashlib.sha256(blob).hexdigest()
        with self._get_conn() as conn:
            conn.execute('''
                INSERT OR REPLACE INTO private_state
                (store_name, state_id, blob, content_hash, updated_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (self._store_name, state_id, sqlite3.Binary(blob),
                  content_hash, stored_at.isoformat()))
        logger.debug("Stored private state %s/%s (%s)",
                     self._store_name, state_id, content_hash[:12])
        return PutAck(
            store_name=self._store_name,
            state_id=state_id,
            content_hash=content_hash,
            stored_at=stored_at,
        )

    def delete(self, state_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                'DELETE FROM private_state WHERE store_name = ? AND state_id = ?',
                (self._store_name, state_id)
            )
            return cursor.rowcount > 0

    def list_ids(self) -> List[str]:
        with self._get_conn() as conn:
            rows = conn.execute(
                'SELECT state_id FROM private_state WHERE store_name = ? ORDER BY state_id',
                (self._store_name,)
            ).fetchall()
        return [row['state_id'] for row in rows]
