"""Key-value persistence backends for dashboard state.

Every namespace (snapshots, action state, contact log, notification feed)
is one JSON blob under a fixed key. Reads and writes go through
`read_json` / `write_json`, which never raise: persistence is a local
convenience and must not halt evaluation.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Optional, Protocol

from broker_ops.core.config import Settings, get_settings
from broker_ops.core.logging import logger


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class InMemoryKeyValueStore:
    """Process-local store, used for tests and when no state path is configured."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._lock = Lock()
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class SqliteKeyValueStore:
    """SQLite-backed string store; one row per namespace key."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key_name TEXT PRIMARY KEY,
                    value_text TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_text FROM kv_entries WHERE key_name = ?",
                (key,),
            ).fetchone()
        return None if row is None else str(row["value_text"])

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv_entries (key_name, value_text, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key_name) DO UPDATE SET value_text = excluded.value_text, updated_at = excluded.updated_at
                """,
                (key, value, _utc_now_iso()),
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def read_json(store: KeyValueStore, key: str, default: Any) -> Any:
    """Decode the blob under `key`, or return `default` on a missing key or any failure."""
    try:
        raw = store.get(key)
    except Exception as exc:
        logger.warning("State read failed; using empty state", key=key, error=str(exc))
        return default
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError as exc:
        logger.warning("Malformed state blob; using empty state", key=key, error=str(exc))
        return default


def write_json(store: KeyValueStore, key: str, value: Any) -> None:
    try:
        store.set(key, json.dumps(value, ensure_ascii=True))
    except Exception as exc:
        logger.warning("State write failed; ignoring", key=key, error=str(exc))


def build_kv_store(settings: Optional[Settings] = None) -> KeyValueStore:
    settings = settings or get_settings()
    if settings.uses_memory_state():
        return InMemoryKeyValueStore()
    return SqliteKeyValueStore(settings.state_db_path)
