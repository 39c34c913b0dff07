from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Protocol

import structlog


logger = structlog.get_logger(__name__)

DB_FILENAME = "chain-checks.db"


class StoreError(Exception):
    """The backing store could not serve a read or write."""


class KeyNotFound(StoreError, KeyError):
    pass


class KeyValueStore(Protocol):
    def get(self, namespace: str, key: bytes) -> bytes: ...

    def set(self, namespace: str, key: bytes, value: bytes, ttl: float | None = None) -> None: ...

    def has(self, namespace: str, key: bytes) -> bool: ...

    def close(self) -> None: ...


def _as_key(key: bytes | str) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA busy_timeout = 5000;")
    if p != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA synchronous = FULL;")
    return conn


class SqliteStore:
    """
    Namespaced key/value store with optional per-entry expiry.

    Expired rows are invisible to get/has immediately; purge_expired() reclaims
    them. `clock` returns unix seconds and exists so expiry can be simulated.
    """

    def __init__(self, path: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self.path = str(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = _connect(self.path)
        self._ensure_schema()

    @classmethod
    def in_data_dir(cls, data_dir: str | Path, **kwargs) -> "SqliteStore":
        return cls(Path(data_dir) / DB_FILENAME, **kwargs)

    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                  namespace TEXT NOT NULL,
                  key BLOB NOT NULL,
                  value BLOB NOT NULL,
                  created_at_ts REAL NOT NULL,
                  expires_at_ts REAL,
                  PRIMARY KEY (namespace, key)
                );
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS kv_expires_at ON kv (expires_at_ts);")

    def get(self, namespace: str, key: bytes | str) -> bytes:
        now = float(self._clock())
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM kv WHERE namespace=? AND key=? AND (expires_at_ts IS NULL OR expires_at_ts > ?)",
                    (namespace, _as_key(key), now),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"failed to get key in namespace {namespace}: {exc}") from exc
        if row is None:
            raise KeyNotFound(f"{namespace}/{_as_key(key).hex()}")
        return bytes(row[0])

    def set(self, namespace: str, key: bytes | str, value: bytes, ttl: float | None = None) -> None:
        now = float(self._clock())
        expires_at = now + float(ttl) if ttl is not None else None
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv (namespace, key, value, created_at_ts, expires_at_ts) VALUES (?, ?, ?, ?, ?)",
                    (namespace, _as_key(key), bytes(value), now, expires_at),
                )
        except sqlite3.Error as exc:
            logger.debug("Failed to set key", namespace=namespace, error=str(exc))
            raise StoreError(f"failed to set key in namespace {namespace}: {exc}") from exc

    def has(self, namespace: str, key: bytes | str) -> bool:
        try:
            self.get(namespace, key)
        except KeyNotFound:
            return False
        return True

    def purge_expired(self) -> int:
        now = float(self._clock())
        try:
            with self._lock:
                cur = self._conn.execute(
                    "DELETE FROM kv WHERE expires_at_ts IS NOT NULL AND expires_at_ts <= ?", (now,)
                )
        except sqlite3.Error as exc:
            raise StoreError(f"failed to purge expired keys: {exc}") from exc
        return int(cur.rowcount or 0)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
