"""
cache/store.py -- SQLite-backed cache-aside store for profiles and resources.

Advisory only: a miss means "not cached", never "does not exist". Callers
always fall back to the authoritative store on a miss, and every write path
deletes (never updates) the keys it affects -- see cache/keys.py for the
namespaces.

Failure policy: the cache must never make a read wrong, only slower. Any
sqlite3 error -- including a lock wait longer than the configured timeout or
a closed connection -- is logged and degrades: get() returns None, writes
become no-ops. A disabled cache (CACHE_ENABLED=false) always misses.

Usage:
    cache = ResourceCache(":memory:", enabled=True)
    cache.set("user:profile:7", {"id": 7, ...}, ttl=3600)
    data = cache.get("user:profile:7")   # dict or None
    cache.delete_prefix("project:user:7:")
    cache.purge_expired()                # call periodically to trim old entries
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union

logger = logging.getLogger("taskboard.cache")

_DEFAULT_TTL = 300  # 5 minutes

_DDL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ResourceCache:
    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        enabled: bool = True,
        timeout: float = 0.5,
        default_ttl: int = _DEFAULT_TTL,
    ) -> None:
        self.enabled = enabled
        self.default_ttl = default_ttl
        # One connection shared across worker threads; the lock serialises
        # use of it, the sqlite timeout bounds waits on other processes.
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None on a miss, expiry, or error."""
        if not self.enabled:
            return None
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT data, expires_at FROM cache_entries WHERE key = ?",
                    (key,),
                ).fetchone()
                if row is not None and row[1] <= time.time():
                    self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                    self._conn.commit()
                    row = None
        except sqlite3.Error as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None
        if row is None:
            logger.debug("Cache miss %s", key)
            return None
        logger.debug("Cache hit %s", key)
        return json.loads(row[0])

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value under key for ttl seconds, replacing any existing entry."""
        if not self.enabled:
            return
        expires_at = time.time() + (ttl if ttl is not None else self.default_ttl)
        try:
            payload = json.dumps(value)
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO cache_entries (key, data, expires_at) VALUES (?, ?, ?)",
                    (key, payload, expires_at),
                )
                self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    def fill(self, key: str, value: Any, ttl: Optional[int], current: Callable[[], Any]) -> bool:
        """Cache-aside fill that cannot outlive a concurrent write.

        Writers update the store and then delete the key. If one ran between
        the caller's read and this set, its delete is already spent, so the
        source is read again through current() and the entry is dropped when
        it no longer matches value. Returns True when the entry was kept.
        """
        if not self.enabled:
            return False
        self.set(key, value, ttl)
        if current() != value:
            logger.debug("Cache fill %s raced a write; dropped", key)
            self.delete(key)
            return False
        return True

    def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            with self._lock:
                self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns rows removed (0 on error)."""
        if not self.enabled:
            return 0
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "DELETE FROM cache_entries WHERE key LIKE ? ESCAPE '\\'",
                    (_escape_like(prefix) + "%",),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Cache prefix delete failed for %s: %s", prefix, exc)
            return 0
        if cursor.rowcount:
            logger.debug("Cache prefix %s removed %d entries", prefix, cursor.rowcount)
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        try:
            with self._lock:
                cursor = self._conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (time.time(),))
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Cache purge failed: %s", exc)
            return 0
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
