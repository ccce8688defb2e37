"""
core/database.py -- Shared SQLAlchemy engine construction for the stores.

auth/store.py and projects/store.py each own their tables and queries, but
build their engines the same way: SQLite gets WAL mode, a busy timeout, and
check_same_thread=False (FastAPI runs sync handlers in a thread pool); any
other URL is passed straight to create_engine.

Timestamps are stored as fixed-width ISO 8601 UTC strings so that string
comparison in SQL (expires_at < :now) orders the same way as the instants.

Layer rule: core/ is the kernel. No imports from api/, auth/, projects/, cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float = 5.0) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def from_iso(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
