"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as projects/store.py).
UserStore and RefreshTokenStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. Flow and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  RefreshTokenStore.revoke() is a single conditional UPDATE
  (WHERE token_hash = :h AND revoked = 0). The database serialises the two
  writers of a concurrent double-refresh, so exactly one sees rowcount == 1.
  Rotation proceeds only for that caller.

  token_hash is UNIQUE, so one stored record corresponds to one raw secret.

DB: DATABASE_URL (default taskboard.db beside the packages). Both stores may
share a URL; they own disjoint tables.

Layer rule: no imports from api/, projects/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import ROLE_ADMIN, RefreshToken, User
from core.database import from_iso, make_engine, now_iso, to_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("avatar", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("ip", String(45)),
    Column("user_agent", String(512)),
    Index("ix_refresh_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@ex.com", hashed_password=h, first_name="A", last_name="B"))
        user = store.find_by_email("a@ex.com")
        store.close()
    """

    # Columns update_user() may touch. Validated before any SQL is built.
    _MUTABLE_FIELDS: set = {"role", "is_active", "first_name", "last_name", "avatar"}

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine, tables=[_users])

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into ConflictFailure -- the UNIQUE index is the
        authority when two registrations for one email race.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email.lower())).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, first_name, last_name, avatar.
        Unknown fields raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now_iso()))
            conn.commit()

    def count_active_admins(self) -> int:
        """Return the number of active admin users (guards last-admin changes)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == ROLE_ADMIN) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for issued refresh-token records.

    Usage:
        store = RefreshTokenStore("sqlite:///:memory:")
        store.create(user_id, codec.hash(token), expires_at, ip, user_agent)
        record = store.find_by_hash(codec.hash(token))
        store.revoke(record.token_hash)
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine, tables=[_refresh_tokens])

    def create(
        self,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshToken:
        """Persist a new record and return it with id and issued_at filled in.

        Raises sqlalchemy.exc.IntegrityError if token_hash is already stored.
        """
        issued_at = datetime.now(timezone.utc)
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    issued_at=to_iso(issued_at),
                    expires_at=to_iso(expires_at),
                    revoked=0,
                    ip=ip,
                    user_agent=user_agent[:512] if user_agent else None,
                )
            )
            conn.commit()
            record_id = result.inserted_primary_key[0]
        return RefreshToken(
            id=record_id,
            user_id=user_id,
            token_hash=token_hash,
            issued_at=issued_at,
            expires_at=from_iso(to_iso(expires_at)),
            revoked=False,
            ip=ip,
            user_agent=user_agent,
        )

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke(self, token_hash: str) -> bool:
        """Flip revoked false -> true for one record.

        Idempotent: revoking an already-revoked or unknown handle is not an
        error. Returns True only for the call that performed the transition,
        which is what makes rotation safe under concurrent refreshes.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        return result.rowcount == 1

    def revoke_all(self, user_id: int) -> int:
        """Revoke every outstanding record for user_id. Returns the count revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        return result.rowcount

    def list_active(self, user_id: int) -> list[RefreshToken]:
        """Return unrevoked, unexpired records for user_id (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > now_iso())
                )
                .order_by(_refresh_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_expired(self) -> int:
        """Delete records past expires_at. Returns the number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        role=row.role,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        issued_at=from_iso(row.issued_at),
        expires_at=from_iso(row.expires_at),
        revoked=bool(row.revoked),
        ip=row.ip,
        user_agent=row.user_agent,
    )
