"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Services and routes never touch SQL directly.

Tables:
  users                account holders (email unique, stored lower-cased)
  refresh_tokens       one row per issued refresh token, keyed by the lookup
                       digest of its token id; revoked, never deleted
  api_keys             user API keys, keyed by digest; raw key never stored
  password_resets      single-use tokens (auth/single_use.py)
  email_confirmations  single-use tokens (auth/single_use.py)

Security:
  All queries use bound parameters. No f-strings in SQL.

  State transitions that guard a credential (refresh revocation, single-use
  consumption) are single conditional UPDATEs whose rowcount decides the
  outcome. A read followed by a separate write would let two concurrent
  requests both succeed.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
text comparison in SQL orders them correctly on every backend.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import ApiKey, RefreshSession, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("token_hash", String(64), primary_key=True),  # digest of the JWT jti
    Column("user_id", String(32), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(12), nullable=False),  # display only
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
)


def single_use_table(name: str, *columns: Column) -> Table:
    """Define a single-use token table: digest PK, expiry, consumption mark.

    Extra columns (the subject and any flow-specific fields) are appended.
    """
    return Table(
        name,
        metadata,
        Column("token_hash", String(64), primary_key=True),
        *columns,
        Column("expires_at", String(32), nullable=False),
        Column("used_at", String(32)),
        Column("created_at", String(32), nullable=False),
    )


password_resets = single_use_table("password_resets", Column("user_id", String(32), nullable=False, index=True))
email_confirmations = single_use_table(
    "email_confirmations", Column("user_id", String(32), nullable=False, index=True)
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return isoformat(utcnow())


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, refresh sessions and API keys.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@b.c", name="A", hashed_password=...))
        user = store.get_by_email("a@b.c")
        store.close()

    The engine is public: the single-use token flows and the organization
    store share it so every table lives in one database.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email is already
        registered. The register route turns that into a 409.
        """
        user_id = new_id()
        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    email_verified=1 if user.email_verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields: name, hashed_password, email_verified.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def create_refresh_session(self, session: RefreshSession) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token_hash=session.token_hash,
                    user_id=session.user_id,
                    expires_at=session.expires_at,
                    revoked=0,
                    created_at=now_iso(),
                )
            )
            conn.commit()

    def get_refresh_session(self, token_hash: str, user_id: str) -> RefreshSession | None:
        """Look up a session by digest AND owner. A mismatched owner is a miss."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke_refresh_session(self, token_hash: str) -> bool:
        """Mark one session revoked. Returns True only for the call that flipped it.

        The revoked = 0 predicate makes this the exclusivity point of refresh
        rotation: of two concurrent rotations of the same token, exactly one
        sees rowcount 1.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_user_sessions(self, user_id: str) -> int:
        """Revoke every live session of a user. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=now_iso())
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def count_api_keys(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_api_keys).where(_api_keys.c.user_id == user_id)
            ).scalar()
        return result or 0

    def create_api_key(self, api_key: ApiKey) -> ApiKey:
        """Insert a key record and return it with id and created_at filled in."""
        api_key.id = new_id()
        api_key.created_at = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _api_keys.insert().values(
                    id=api_key.id,
                    user_id=api_key.user_id,
                    name=api_key.name,
                    key_hash=api_key.key_hash,
                    key_prefix=api_key.key_prefix,
                    created_at=api_key.created_at,
                )
            )
            conn.commit()
        return api_key

    def get_api_keys(self, user_id: str) -> list[ApiKey]:
        """Return all keys for a user (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.user_id == user_id).order_by(_api_keys.c.created_at.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """O(1) lookup via the UNIQUE index on key_hash."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.key_hash == key_hash)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def touch_api_key(self, key_hash: str) -> None:
        """Stamp last_used_at. Unsynchronized by design: last writer wins."""
        with self.engine.connect() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.key_hash == key_hash).values(last_used_at=now_iso()))
            conn.commit()

    def delete_api_key(self, key_id: str, user_id: str) -> bool:
        """Delete a key. user_id is part of the WHERE clause to prevent IDOR.

        Returns False if the key does not exist or belongs to someone else;
        the two cases are indistinguishable to the caller on purpose.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.delete().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
        revoked_at=row.revoked_at,
        created_at=row.created_at,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )
