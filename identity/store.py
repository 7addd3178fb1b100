"""
identity/store.py -- SQLAlchemy Core persistence for users and credentials.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The directory and the routes never touch SQL directly.

CredentialStore is the structural interface IdentityDirectory depends on.
UserStore is the production implementation; tests run it against an
in-memory SQLite database.

Atomicity:
  Every write that touches both tables (create with credentials, update with
  a credential change, soft delete) runs inside one engine.begin() block.
  Either the user row and its credentials row both change or neither does.

  Deleted is terminal. update_user() and soft_delete_user() re-check
  is_deleted inside their own transaction and raise UserDeleted, so a delete
  that commits after a caller's own check still wins.

Security:
  All queries use bound parameters. update_user() only accepts column names
  from a fixed whitelist.

  users.email is UNIQUE. Soft delete sets it to NULL, which frees the address
  for a new account (SQLite and PostgreSQL both allow many NULLs under UNIQUE).

Layer rule: no imports from api/ or core/. The database URL is always
passed in by the caller (see Settings.database_url).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine

from identity.errors import UserDeleted
from identity.models import Credentials, NewUser, User, UserId, UserQuery

DELETED_USER_NAME = "(deleted)"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hash", Text, nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), unique=True),  # NULL once soft-deleted
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("email_confirmed", Boolean, nullable=False, default=False),
    Column("is_admin", Boolean, nullable=False, default=False),
    Column("is_deleted", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    # UNIQUE: one credentials row belongs to at most one user
    Column("credentials_id", Integer, ForeignKey("credentials.id"), unique=True),
)

# Columns update_user() may write. id, timestamps, is_deleted and
# credentials_id are managed by the store itself.
_UPDATABLE_FIELDS = frozenset({"name", "email", "password", "email_confirmed", "is_admin"})


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """Transactional record store for User + Credentials entities."""

    def create_user(self, fields: NewUser, credential_hash: str | None = None) -> User: ...

    def get_user_by_id(self, user_id: UserId, include_credentials: bool = False) -> User | None: ...

    def get_user_by_email(self, email: str, include_credentials: bool = False) -> User | None: ...

    def list_users(self, query: UserQuery) -> list[User]: ...

    def update_user(
        self, user_id: UserId, fields: dict[str, Any], credential_hash: str | None = None
    ) -> User | None: ...

    def soft_delete_user(self, user_id: UserId, deleted_name: str = DELETED_USER_NAME) -> User | None: ...


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


def _now_iso() -> str:
    # Fixed microsecond precision keeps string order equal to time order.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_iso(value: datetime) -> str:
    """Normalize a filter timestamp to the stored format. Naive means UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _user_select():
    return select(_users, _credentials.c.hash.label("credentials_hash")).select_from(
        _users.outerjoin(_credentials, _users.c.credentials_id == _credentials.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Credentials entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(NewUser(name="Ada", email="ada@example.com", password=hashed), "HS256")
        store.get_user_by_email("ada@example.com", include_credentials=True)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def get_user_by_id(self, user_id: UserId, include_credentials: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            return self._fetch_by_id(conn, user_id, include_credentials)

    def get_user_by_email(self, email: str, include_credentials: bool = False) -> User | None:
        """Look up a user by exact email. Returns None if not found.

        Soft-deleted users have no email and can never match.
        """
        if not email:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row, include_credentials) if row is not None else None

    def list_users(self, query: UserQuery) -> list[User]:
        """Return users matching the filter, ordered by id.

        name and email are substring matches OR-ed together; the timestamp
        and id constraints are AND-ed on top.
        """
        stmt = _user_select()
        text_matches = []
        if query.name:
            text_matches.append(_users.c.name.contains(query.name, autoescape=True))
        if query.email:
            text_matches.append(_users.c.email.contains(query.email, autoescape=True))
        if text_matches:
            stmt = stmt.where(or_(*text_matches))
        if query.updated_since is not None:
            stmt = stmt.where(_users.c.updated_at >= _to_iso(query.updated_since))
        if query.ids is not None:
            stmt = stmt.where(_users.c.id.in_(query.ids))
        stmt = stmt.order_by(_users.c.id).limit(query.limit).offset(query.offset)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_user(r, query.credentials) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, fields: NewUser, credential_hash: str | None = None) -> User:
        """Insert a user, and its credentials row when credential_hash is given.

        fields.password must already be hashed. Both inserts share one
        transaction. Raises sqlalchemy.exc.IntegrityError if the email is
        already registered.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            credentials_id = None
            if credential_hash is not None:
                credentials_id = conn.execute(
                    _credentials.insert().values(hash=credential_hash)
                ).inserted_primary_key[0]
            user_id = conn.execute(
                _users.insert().values(
                    name=fields.name,
                    email=fields.email,
                    password=fields.password,
                    email_confirmed=fields.email_confirmed,
                    is_admin=fields.is_admin,
                    is_deleted=False,
                    created_at=now,
                    updated_at=now,
                    credentials_id=credentials_id,
                )
            ).inserted_primary_key[0]
            return self._fetch_by_id(conn, user_id, include_credentials=credential_hash is not None)

    def update_user(
        self, user_id: UserId, fields: dict[str, Any], credential_hash: str | None = None
    ) -> User | None:
        """Merge fields into a live user row and optionally set its credential secret.

        When credential_hash is given, an existing credentials row is updated
        in place and a missing one is created and linked. Which of the two
        happens is read from the locked row inside the transaction, so two
        racing updates never leave two credentials rows for one user.

        Returns the updated user with credentials, or None if user_id was
        not found. Raises UserDeleted if the row is (or becomes, before this
        transaction writes) soft-deleted; nothing is written in that case.
        Raises ValueError for fields outside the whitelist.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        with self.engine.begin() as conn:
            current = self._lock_live_row(conn, user_id)
            if current is None:
                return None
            if credential_hash is not None:
                if current.credentials_id is not None:
                    conn.execute(
                        _credentials.update()
                        .where(_credentials.c.id == current.credentials_id)
                        .values(hash=credential_hash)
                    )
                else:
                    values["credentials_id"] = conn.execute(
                        _credentials.insert().values(hash=credential_hash)
                    ).inserted_primary_key[0]
            values["updated_at"] = _now_iso()
            self._write_live_row(conn, user_id, values)
            return self._fetch_by_id(conn, user_id, include_credentials=True)

    def soft_delete_user(self, user_id: UserId, deleted_name: str = DELETED_USER_NAME) -> User | None:
        """Mark a user deleted, redact it and drop its credentials row.

        The row stays (id, timestamps, password hash) so references to it
        remain valid; email becomes NULL and name becomes deleted_name.
        Returns the updated user, or None if user_id was not found. Raises
        UserDeleted if the row is already deleted.
        """
        with self.engine.begin() as conn:
            current = self._lock_live_row(conn, user_id)
            if current is None:
                return None
            self._write_live_row(
                conn,
                user_id,
                {
                    "is_deleted": True,
                    "name": deleted_name,
                    "email": None,
                    "credentials_id": None,
                    "updated_at": _now_iso(),
                },
            )
            if current.credentials_id is not None:
                conn.execute(_credentials.delete().where(_credentials.c.id == current.credentials_id))
            return self._fetch_by_id(conn, user_id, include_credentials=False)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_live_row(self, conn: Connection, user_id: UserId):
        """Read (id, credentials_id) of a user for writing.

        FOR UPDATE holds the row on databases that support it; SQLite takes
        its write lock on the first write and rejects a stale transaction.
        Returns None if the row is missing, raises UserDeleted if it is deleted.
        """
        row = conn.execute(
            select(_users.c.id, _users.c.is_deleted, _users.c.credentials_id)
            .where(_users.c.id == user_id)
            .with_for_update()
        ).fetchone()
        if row is None:
            return None
        if row.is_deleted:
            raise UserDeleted()
        return row

    def _write_live_row(self, conn: Connection, user_id: UserId, values: dict[str, Any]) -> None:
        # is_deleted in the WHERE clause: a delete committed since the read matches zero rows
        result = conn.execute(
            _users.update().where(_users.c.id == user_id, _users.c.is_deleted.is_(False)).values(**values)
        )
        if result.rowcount == 0:
            raise UserDeleted()

    def _fetch_by_id(self, conn: Connection, user_id: UserId, include_credentials: bool) -> User | None:
        row = conn.execute(_user_select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row, include_credentials) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, include_credentials: bool = False) -> User:
    credentials = None
    if include_credentials and row.credentials_id is not None:
        credentials = Credentials(id=row.credentials_id, hash=row.credentials_hash)
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password=row.password,
        email_confirmed=bool(row.email_confirmed),
        is_admin=bool(row.is_admin),
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
        credentials_id=row.credentials_id,
        credentials=credentials,
    )
