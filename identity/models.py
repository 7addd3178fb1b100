"""
identity/models.py -- Domain dataclasses for identity entities and commands.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and the directory do the work.

Commands (UserQuery, NewUser, UserChanges, UserRef, Login) arrive already
validated by the boundary layer (Pydantic models in api/models.py, or the
CLI). The core does not re-check their shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

# Opaque identifier. UserStore assigns integers; nothing in the directory
# depends on that.
UserId = Union[int, str]


@dataclass
class Credentials:
    """Secondary secret record owned by exactly one User.

    hash is an opaque attribute (an algorithm tag or legacy secret), distinct
    from the bcrypt password hash stored on the User row.
    """

    hash: str
    id: int | None = None


@dataclass
class User:
    """A user account.

    password is always a bcrypt hash (never plaintext). credentials is only
    populated when the caller asked the store to include it; credentials_id
    is always populated from the row.

    is_deleted is one-way. A deleted row keeps its id and timestamps but has
    email=None and a marker name.
    """

    name: str
    email: str | None
    password: str
    id: UserId | None = None
    email_confirmed: bool = False
    is_admin: bool = False
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    credentials_id: int | None = None
    credentials: Credentials | None = None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass
class UserQuery:
    """Admin listing filter.

    name/email are substring matches combined with OR. updated_since is an
    inclusive lower bound. ids restricts to a set. Empty values mean "no
    constraint".
    """

    limit: int = 20
    offset: int = 0
    updated_since: datetime | None = None
    ids: list[UserId] | None = None
    name: str = ""
    email: str = ""
    credentials: bool = False


@dataclass
class NewUser:
    """Account creation. password is plaintext here; the directory hashes it."""

    name: str
    email: str
    password: str
    hash: str | None = None
    email_confirmed: bool = False
    is_admin: bool = False


@dataclass
class UserChanges:
    """Partial update. None means "not supplied"."""

    id: UserId
    name: str | None = None
    email_confirmed: bool | None = None
    hash: str | None = None
    password: str | None = None  # plaintext; re-hashed before the merge


@dataclass
class UserRef:
    id: UserId


@dataclass
class Login:
    email: str
    password: str = field(repr=False)

