"""
identity/access.py -- Self-or-admin access decision.

The only policy: an actor may touch a user record if it is that record's
owner or an admin. No actor (anonymous caller) is always denied.

Pure functions, no I/O. IdentityDirectory calls authorize() before any
resource-scoped store access (find_unique, update, delete).
"""

from __future__ import annotations

from identity.errors import Unauthorized
from identity.models import User, UserId


def is_allowed(actor: User | None, owner_id: UserId) -> bool:
    """Return True iff actor is an admin or owns owner_id."""
    if actor is None:
        return False
    return actor.is_admin or actor.id == owner_id


def authorize(actor: User | None, owner_id: UserId) -> None:
    """Raise Unauthorized unless is_allowed(actor, owner_id)."""
    if actor is None:
        raise Unauthorized("Authentication required", anonymous=True)
    if not is_allowed(actor, owner_id):
        raise Unauthorized()
