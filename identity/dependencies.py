"""
identity/dependencies.py -- FastAPI Depends() helpers for authentication.

Authentication is a bearer token in the Authorization header. The token's
claims only name the user; the actor is always re-loaded from the store, so
a token for a deleted account stops working as soon as the delete commits.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/.
  identity/dependencies.py may import from fastapi (for Request/HTTPException)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from identity.directory import IdentityDirectory
from identity.models import User


def get_directory(request: Request) -> IdentityDirectory:
    """Return the IdentityDirectory wired into app.state by the lifespan."""
    return request.app.state.directory


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via its Authorization header.

    Returns the live User on success, None on any failure. Never raises --
    callers that need a hard 401 should use get_current_user().
    """
    directory = get_directory(request)
    header = request.headers.get("Authorization", "")
    if not header:
        return None
    claims = directory.validate_token(header)
    if not claims:
        return None
    user = directory.store.get_user_by_id(claims.id)
    if user is None or user.is_deleted:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
