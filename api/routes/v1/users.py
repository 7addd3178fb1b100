"""
api/routes/v1/users.py -- User directory REST endpoints.

Routes:
  GET    /api/v1/user              -- list users (admins: filtered; others: self only)
  POST   /api/v1/user              -- create account (public)
  PATCH  /api/v1/user              -- update account (self or admin)
  DELETE /api/v1/user              -- soft-delete account (self or admin)
  POST   /api/v1/user/validate     -- decode the Authorization header
  POST   /api/v1/user/authenticate -- email/password check, returns the user
  POST   /api/v1/user/token        -- email/password check, returns a bearer token
  GET    /api/v1/user/{user_id}    -- one user (self or admin)

Registration order matters: the fixed /user/* POST paths never collide with
GET /user/{user_id}, but keep literal paths above the parameterized one.

Every handler is a plain def: IdentityDirectory blocks on the database and
bcrypt, so FastAPI runs these in its thread pool.

Errors: handlers let IdentityError propagate. api/main.py maps each error
class to a status code and the shared error envelope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthenticateRequest,
    ClaimsResponse,
    TokenResponse,
    UserCreate,
    UserDelete,
    UserResponse,
    UserUpdate,
)
from core.config import get_settings
from identity.dependencies import get_current_user, get_directory
from identity.directory import IdentityDirectory
from identity.errors import InvalidCredentials
from identity.models import User, UserQuery

# Auth policy:
# - GET    /user:               requires auth; non-admins only ever see themselves
# - GET    /user/{id}:          requires auth + self-or-admin (directory)
# - POST   /user:               public -- account creation
# - PATCH  /user:               requires auth + self-or-admin (directory)
# - DELETE /user:               requires auth + self-or-admin (directory)
# - POST   /user/validate:      public -- the token under test IS the credential
# - POST   /user/authenticate:  public
# - POST   /user/token:         public
router = APIRouter()


# ---------------------------------------------------------------------------
# Listing and lifecycle
# ---------------------------------------------------------------------------


@router.get("/user", response_model=list[UserResponse])
def find_users(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    updated_since: Optional[datetime] = Query(default=None, alias="updatedSince"),
    ids: Optional[list[int]] = Query(default=None, alias="id"),
    name: str = Query(default="", max_length=255),
    email: str = Query(default="", max_length=255),
    credentials: bool = False,
    directory: IdentityDirectory = Depends(get_directory),
    current_user: User = Depends(get_current_user),
) -> list[UserResponse]:
    """List users.

    Query coercion: limit defaults to DEFAULT_PAGE_LIMIT (20), offset to 0,
    name/email to "", credentials to false. A single ?id=3 becomes [3];
    repeat the parameter for more (?id=3&id=4).

    Non-admin callers get a one-element list with their own record, whatever
    the filter says.
    """
    query = UserQuery(
        limit=limit if limit is not None else get_settings().default_page_limit,
        offset=offset,
        updated_since=updated_since,
        ids=ids,
        name=name,
        email=email,
        credentials=credentials,
    )
    return [UserResponse.from_user(u) for u in directory.find(query, current_user)]


@router.post("/user", response_model=UserResponse, status_code=201)
def create_user(body: UserCreate, directory: IdentityDirectory = Depends(get_directory)) -> UserResponse:
    """Create an account. Duplicate emails return 409."""
    return UserResponse.from_user(directory.create(body.to_domain()))


@router.patch("/user", response_model=UserResponse)
def update_user(
    body: UserUpdate,
    directory: IdentityDirectory = Depends(get_directory),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update name, emailConfirmed, password or the credential secret.

    Deleted accounts return 404 user_deleted.
    """
    return UserResponse.from_user(directory.update(body.to_domain(), current_user))


@router.delete("/user", response_model=UserResponse)
def delete_user(
    body: UserDelete,
    directory: IdentityDirectory = Depends(get_directory),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Soft-delete an account and return the redacted record."""
    return UserResponse.from_user(directory.delete(body.to_domain(), current_user))


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/user/validate", response_model=ClaimsResponse)
def validate_token(request: Request, directory: IdentityDirectory = Depends(get_directory)) -> ClaimsResponse:
    """Return the claims of the bearer token in the Authorization header.

    Only the signature and expiry are checked here; whether the account
    still exists is the job of the authenticated routes.
    """
    claims = directory.validate_token(request.headers.get("Authorization", ""))
    if not claims:
        raise InvalidCredentials("Invalid or expired token")
    return ClaimsResponse.from_claims(claims)


@router.post("/user/authenticate", response_model=UserResponse)
def authenticate(body: AuthenticateRequest, directory: IdentityDirectory = Depends(get_directory)) -> JSONResponse:
    """Check an email/password pair and return the matching user.

    Returns the same generic 401 for unknown email and wrong password. The
    credential secret is left out: a password check is not a credentials read.
    """
    user = directory.authenticate(body.to_domain())
    if user is None or user.is_deleted:
        raise InvalidCredentials()
    resp = JSONResponse(content=UserResponse.from_user(user, include_credentials=False).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/user/token", response_model=TokenResponse)
def issue_token(body: AuthenticateRequest, directory: IdentityDirectory = Depends(get_directory)) -> JSONResponse:
    """Check an email/password pair and return a signed bearer token."""
    token = directory.authenticate_and_issue_token(body.to_domain())
    resp = JSONResponse(
        content=TokenResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=int(directory.tokens.expire.total_seconds()),
        ).model_dump(by_alias=True)
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Single user
# ---------------------------------------------------------------------------


@router.get("/user/{user_id}", response_model=UserResponse)
def find_user(
    user_id: int,
    credentials: bool = False,
    directory: IdentityDirectory = Depends(get_directory),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Return one user. 403 for someone else's record unless admin, 404 if missing."""
    return UserResponse.from_user(directory.find_unique(user_id, current_user, include_credentials=credentials))
