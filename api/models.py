"""
API request and response models for userdir REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in identity/models.py, which own
the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire
(emailConfirmed, isAdmin, updatedAt, ...). populate_by_name lets tests and
internal callers use either form.

Separation of concerns: identity/ models = domain truth; api/ models = API contract.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from identity.models import Login, NewUser, User, UserChanges, UserRef
from identity.tokens import TokenClaims

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@" with something on both sides. Deliverability
# is proven by email confirmation, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_CAMEL_IN = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)
_CAMEL_OUT = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/user (public sign-up).

    isAdmin is not accepted here; admins are created with the CLI.
    """

    model_config = _CAMEL_IN

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    # max_length keeps inputs well below bcrypt's 72-byte window in practice
    password: str = Field(min_length=1, max_length=255)
    hash: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email_confirmed: bool = False

    def to_domain(self) -> NewUser:
        return NewUser(
            name=self.name,
            email=self.email,
            password=self.password,
            hash=self.hash,
            email_confirmed=self.email_confirmed,
        )


class UserUpdate(BaseModel):
    """Request body for PATCH /api/v1/user. Omitted fields stay unchanged."""

    model_config = _CAMEL_IN

    id: int
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email_confirmed: Optional[bool] = None
    hash: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=255)

    def to_domain(self) -> UserChanges:
        return UserChanges(
            id=self.id,
            name=self.name,
            email_confirmed=self.email_confirmed,
            hash=self.hash,
            password=self.password,
        )


class UserDelete(BaseModel):
    """Request body for DELETE /api/v1/user."""

    model_config = _CAMEL

    id: int

    def to_domain(self) -> UserRef:
        return UserRef(id=self.id)


class AuthenticateRequest(BaseModel):
    """Request body for POST /user/authenticate and POST /user/token."""

    model_config = _CAMEL_IN

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    def to_domain(self) -> Login:
        return Login(email=self.email, password=self.password)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class CredentialsResponse(BaseModel):
    model_config = _CAMEL_OUT

    id: int
    hash: str


class UserResponse(BaseModel):
    """User projection. The password hash is never part of it."""

    model_config = _CAMEL_OUT

    id: Union[int, str]
    name: str
    email: Optional[str] = None
    email_confirmed: bool
    is_admin: bool
    is_deleted: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    credentials_id: Optional[int] = None
    credentials: Optional[CredentialsResponse] = None

    @classmethod
    def from_user(cls, user: User, include_credentials: bool = True) -> "UserResponse":
        """Project a User. include_credentials=False leaves the credential secret out."""
        credentials = None
        if include_credentials and user.credentials is not None and user.credentials.id is not None:
            credentials = CredentialsResponse(id=user.credentials.id, hash=user.credentials.hash)
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            email_confirmed=user.email_confirmed,
            is_admin=user.is_admin,
            is_deleted=user.is_deleted,
            created_at=user.created_at,
            updated_at=user.updated_at,
            credentials_id=user.credentials_id,
            credentials=credentials,
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/user/token."""

    model_config = _CAMEL_OUT

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ClaimsResponse(BaseModel):
    """Response for POST /api/v1/user/validate."""

    model_config = _CAMEL_OUT

    id: Union[int, str]
    username: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "ClaimsResponse":
        return cls(id=claims.id, username=claims.username)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
