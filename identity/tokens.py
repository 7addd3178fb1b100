"""
identity/tokens.py -- Bearer token issuance and validation.

JWT: python-jose with an HMAC algorithm (HS256 by default). Tokens carry the
principal id, a username (the account email) and the expiry. Nothing else:
no roles, no scopes. Admin status is re-read from the store on each request,
so promoting or deleting a user takes effect without re-issuing tokens.

decode() returns None on any failure -- expired, tampered, signed with a
different key, or missing a claim. The route layer turns None into 401.
The failure reason is logged at DEBUG; the token itself is never logged.

Scheme handling ("Bearer <token>") is NOT done here. TokenService consumes
only the raw token string; IdentityDirectory.validate_token() strips the
prefix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from identity.models import UserId

logger = logging.getLogger("userdir.tokens")


@dataclass(frozen=True)
class TokenClaims:
    """Identity payload of a token.

    expires_at is informational and excluded from equality, so claims
    decoded from a token compare equal to the claims it was issued from.
    """

    id: UserId
    username: str | None
    expires_at: datetime | None = field(default=None, compare=False)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username}


class TokenService:
    """Sign and decode bearer tokens with a symmetric secret.

    Expiry is fixed at construction time, not chosen per call.

    Usage:
        tokens = TokenService(secret_key, algorithm="HS256", expire_seconds=3600)
        raw = tokens.issue({"id": 1, "username": "a@example.com"})
        claims = tokens.decode(raw)  # TokenClaims or None
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_seconds: int = 365 * 24 * 3600) -> None:
        if not secret_key:
            raise ValueError("Token signing secret cannot be empty")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.expire = timedelta(seconds=expire_seconds)

    def issue(self, claims: dict[str, Any] | TokenClaims) -> str:
        """Encode a signed JWT for the given identity claims."""
        if isinstance(claims, TokenClaims):
            claims = claims.as_dict()
        now = datetime.now(timezone.utc)
        payload = {
            "id": claims["id"],
            "username": claims.get("username"),
            "iat": now,
            "exp": now + self.expire,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def decode(self, token: str) -> TokenClaims | None:
        """Decode and verify a JWT. Returns TokenClaims or None on any failure."""
        if not token or not isinstance(token, str):
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            logger.debug("Rejected token: expired")
            return None
        except JWTError as exc:
            logger.debug("Rejected token: %s", type(exc).__name__)
            return None
        if payload.get("id") is None or "username" not in payload:
            logger.debug("Rejected token: missing identity claims")
            return None
        exp = payload.get("exp")
        return TokenClaims(
            id=payload["id"],
            username=payload["username"],
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None,
        )
