"""
identity/directory.py -- User directory: lookups, lifecycle and authentication.

IdentityDirectory is the single entry point the HTTP layer and the CLI use.
It is stateless between calls; the only shared resource is the injected
CredentialStore, which provides per-call atomicity for combined
user + credentials writes.

Lifecycle:
  Active --update--> Active
  Active --delete--> Deleted (terminal)
  Any update or delete of a Deleted user raises UserDeleted. A second delete
  is rejected rather than silently repeated, so the redacted row and the
  already-removed credentials are never touched again.

Access:
  authorize() (self-or-admin) runs before find_unique, update and delete
  reach the store. create, authenticate and the token operations are public.

Authentication:
  authenticate() spends one bcrypt verification whether or not the email
  exists, and returns None for both "unknown email" and "wrong password".
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Literal

from sqlalchemy.exc import IntegrityError

from core.config import Settings, get_settings
from identity.access import authorize
from identity.errors import EmailAlreadyRegistered, InvalidCredentials, UserDeleted, UserNotFound, Unauthorized
from identity.models import Login, NewUser, User, UserChanges, UserId, UserQuery, UserRef
from identity.passwords import PasswordHasher
from identity.store import DELETED_USER_NAME, CredentialStore
from identity.tokens import TokenClaims, TokenService

logger = logging.getLogger("userdir.directory")

DEFAULT_TOKEN_PREFIX = "Bearer "


class IdentityDirectory:
    """Orchestrates user lookups and mutations against a CredentialStore.

    Usage:
        directory = IdentityDirectory.from_settings(UserStore(settings.database_url), settings)
        user = directory.create(NewUser(name="Ada", email="ada@example.com", password="secret"))
        token = directory.authenticate_and_issue_token(Login("ada@example.com", "secret"))
        claims = directory.validate_token(f"Bearer {token}")
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        token_prefix: str = DEFAULT_TOKEN_PREFIX,
        deleted_name: str = DELETED_USER_NAME,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.token_prefix = token_prefix
        self.deleted_name = deleted_name

    @classmethod
    def from_settings(cls, store: CredentialStore, settings: Settings | None = None) -> "IdentityDirectory":
        """Build a directory whose hasher and token service follow Settings."""
        settings = settings or get_settings()
        return cls(
            store=store,
            hasher=PasswordHasher(rounds=settings.password_hash_rounds),
            tokens=TokenService(
                settings.secret_key,
                algorithm=settings.token_algorithm,
                expire_seconds=settings.token_expire_seconds,
            ),
            token_prefix=settings.token_prefix,
            deleted_name=settings.deleted_user_name,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find(self, query: UserQuery, actor: User | None) -> list[User]:
        """List users.

        Non-admins cannot enumerate: they get exactly their own record and
        the filter is ignored. Admins get the filtered, paginated listing.
        """
        if actor is None:
            raise Unauthorized("Authentication required", anonymous=True)
        if not actor.is_admin:
            return [actor]
        return self.store.list_users(query)

    def find_unique(self, user_id: UserId, actor: User | None, include_credentials: bool = False) -> User:
        """Return one user by id, after the self-or-admin check."""
        authorize(actor, user_id)
        # Self fast path: the actor was loaded from the store for this request.
        if actor.id == user_id and not include_credentials:
            return actor
        user = self.store.get_user_by_id(user_id, include_credentials=include_credentials)
        if user is None:
            raise UserNotFound()
        return user

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, new_user: NewUser) -> User:
        """Create an account. Public: no access check.

        The password is hashed here. When new_user.hash is given the
        credentials row is created in the same transaction as the user row.
        """
        fields = dataclasses.replace(new_user, password=self.hasher.hash(new_user.password), hash=None)
        try:
            user = self.store.create_user(fields, new_user.hash)
        except IntegrityError as exc:
            raise EmailAlreadyRegistered() from exc
        logger.info("Created user id=%s (credentials=%s)", user.id, user.credentials_id is not None)
        return user

    def update(self, changes: UserChanges, actor: User | None) -> User:
        """Merge supplied fields into a live user, creating or updating credentials.

        The store re-checks the deleted flag inside its own transaction, so
        a delete that lands between the check below and the write still
        raises UserDeleted and leaves the redacted row untouched.
        """
        authorize(actor, changes.id)
        current = self.store.get_user_by_id(changes.id)
        if current is None:
            raise UserNotFound()
        if current.is_deleted:
            raise UserDeleted()

        fields: dict = {}
        if changes.name is not None:
            fields["name"] = changes.name
        if changes.email_confirmed is not None:
            fields["email_confirmed"] = changes.email_confirmed
        if changes.password is not None:
            fields["password"] = self.hasher.hash(changes.password)

        updated = self.store.update_user(changes.id, fields, changes.hash)
        if updated is None:
            raise UserNotFound()
        if changes.hash is None:
            credentials = "unchanged"
        elif updated.credentials_id == current.credentials_id:
            credentials = "updated"
        else:
            credentials = "created"
        logger.info(
            "Updated user id=%s by actor id=%s (fields=%s, credentials=%s)",
            changes.id,
            actor.id,
            sorted(fields),
            credentials,
        )
        return updated

    def delete(self, ref: UserRef, actor: User | None) -> User:
        """Soft-delete a user: mark deleted, redact, remove credentials."""
        authorize(actor, ref.id)
        current = self.store.get_user_by_id(ref.id)
        if current is None:
            raise UserNotFound()
        if current.is_deleted:
            raise UserDeleted()
        deleted = self.store.soft_delete_user(ref.id, deleted_name=self.deleted_name)
        if deleted is None:
            raise UserNotFound()
        logger.info("Deleted user id=%s by actor id=%s", ref.id, actor.id)
        return deleted

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, login: Login) -> User | None:
        """Return the user for a matching email/password pair, else None."""
        user = self.store.get_user_by_email(login.email, include_credentials=True)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt
            self.hasher.dummy_verify(login.password)
            return None
        if not self.hasher.verify(login.password, user.password):
            logger.info("Failed authentication for user id=%s", user.id)
            return None
        return user

    def authenticate_and_issue_token(self, login: Login) -> str:
        """Authenticate and return a signed token for the user.

        Raises InvalidCredentials on any failure, including a deleted account.
        """
        user = self.authenticate(login)
        if user is None or user.is_deleted:
            raise InvalidCredentials()
        return self.tokens.issue({"username": user.email, "id": user.id})

    def validate_token(self, header_value: str | None) -> TokenClaims | Literal[False]:
        """Decode an Authorization header value. Returns claims or False.

        A value that starts with the scheme prefix and is longer than it has
        exactly len(prefix) characters removed. Anything else is decoded
        as-is. Never raises.
        """
        if not header_value or not isinstance(header_value, str):
            return False
        token = header_value
        if len(token) > len(self.token_prefix) and token.startswith(self.token_prefix):
            token = token[len(self.token_prefix):]
        claims = self.tokens.decode(token)
        return claims if claims is not None else False
