"""Identity errors.

These exceptions are raised by IdentityDirectory and AccessControl and are
translated into HTTP responses by api/main.py. Each carries a stable code
used in the error envelope.

The messages are safe to show to clients: they never contain passwords,
credential hashes or tokens.
"""


class IdentityError(Exception):
    """Base exception for all identity errors."""

    code = "identity_error"

    def __init__(self, message: str = "Identity error"):
        self.message = message
        super().__init__(self.message)


class UserNotFound(IdentityError):
    """Raised when the requested user id has no record."""

    code = "not_found"

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class Unauthorized(IdentityError):
    """Raised when the actor is neither the resource owner nor an admin.

    anonymous is True when there was no actor at all, which the HTTP layer
    reports as 401 rather than 403.
    """

    code = "unauthorized"

    def __init__(self, message: str = "Not allowed to access this user", anonymous: bool = False):
        self.anonymous = anonymous
        super().__init__(message)


class UserDeleted(IdentityError):
    """Raised when a mutation targets a soft-deleted account."""

    code = "user_deleted"

    def __init__(self, message: str = "User has been deleted"):
        super().__init__(message)


class InvalidCredentials(IdentityError):
    """Raised when email/password authentication fails.

    Deliberately does not say whether the email exists.
    """

    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class ValidationFailure(IdentityError):
    """Raised when malformed input reaches the core."""

    code = "validation_error"

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message)


class EmailAlreadyRegistered(ValidationFailure):
    code = "email_taken"

    def __init__(self, message: str = "Email is already registered"):
        super().__init__(message)
