"""Error taxonomy shared by the account store, the service layer and the API.

Hierarchy::

    AccountServiceError
    ├── ValidationError            malformed or missing input
    ├── DuplicateKeyError          username/email uniqueness violation
    ├── NotFoundError              generic store lookup miss
    ├── AuthenticationFailedError  bad credentials at login
    └── UnauthorizedError          missing, invalid or revoked token

The store raises the most specific error it can detect. The service collapses
credential lookups into ``AuthenticationFailedError`` / ``UnauthorizedError`` so
that callers never learn whether a username exists.
"""

from __future__ import annotations

from typing import Any


class AccountServiceError(Exception):
    """Base class for every error raised by the account service."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Structured form used for API error bodies."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AccountServiceError):
    """Raised when input fails shape or length checks."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, {"field": field})
        self.field = field


class DuplicateKeyError(AccountServiceError):
    """Raised when creating an account whose username or email is taken."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} already exists", {"field": field})
        self.field = field


class NotFoundError(AccountServiceError):
    pass


class AuthenticationFailedError(AccountServiceError):
    def __init__(self) -> None:
        super().__init__("invalid username or password")


class UnauthorizedError(AccountServiceError):
    def __init__(self) -> None:
        super().__init__("authentication required")
