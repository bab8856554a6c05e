"""Domain-level input contracts shared by the service and the store."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationError
from ..security.passwords import MAX_PASSWORD_BYTES

MIN_USERNAME_LENGTH = 3
MIN_EMAIL_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def validate_password(password: object, field: str = "password") -> str:
    """Return ``password`` unchanged if it is acceptable for hashing."""
    if not isinstance(password, str) or not password:
        raise ValidationError(field, f"{field} is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(field, f"{field} must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(field, f"{field} must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


def _trimmed(value: object, field: str, min_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, f"{field} is required")
    value = value.strip()
    if len(value) < min_length:
        raise ValidationError(field, f"{field} must be at least {min_length} characters")
    return value


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to register an account."""

    username: str
    email: str
    password: str

    @classmethod
    def build(cls, username: object, email: object, password: object) -> "CreateAccountInput":
        """Trim and length-check raw input, raising ``ValidationError`` on the first problem."""
        return cls(
            username=_trimmed(username, "username", MIN_USERNAME_LENGTH),
            email=_trimmed(email, "email", MIN_EMAIL_LENGTH),
            password=validate_password(password),
        )
