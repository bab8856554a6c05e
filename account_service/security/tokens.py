"""Issue and verify the signed bearer tokens handed to clients."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import jwt
from jwt.utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

TOKEN_PURPOSE_AUTH = "auth"


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Claims recovered from a token whose signature checked out."""

    account_id: str
    purpose: str
    issued_at: datetime | None = None


class TokenIssuer:
    """Stateless JWT signer bound to one process-wide secret.

    The issuer only proves that a payload was signed with its secret. Whether a
    well-signed token is still active is decided by the account store.
    """

    def __init__(self, secret: str, *, algorithm: str = "HS256", ttl_seconds: int | None = None) -> None:
        """Capture the signing configuration.

        Parameters
        ----------
        secret:
            HMAC key used for signing and verification.
        algorithm:
            JWS algorithm name accepted by PyJWT.
        ttl_seconds:
            Lifetime embedded as ``exp``; ``None`` issues tokens without expiry.
        """
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl_seconds = ttl_seconds

    def issue(self, account_id: str, purpose: str = TOKEN_PURPOSE_AUTH) -> str:
        """Return a signed token whose payload carries ``account_id`` and ``purpose``."""
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": account_id,
            "purpose": purpose,
            "iat": now,
            # distinguishes tokens minted for the same account within one second
            "jti": secrets.token_hex(8),
        }
        if self._ttl_seconds:
            payload["exp"] = now + self._ttl_seconds
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims | None:
        """Return the decoded claims, or ``None`` when the token is not valid.

        Invalid covers a bad signature, malformed or non-canonical encoding,
        missing claims and expiry.
        """
        if not isinstance(token, str) or not _is_canonical(token):
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "purpose"]},
            )
        except (jwt.PyJWTError, ValueError) as exc:
            logger.debug("token rejected: %s", exc.__class__.__name__)
            return None

        account_id = payload.get("sub")
        purpose = payload.get("purpose")
        if not isinstance(account_id, str) or not isinstance(purpose, str):
            return None
        issued_at = payload.get("iat")
        return TokenClaims(
            account_id=account_id,
            purpose=purpose,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc) if isinstance(issued_at, int) else None,
        )


def _is_canonical(token: str) -> bool:
    """Check that every segment re-encodes to itself.

    base64url decoding tolerates stray characters and ignores the spare low bits
    of the final character, so two different strings can decode to the same
    bytes. Requiring the canonical form makes any edited character fatal.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return False
    for segment in segments:
        if not segment:
            return False
        try:
            if base64url_encode(base64url_decode(segment)).decode("ascii") != segment:
                return False
        except (ValueError, UnicodeError):
            return False
    return True
