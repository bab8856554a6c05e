from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class AccountToken:
    """A bearer token the store currently accepts for its owning account."""

    token: str
    purpose: str


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered user and its active tokens."""

    account_id: str
    username: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    tokens: list[AccountToken] = field(default_factory=list)

    def has_token(self, token: str, purpose: str) -> bool:
        return any(entry.token == token and entry.purpose == purpose for entry in self.tokens)


def serialize_account(account: Account) -> dict[str, Any]:
    """Public view of an account; the verifier, email and tokens stay private."""
    return {"id": account.account_id, "username": account.username}
