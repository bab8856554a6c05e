"""In-process account store used for local development and tests."""

from __future__ import annotations

import copy
from datetime import datetime
from threading import Lock

from .domain.account import Account, AccountToken
from .errors import DuplicateKeyError
from .repository import AccountRepository
from .security.passwords import PasswordHasher
from .security.tokens import TokenIssuer


class InMemoryAccountRepository(AccountRepository):
    """Thread-safe dict-backed store mirroring the Postgres backend's constraints."""

    def __init__(self, hasher: PasswordHasher, issuer: TokenIssuer) -> None:
        super().__init__(hasher, issuer)
        self._accounts: dict[str, Account] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def _insert_account(self, account: Account) -> Account:
        with self._lock:
            for existing in self._accounts.values():
                if existing.username == account.username:
                    raise DuplicateKeyError("username")
                if existing.email == account.email:
                    raise DuplicateKeyError("email")
            self._accounts[account.account_id] = copy.deepcopy(account)
        return account

    def _load_by_id(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return copy.deepcopy(account) if account else None

    def _load_by_username(self, username: str) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.username == username:
                    return copy.deepcopy(account)
        return None

    def _load_by_token(self, account_id: str, token: str, purpose: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or not account.has_token(token, purpose):
                return None
            return copy.deepcopy(account)

    def _insert_token(self, account_id: str, entry: AccountToken, now: datetime) -> None:
        with self._lock:
            stored = self._accounts[account_id]
            stored.tokens.append(AccountToken(token=entry.token, purpose=entry.purpose))
            stored.updated_at = now

    def _delete_token(self, account_id: str, entry: AccountToken, now: datetime) -> bool:
        with self._lock:
            stored = self._accounts.get(account_id)
            if stored is None or not stored.has_token(entry.token, entry.purpose):
                return False
            stored.tokens = [
                t for t in stored.tokens if not (t.token == entry.token and t.purpose == entry.purpose)
            ]
            stored.updated_at = now
            return True

    def _delete_all_tokens(self, account_id: str, now: datetime) -> None:
        with self._lock:
            stored = self._accounts.get(account_id)
            if stored is not None:
                stored.tokens = []
                stored.updated_at = now

    def _store_password_hash(self, account_id: str, password_hash: str, now: datetime) -> None:
        with self._lock:
            stored = self._accounts[account_id]
            stored.password_hash = password_hash
            stored.updated_at = now
