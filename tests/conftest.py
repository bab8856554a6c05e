"""Shared fixtures: a real hasher and issuer over the in-memory account store,
plus a fake psycopg pool for driving the Postgres backend without a server.
"""

from __future__ import annotations

from contextlib import contextmanager
from types import SimpleNamespace
from typing import Any

import pytest
from psycopg import errors as pg_errors

from account_service.domain.service import AccountService
from account_service.memory_repository import InMemoryAccountRepository
from account_service.repository import PostgresAccountRepository
from account_service.security.passwords import PasswordHasher
from account_service.security.tokens import TokenIssuer

TEST_SECRET = "test-secret-0123456789-abcdefghijklmnop"


@pytest.fixture
def token_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def hasher() -> PasswordHasher:
    # lowest cost bcrypt accepts keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer(token_secret) -> TokenIssuer:
    return TokenIssuer(token_secret)


@pytest.fixture
def repository(hasher, issuer) -> InMemoryAccountRepository:
    return InMemoryAccountRepository(hasher, issuer)


@pytest.fixture
def service(repository, issuer) -> AccountService:
    return AccountService(repository, issuer)


# =============================================================================
# Fake Postgres pool
# =============================================================================


class ConstraintViolation(pg_errors.UniqueViolation):
    """UniqueViolation carrying a constraint name, as the server reports it."""

    def __init__(self, constraint_name: str | None) -> None:
        super().__init__(f'duplicate key value violates unique constraint "{constraint_name}"')
        self._constraint_name = constraint_name

    @property
    def diag(self):  # type: ignore[override]
        return SimpleNamespace(constraint_name=self._constraint_name)


class FakeDatabase:
    """In-memory tables answering the statements PostgresAccountRepository issues."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple] = {}
        self.tokens: list[dict[str, Any]] = []
        self.schema: list[str] = []
        self.queries: list[str] = []
        self._seq = 0

    def next_seq(self) -> int:
        self._seq += 1
        return self._seq


class FakeCursor:
    def __init__(self, db: FakeDatabase, fail_on: str | None) -> None:
        self._db = db
        self._fail_on = fail_on
        self._rows: list[tuple] = []
        self.rowcount = -1

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def fetchone(self) -> tuple | None:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list[tuple]:
        return list(self._rows)

    def execute(self, query: str, params: tuple = ()) -> None:
        db = self._db
        sql = " ".join(query.split())
        db.queries.append(sql)
        if self._fail_on and sql.startswith(self._fail_on):
            raise pg_errors.OperationalError(f"cannot execute {self._fail_on}")
        self._rows = []
        self.rowcount = 0

        if sql.startswith("CREATE"):
            db.schema.append(sql)
        elif sql.startswith("INSERT INTO accounts"):
            account_id, username, email = params[0], params[1], params[2]
            if account_id in db.accounts:
                raise ConstraintViolation("accounts_pkey")
            for row in db.accounts.values():
                if row[1] == username:
                    raise ConstraintViolation("accounts_username_key")
                if row[2] == email:
                    raise ConstraintViolation("accounts_email_key")
            db.accounts[account_id] = tuple(params)
            self._rows = [tuple(params)]
        elif sql.startswith("SELECT token, purpose FROM account_tokens"):
            entries = [t for t in db.tokens if t["account_id"] == params[0]]
            # without ORDER BY the server gives no ordering guarantee
            if "ORDER BY token_seq" in sql:
                entries.sort(key=lambda t: t["seq"])
            else:
                entries.reverse()
            self._rows = [(t["token"], t["purpose"]) for t in entries]
        elif sql.startswith("SELECT") and "EXISTS" in sql:
            account_id, token, purpose = params
            listed = any(
                t["account_id"] == account_id and t["token"] == token and t["purpose"] == purpose for t in db.tokens
            )
            if listed and account_id in db.accounts:
                self._rows = [db.accounts[account_id]]
        elif sql.startswith("SELECT") and sql.endswith("WHERE account_id = %s"):
            if params[0] in db.accounts:
                self._rows = [db.accounts[params[0]]]
        elif sql.startswith("SELECT") and sql.endswith("WHERE username = %s"):
            self._rows = [row for row in db.accounts.values() if row[1] == params[0]]
        elif sql.startswith("INSERT INTO account_tokens"):
            account_id, token, purpose, created_at = params
            db.tokens.append(
                {
                    "seq": db.next_seq(),
                    "account_id": account_id,
                    "token": token,
                    "purpose": purpose,
                    "created_at": created_at,
                }
            )
            self.rowcount = 1
        elif sql.startswith("UPDATE accounts SET updated_at"):
            now, account_id = params
            self._update(account_id, updated_at=now)
        elif sql.startswith("UPDATE accounts SET password_hash"):
            password_hash, now, account_id = params
            self._update(account_id, password_hash=password_hash, updated_at=now)
        elif sql.startswith("DELETE FROM account_tokens WHERE account_id = %s AND token"):
            account_id, token, purpose = params
            keep = [
                t
                for t in db.tokens
                if not (t["account_id"] == account_id and t["token"] == token and t["purpose"] == purpose)
            ]
            self.rowcount = len(db.tokens) - len(keep)
            db.tokens = keep
        elif sql.startswith("DELETE FROM account_tokens WHERE account_id = %s"):
            keep = [t for t in db.tokens if t["account_id"] != params[0]]
            self.rowcount = len(db.tokens) - len(keep)
            db.tokens = keep
        else:
            raise AssertionError(f"unexpected query: {sql}")

    def _update(self, account_id: str, **changes: Any) -> None:
        row = self._db.accounts.get(account_id)
        if row is None:
            return
        account_id, username, email, password_hash, created_at, updated_at = row
        password_hash = changes.get("password_hash", password_hash)
        updated_at = changes.get("updated_at", updated_at)
        self._db.accounts[account_id] = (account_id, username, email, password_hash, created_at, updated_at)
        self.rowcount = 1


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    def cursor(self, row_factory: Any = None) -> FakeCursor:
        return FakeCursor(self._pool.db, self._pool.fail_on)

    def commit(self) -> None:
        self._pool.commits += 1


class FakePool:
    """Minimal stand-in for ``psycopg_pool.ConnectionPool``."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.db = FakeDatabase()
        self.fail_on = fail_on
        self.commits = 0
        self.rollbacks = 0
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def close(self, timeout: float = 5.0) -> None:
        self.closed = True

    @contextmanager
    def connection(self):
        try:
            yield FakeConnection(self)
        except Exception:
            self.rollbacks += 1
            raise


@pytest.fixture
def pg_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def pg_repository(pg_pool, hasher, issuer) -> PostgresAccountRepository:
    return PostgresAccountRepository(pg_pool, hasher, issuer)
