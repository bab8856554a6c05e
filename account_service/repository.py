"""Account store: persistence of accounts, their verifiers and active tokens."""

from __future__ import annotations

import abc
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, AccountToken, serialize_account
from .domain.contracts import CreateAccountInput
from .errors import DuplicateKeyError, NotFoundError
from .security.passwords import PasswordHasher
from .security.tokens import TOKEN_PURPOSE_AUTH, TokenIssuer

logger = logging.getLogger(__name__)

_CREDENTIALS_NOT_FOUND = "no account matches the supplied credentials"
_TOKEN_NOT_FOUND = "no account holds the supplied token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRepository(abc.ABC):
    """Store contract shared by every backend.

    Hashing and token verification live here; subclasses only provide the
    storage primitives. Uniqueness of username and email must be enforced by
    the backend's ``_insert_account`` so concurrent registrations cannot race.
    """

    def __init__(self, hasher: PasswordHasher, issuer: TokenIssuer) -> None:
        self._hasher = hasher
        self._issuer = issuer
        self._dummy_hash: str | None = None

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Hash the password and persist a new account."""
        now = _utcnow()
        account = Account(
            account_id=str(uuid.uuid4()),
            username=payload.username,
            email=payload.email,
            password_hash=self._hasher.hash(payload.password),
            created_at=now,
            updated_at=now,
        )
        return self._insert_account(account)

    def get_account(self, account_id: str) -> Account | None:
        return self._load_by_id(account_id)

    def find_by_credentials(self, username: str, password: str) -> Account:
        """Return the account for a username/password pair.

        Unknown usernames and wrong passwords raise the same ``NotFoundError``.
        """
        account = self._load_by_username(username.strip()) if isinstance(username, str) else None
        if account is None:
            # keep the response time close to the known-user path
            self._hasher.verify(password, self._timing_hash())
            raise NotFoundError(_CREDENTIALS_NOT_FOUND)
        if not self._hasher.verify(password, account.password_hash):
            raise NotFoundError(_CREDENTIALS_NOT_FOUND)
        return account

    def find_by_token(self, token: str, purpose: str = TOKEN_PURPOSE_AUTH) -> Account:
        """Return the account that signed ``token`` and still lists it as active."""
        claims = self._issuer.verify(token)
        if claims is None or claims.purpose != purpose:
            raise NotFoundError(_TOKEN_NOT_FOUND)
        account = self._load_by_token(claims.account_id, token, purpose)
        if account is None:
            raise NotFoundError(_TOKEN_NOT_FOUND)
        return account

    def append_token(self, account: Account, token: str, purpose: str = TOKEN_PURPOSE_AUTH) -> Account:
        """Durably record ``token`` as active before the caller hands it out."""
        entry = AccountToken(token=token, purpose=purpose)
        now = _utcnow()
        self._insert_token(account.account_id, entry, now)
        account.tokens.append(entry)
        account.updated_at = now
        return account

    def remove_token(self, account: Account, token: str, purpose: str = TOKEN_PURPOSE_AUTH) -> Account:
        """Revoke one token; raises ``NotFoundError`` if it was not active."""
        now = _utcnow()
        if not self._delete_token(account.account_id, AccountToken(token=token, purpose=purpose), now):
            raise NotFoundError(_TOKEN_NOT_FOUND)
        account.tokens = [
            entry for entry in account.tokens if not (entry.token == token and entry.purpose == purpose)
        ]
        account.updated_at = now
        return account

    def remove_all_tokens(self, account: Account) -> Account:
        now = _utcnow()
        self._delete_all_tokens(account.account_id, now)
        account.tokens = []
        account.updated_at = now
        return account

    def update_password(self, account: Account, plaintext: str) -> Account:
        """Recompute the verifier only when ``plaintext`` differs from the stored password."""
        if self._hasher.verify(plaintext, account.password_hash):
            return account
        now = _utcnow()
        password_hash = self._hasher.hash(plaintext)
        self._store_password_hash(account.account_id, password_hash, now)
        account.password_hash = password_hash
        account.updated_at = now
        return account

    def serialize(self, account: Account) -> dict[str, Any]:
        return serialize_account(account)

    def _timing_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(uuid.uuid4().hex)
        return self._dummy_hash

    @abc.abstractmethod
    def _insert_account(self, account: Account) -> Account:
        """Persist a new account, raising ``DuplicateKeyError`` on a taken username or email."""

    @abc.abstractmethod
    def _load_by_id(self, account_id: str) -> Account | None: ...

    @abc.abstractmethod
    def _load_by_username(self, username: str) -> Account | None: ...

    @abc.abstractmethod
    def _load_by_token(self, account_id: str, token: str, purpose: str) -> Account | None:
        """Load ``account_id`` only if ``(token, purpose)`` is among its active tokens."""

    @abc.abstractmethod
    def _insert_token(self, account_id: str, entry: AccountToken, now: datetime) -> None: ...

    @abc.abstractmethod
    def _delete_token(self, account_id: str, entry: AccountToken, now: datetime) -> bool: ...

    @abc.abstractmethod
    def _delete_all_tokens(self, account_id: str, now: datetime) -> None: ...

    @abc.abstractmethod
    def _store_password_hash(self, account_id: str, password_hash: str, now: datetime) -> None: ...


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CONSTRAINT accounts_username_key UNIQUE (username),
        CONSTRAINT accounts_email_key UNIQUE (email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_tokens (
        token_seq BIGSERIAL PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES accounts (account_id) ON DELETE CASCADE,
        token TEXT NOT NULL,
        purpose TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS account_tokens_lookup_idx ON account_tokens (account_id, token, purpose)",
)

_ACCOUNT_COLUMNS = "account_id, username, email, password_hash, created_at, updated_at"
_UNIQUE_FIELDS = {"accounts_username_key": "username", "accounts_email_key": "email"}


class PostgresAccountRepository(AccountRepository):
    """Postgres-backed account persistence."""

    def __init__(self, pool: ConnectionPool, hasher: PasswordHasher, issuer: TokenIssuer) -> None:
        """Store the connection pool used for all database interactions."""
        super().__init__(hasher, issuer)
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the account tables when they do not exist yet."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
            conn.commit()

    def _insert_account(self, account: Account) -> Account:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account.account_id,
                            account.username,
                            account.email,
                            account.password_hash,
                            account.created_at,
                            account.updated_at,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
        except pg_errors.UniqueViolation as exc:
            field = _UNIQUE_FIELDS.get(exc.diag.constraint_name or "")
            if field is None:
                raise
            logger.info("account insert rejected by unique constraint %s", exc.diag.constraint_name)
            raise DuplicateKeyError(field) from exc
        return self._map_record(row, [])

    def _load_by_id(self, account_id: str) -> Account | None:
        return self._fetch_account(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
            (account_id,),
        )

    def _load_by_username(self, username: str) -> Account | None:
        return self._fetch_account(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE username = %s",
            (username,),
        )

    def _load_by_token(self, account_id: str, token: str, purpose: str) -> Account | None:
        return self._fetch_account(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
            FROM accounts a
            WHERE a.account_id = %s
              AND EXISTS (
                SELECT 1 FROM account_tokens t
                WHERE t.account_id = a.account_id AND t.token = %s AND t.purpose = %s
              )
            """,
            (account_id, token, purpose),
        )

    def _insert_token(self, account_id: str, entry: AccountToken, now: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO account_tokens (account_id, token, purpose, created_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, entry.token, entry.purpose, now),
                )
                cur.execute("UPDATE accounts SET updated_at = %s WHERE account_id = %s", (now, account_id))
            conn.commit()

    def _delete_token(self, account_id: str, entry: AccountToken, now: datetime) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM account_tokens
                    WHERE account_id = %s AND token = %s AND purpose = %s
                    """,
                    (account_id, entry.token, entry.purpose),
                )
                removed = cur.rowcount > 0
                if removed:
                    cur.execute("UPDATE accounts SET updated_at = %s WHERE account_id = %s", (now, account_id))
            conn.commit()
        return removed

    def _delete_all_tokens(self, account_id: str, now: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM account_tokens WHERE account_id = %s", (account_id,))
                cur.execute("UPDATE accounts SET updated_at = %s WHERE account_id = %s", (now, account_id))
            conn.commit()

    def _store_password_hash(self, account_id: str, password_hash: str, now: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE accounts SET password_hash = %s, updated_at = %s WHERE account_id = %s",
                    (password_hash, now, account_id),
                )
            conn.commit()

    def _fetch_account(self, query: str, params: tuple) -> Account | None:
        """Run an account SELECT and attach the account's ordered token list."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                if not row:
                    return None
                cur.execute(
                    """
                    SELECT token, purpose
                    FROM account_tokens
                    WHERE account_id = %s
                    ORDER BY token_seq
                    """,
                    (row[0],),
                )
                tokens = [AccountToken(token=token, purpose=purpose) for token, purpose in cur.fetchall()]
        return self._map_record(row, tokens)

    def _map_record(self, row: tuple, tokens: list[AccountToken]) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            username=row[1],
            email=row[2],
            password_hash=row[3],
            created_at=row[4],
            updated_at=row[5],
            tokens=tokens,
        )
