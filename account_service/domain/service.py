"""Account service orchestrating the store, password hashing and token issuance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .account import Account
from .contracts import CreateAccountInput, validate_password
from ..errors import AuthenticationFailedError, NotFoundError, UnauthorizedError
from ..repository import AccountRepository
from ..security.tokens import TOKEN_PURPOSE_AUTH, TokenIssuer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AuthResult:
    """An account together with the token just issued for it."""

    account: Account
    token: str


class AccountService:
    """Register, login, authenticate and logout workflows."""

    def __init__(self, repository: AccountRepository, issuer: TokenIssuer) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._issuer = issuer

    def register(self, username: object, email: object, password: object) -> AuthResult:
        """Create an account and return it with a fresh auth token.

        Raises ``ValidationError`` for malformed input and ``DuplicateKeyError``
        when the username or email is already registered.
        """
        payload = CreateAccountInput.build(username, email, password)
        account = self._repository.create_account(payload)
        token = self._issue_and_record(account)
        logger.info("account registered account_id=%s username=%s", account.account_id, account.username)
        return AuthResult(account=account, token=token)

    def login(self, username: str, password: str) -> AuthResult:
        """Verify credentials and return the account with a newly issued token."""
        try:
            account = self._repository.find_by_credentials(username, password)
        except NotFoundError as exc:
            logger.info("login failed username=%s", username)
            raise AuthenticationFailedError() from exc
        token = self._issue_and_record(account)
        logger.info("login succeeded account_id=%s", account.account_id)
        return AuthResult(account=account, token=token)

    def authenticate(self, token: str | None) -> Account:
        """Resolve the account owning an active ``token``, else raise ``UnauthorizedError``."""
        if not token or not token.strip():
            raise UnauthorizedError()
        try:
            return self._repository.find_by_token(token.strip(), TOKEN_PURPOSE_AUTH)
        except NotFoundError as exc:
            raise UnauthorizedError() from exc

    def logout(self, account: Account, token: str) -> None:
        """Revoke ``token`` so later requests presenting it are rejected."""
        try:
            self._repository.remove_token(account, token, TOKEN_PURPOSE_AUTH)
        except NotFoundError as exc:
            raise UnauthorizedError() from exc
        logger.info("logout account_id=%s remaining_tokens=%d", account.account_id, len(account.tokens))

    def logout_all(self, account: Account) -> None:
        """Revoke every token currently active for ``account``."""
        revoked = len(account.tokens)
        self._repository.remove_all_tokens(account)
        logger.info("logout everywhere account_id=%s revoked=%d", account.account_id, revoked)

    def change_password(self, account: Account, current_password: str, new_password: object) -> Account:
        """Replace the password after re-checking the current one."""
        try:
            self._repository.find_by_credentials(account.username, current_password)
        except NotFoundError as exc:
            logger.info("password change refused account_id=%s", account.account_id)
            raise AuthenticationFailedError() from exc
        updated = self._repository.update_password(account, validate_password(new_password, "new_password"))
        logger.info("password changed account_id=%s", account.account_id)
        return updated

    def serialize(self, account: Account) -> dict[str, Any]:
        return self._repository.serialize(account)

    def _issue_and_record(self, account: Account) -> str:
        token = self._issuer.issue(account.account_id, TOKEN_PURPOSE_AUTH)
        # the token is only handed out once it is durably listed as active
        self._repository.append_token(account, token, TOKEN_PURPOSE_AUTH)
        return token
