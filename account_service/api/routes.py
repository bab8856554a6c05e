"""HTTP route definitions for the account service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from ..config import get_settings
from ..domain.account import Account
from ..domain.service import AccountService, AuthResult
from ..errors import (
    AccountServiceError,
    AuthenticationFailedError,
    DuplicateKeyError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..security.rate_limiter import RateLimiter
from .dependencies import enforce_rate_limit, get_current_account, get_rate_limiter, get_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ERROR_STATUS_MAP: dict[type[AccountServiceError], int] = {
    ValidationError: 422,
    DuplicateKeyError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AuthenticationFailedError: status.HTTP_401_UNAUTHORIZED,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
}


class AccountResponse(BaseModel):
    """Public representation of an `Account`: identifier and username only."""

    id: str
    username: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(id=account.account_id, username=account.username)


class AuthResponse(BaseModel):
    """Body returned by register and login; the token is also sent as a header."""

    user: AccountResponse
    token: str


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers[get_settings().auth_header] = result.token
    return AuthResponse(user=AccountResponse.from_domain(result.account), token=result.token)


@router.post("/users", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    service: AccountService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AuthResponse:
    """Register an account and log it in."""
    enforce_rate_limit(limiter, f"register:{_client_key(request)}")
    try:
        result = service.register(payload.username, payload.email, payload.password)
    except AccountServiceError as exc:
        raise _http_error(exc) from exc
    return _auth_response(result, response)


@router.post("/users/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    service: AccountService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AuthResponse:
    """Exchange a username and password for a new token."""
    enforce_rate_limit(limiter, f"login:{_client_key(request)}:{payload.username.strip().lower()}")
    try:
        result = service.login(payload.username, payload.password)
    except AccountServiceError as exc:
        raise _http_error(exc) from exc
    return _auth_response(result, response)


@router.get("/users/me", response_model=AccountResponse)
def read_current_account(account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_domain(account)


@router.delete("/users/me/token", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_service),
) -> Response:
    """Revoke the token presented with this request."""
    try:
        service.logout(account, request.state.token)
    except AccountServiceError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/users/me/tokens", status_code=status.HTTP_204_NO_CONTENT)
def logout_everywhere(
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_service),
) -> Response:
    service.logout_all(account)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/users/me/password", response_model=AccountResponse)
def change_password(
    payload: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        updated = service.change_password(account, payload.current_password, payload.new_password)
    except AccountServiceError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(updated)


def _http_error(exc: AccountServiceError) -> HTTPException:
    status_code = ERROR_STATUS_MAP.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.debug("account request failed: %s (%d)", exc.__class__.__name__, status_code)
    return HTTPException(status_code=status_code, detail=exc.message)
