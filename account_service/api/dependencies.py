"""FastAPI dependencies: service lookup, rate limiting and request authentication."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from ..config import Settings, get_settings
from ..domain.account import Account
from ..domain.service import AccountService
from ..errors import UnauthorizedError
from ..security.rate_limiter import RateLimiter, SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter

            client = redis.from_url(settings.redis_url)
            # fail fast so an unreachable Redis falls back to the local limiter
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = build_rate_limiter(get_settings())
        request.app.state.rate_limiter = limiter
    return limiter


def enforce_rate_limit(limiter: RateLimiter, key: str) -> None:
    if not limiter.allow(key):
        logger.warning("rate limit exceeded key=%s", key)
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


def get_auth_token(request: Request) -> str | None:
    """Read the token from the configured auth header."""
    return request.headers.get(get_settings().auth_header)


def get_current_account(
    request: Request,
    service: AccountService = Depends(get_service),
    token: str | None = Depends(get_auth_token),
) -> Account:
    """Authenticate the request and attach the account to ``request.state``.

    Missing, malformed, badly signed and revoked tokens are all rejected with
    the same 401 before the protected route runs.
    """
    try:
        account = service.authenticate(token)
    except UnauthorizedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc
    request.state.account = account
    request.state.token = token.strip() if token else token
    return account
