"""FastAPI application wiring for the account service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.dependencies import build_rate_limiter
from .api.routes import router as api_router
from .config import Settings, get_settings
from .domain.service import AccountService
from .memory_repository import InMemoryAccountRepository
from .repository import AccountRepository, PostgresAccountRepository
from .security.passwords import PasswordHasher
from .security.tokens import TokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_token_issuer(settings: Settings) -> TokenIssuer:
    """Create the process-wide token issuer from configuration loaded at startup."""
    return TokenIssuer(settings.jwt_secret, algorithm=settings.jwt_algorithm, ttl_seconds=settings.token_ttl)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (store, services, limiter) for the app lifecycle."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = build_token_issuer(settings)
    pool = None
    repository: AccountRepository
    try:
        if settings.account_store_backend == "memory":
            logger.info("account store using in-memory backend")
            repository = InMemoryAccountRepository(hasher, issuer)
        else:
            pool = ConnectionPool(settings.database_url, open=False)
            pool.open()
            repository = PostgresAccountRepository(pool, hasher, issuer)
            repository.ensure_schema()
            logger.info("account store using postgres backend")

        app.state.account_service = AccountService(repository, issuer)
        app.state.rate_limiter = build_rate_limiter(settings)
        yield
    finally:
        # close() also waits for the pool's worker threads to stop
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# the React client reads the token from this header after register/login
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.auth_header],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(api_router)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Expose process metrics for Prometheus scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
