"""FastAPI application wiring for the auth service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.errors import register_exception_handlers
from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.contracts import ResetNotifier
from .domain.credentials import CredentialStore
from .domain.lockout import LockoutPolicy
from .domain.password_policy import PasswordPolicy
from .domain.service import AccountService
from .repository import AccountRepository
from .security.passwords import SecretHasher
from .security.rate_limiter import SlidingWindowRateLimiter
from .security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from .security.tokens import TokenService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(settings.log_level)


def build_rate_limiter(settings: Settings) -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        import redis

        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def wire_services(
    app: FastAPI,
    settings: Settings,
    repository,
    *,
    notifier: ResetNotifier | None = None,
    rate_limiter=None,
) -> None:
    """Construct the auth components once and publish them on ``app.state``.

    Raises ``ConfigurationError`` when the settings are unsafe for the
    current environment, which aborts startup.
    """
    token_service = TokenService(settings)
    credential_store = CredentialStore(
        repository,
        SecretHasher(settings),
        PasswordPolicy.from_settings(settings),
        LockoutPolicy.from_settings(settings),
    )
    app.state.settings = settings
    app.state.token_service = token_service
    app.state.credential_store = credential_store
    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings)
    app.state.account_service = AccountService(
        repository,
        credential_store,
        token_service,
        reset_token_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        notifier=notifier,
    )


def create_app(settings: Settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the Postgres pool and wire services for the app lifecycle."""
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        app.state.pool = pool
        try:
            wire_services(app, settings, AccountRepository(pool))
            yield
        finally:
            pool.close()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    register_exception_handlers(app)

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    app.include_router(v1_router)
    return app


settings = get_settings()
configure_logging(settings)
app = create_app(settings)


def run() -> None:
    """Serve the app with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
