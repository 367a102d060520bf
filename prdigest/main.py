"""FastAPI application factory.

Run with:  uvicorn prdigest.main:create_app --factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from prdigest.core.config import Settings, get_settings
from prdigest.core.encryption import SecretVault
from prdigest.core.errors import register_error_handlers
from prdigest.core.limiter import limiter
from prdigest.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from prdigest.github.router import router as github_router
from prdigest.github.tokens import InstallationTokenProvider
from prdigest.providers.router import router as providers_router
from prdigest.repos.router import router as repos_router


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app.

    Raises ConfigurationError when ENCRYPTION_KEY is missing or not 64 hex
    characters, so a misconfigured process fails at startup rather than on
    the first key it tries to store.
    """
    settings = settings or get_settings()

    _app = FastAPI(
        title="PR Digest API",
        description="Control plane API for the PR Digest pull-request summary dashboard",
        version="0.1.0",
    )

    # ---------------------------------------------------------------------------
    # Process-wide credential state
    # ---------------------------------------------------------------------------
    _app.state.vault = SecretVault(settings.encryption_key)
    _app.state.token_provider = InstallationTokenProvider(settings)

    # ---------------------------------------------------------------------------
    # Rate limiter + error handlers
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(_app)

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _app.add_middleware(SlowAPIMiddleware)
    _app.add_middleware(SecurityHeadersMiddleware)
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry + logging
    # ---------------------------------------------------------------------------
    from prdigest.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    from prdigest.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(github_router)
    _app.include_router(repos_router)
    _app.include_router(providers_router)

    return _app
