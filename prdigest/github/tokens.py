"""Installation token acquisition with an explicit caching policy.

By default nothing is cached: every call mints a new App JWT and
exchanges it for a new installation token. With
GITHUB_TOKEN_CACHE_ENABLED=true, a token is reused per installation until
it is within GITHUB_TOKEN_REFRESH_MARGIN_SECONDS of its `expires_at`.

There is no single-flight coordination. Concurrent misses for the same
installation each perform their own exchange.
"""

import logging
import time
from collections.abc import Callable
from typing import Optional

import httpx
from fastapi import Request

from prdigest.core.config import Settings
from prdigest.github.auth import create_app_jwt
from prdigest.github.client import exchange_installation_token
from prdigest.github.schemas import InstallationToken

logger = logging.getLogger(__name__)


class InstallationTokenProvider:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self._settings = settings
        self._clock = clock
        self._cache: dict[int, InstallationToken] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def caching_enabled(self) -> bool:
        return self._settings.github_token_cache_enabled

    def _is_fresh(self, token: InstallationToken) -> bool:
        if token.expires_at is None:
            return False
        refresh_at = token.expires_at.timestamp() - self._settings.github_token_refresh_margin_seconds
        return self._clock() < refresh_at

    async def get_token(
        self,
        installation_id: int,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> str:
        """Return an installation access token for `installation_id`."""
        if self.caching_enabled:
            cached = self._cache.get(installation_id)
            if cached is not None and self._is_fresh(cached):
                return cached.token

        app_jwt = create_app_jwt(self._settings)
        issued = await exchange_installation_token(
            installation_id, app_jwt, settings=self._settings, client=client
        )
        logger.info("Obtained installation token for installation %d", installation_id)

        if self.caching_enabled and issued.expires_at is not None:
            self._cache[installation_id] = issued
        return issued.token

    def invalidate(self, installation_id: Optional[int] = None) -> None:
        """Drop one cached token, or all of them."""
        if installation_id is None:
            self._cache.clear()
        else:
            self._cache.pop(installation_id, None)


def get_token_provider(request: Request) -> InstallationTokenProvider:
    """FastAPI dependency: the provider built by create_app()."""
    return request.app.state.token_provider
