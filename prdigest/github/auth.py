"""GitHub App authentication.

GitHub App auth flow:
1. Build a JWK from the App's RSA private key
2. Sign a short-lived JWT identifying the App
3. Exchange the JWT for an installation access token (see client.py)

The JWT is minted fresh on every call and never cached.
"""

import time
from typing import Optional

import jwt

from prdigest.core.config import Settings, get_settings
from prdigest.core.errors import ConfigurationError
from prdigest.github.jwk import rsa_private_key_to_jwk

# GitHub rejects App JWTs valid for more than 10 minutes.
JWT_BACKDATE_SECONDS = 60
JWT_LIFETIME_SECONDS = 10 * 60


def create_app_jwt(settings: Optional[Settings] = None, now: Optional[int] = None) -> str:
    """Create an RS256 JWT for authenticating as the GitHub App.

    Claims: iat = now - 60 (clock-skew allowance), exp = now + 600,
    iss = the App id.

    Raises:
        ConfigurationError: App id or private key missing or unusable.
            Always raised before any network call.
    """
    settings = settings or get_settings()

    if not settings.github_app_id or not settings.github_private_key:
        raise ConfigurationError(
            "GitHub App credentials not configured. "
            "Set GITHUB_APP_ID and GITHUB_PRIVATE_KEY."
        )

    jwk = rsa_private_key_to_jwk(settings.github_private_key)
    signing_key = jwt.PyJWK(jwk, algorithm="RS256")

    now = int(time.time()) if now is None else now
    payload = {
        "iat": now - JWT_BACKDATE_SECONDS,
        "exp": now + JWT_LIFETIME_SECONDS,
        "iss": settings.github_app_id,
    }

    return jwt.encode(payload, signing_key.key, algorithm="RS256")
