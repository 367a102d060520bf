"""SlowAPI rate limiter singleton.

Keyed on the authenticated user ID so limits apply per user rather than
per IP. Handlers decorated with `@limiter.limit(...)` must accept a
`request: Request` parameter.
"""

from slowapi import Limiter


def _user_id_key(request) -> str:
    """Rate-limit per user; fall back to client IP before auth has resolved."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_user_id_key, default_limits=[])
