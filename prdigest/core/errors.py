"""Error kinds raised by the credential-management core.

Every error surfaces to the immediate caller; nothing here is retried.
At the HTTP boundary `register_error_handlers` turns each kind into a
plain-text response with the message as the body.
"""

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse


class PrDigestError(Exception):
    """Base class for all domain errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR


class ConfigurationError(PrDigestError):
    """Required environment material is absent or malformed."""


class UpstreamAPIError(PrDigestError):
    """A GitHub API call returned a non-success status or did not complete.

    `status_code` is None when the request never produced a response
    (timeout, connection failure).
    """

    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        detail = message
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail)


class ValidationError(PrDigestError):
    """Caller input was rejected."""

    http_status = 422


class FormatError(PrDigestError):
    """A sealed secret is not in iv:tag:ciphertext hex form."""

    http_status = status.HTTP_400_BAD_REQUEST


class IntegrityError(PrDigestError):
    """Authentication tag verification failed while opening a sealed secret."""

    http_status = status.HTTP_400_BAD_REQUEST


async def _handle_prdigest_error(request: Request, exc: PrDigestError) -> PlainTextResponse:
    return PlainTextResponse(str(exc), status_code=exc.http_status)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PrDigestError, _handle_prdigest_error)
