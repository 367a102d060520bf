"""GitHub App install callback and inbound webhook endpoints.

The install callback is hit by the browser after a user installs the App;
it syncs the installation's repositories and redirects to the dashboard.

The webhook endpoint is public (no auth dependency). Each delivery is
authenticated against the per-repository secret of the repository named
in its payload before anything is recorded.
"""

import json
import logging
import uuid
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.auth.dependencies import get_optional_user
from prdigest.core.config import Settings, get_settings
from prdigest.db.session import get_db
from prdigest.github.schemas import (
    PingEvent,
    PullRequestEvent,
    PullRequestReviewCommentEvent,
    PullRequestReviewEvent,
    UnsupportedEvent,
    WebhookResponse,
)
from prdigest.github.service import (
    get_repository_by_owner_and_name,
    record_pull_request,
    sync_installation_repositories,
)
from prdigest.github.tokens import InstallationTokenProvider, get_token_provider
from prdigest.github.webhooks import parse_webhook_event, repository_key, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["github"])


def _dashboard_url(settings: Settings, request: Request) -> str:
    base = settings.public_app_url.strip().rstrip("/")
    if not base:
        return str(request.base_url).rstrip("/") + "/dashboard"
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    return f"{base}/dashboard"


# ---------------------------------------------------------------------------
# Install callback
# ---------------------------------------------------------------------------


@router.get("/github/callback")
async def github_install_callback(
    request: Request,
    installation_id: Optional[int] = Query(default=None),
    setup_action: str = Query(default="install"),
    db: AsyncSession = Depends(get_db),
    user_id: Optional[uuid.UUID] = Depends(get_optional_user),
    tokens: InstallationTokenProvider = Depends(get_token_provider),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Sync repositories for a freshly installed (or updated) App installation."""
    if installation_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No installation ID provided",
        )

    count = await sync_installation_repositories(db, tokens, installation_id, user_id)
    logger.info(
        "Install callback (%s) for installation %d synced %d repositories",
        setup_action, installation_id, count,
    )
    return RedirectResponse(_dashboard_url(settings, request), status_code=status.HTTP_302_FOUND)


# ---------------------------------------------------------------------------
# Webhooks (public, signature-verified per repository)
# ---------------------------------------------------------------------------


@router.post("/api/webhooks/github", response_model=WebhookResponse)
async def handle_github_webhook(
    request: Request,
    x_hub_signature_256: str = Header(default=""),
    x_github_event: str = Header(default=""),
    x_github_delivery: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
) -> WebhookResponse:
    """Receive pull-request deliveries for connected repositories."""
    if not x_hub_signature_256 or not x_github_event:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing signature or event type",
        )

    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    key = repository_key(payload) if isinstance(payload, dict) else None
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payload does not identify a repository",
        )

    repo = await get_repository_by_owner_and_name(db, *key)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repository not found: {key[0]}/{key[1]}",
        )

    if not verify_webhook_signature(body, x_hub_signature_256, repo.webhook_secret):
        logger.warning(
            "Rejected delivery %s for %s: bad signature", x_github_delivery, repo.full_name
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        event = parse_webhook_event(x_github_event, payload)
    except pydantic.ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Malformed {x_github_event} payload: {exc.error_count()} invalid fields",
        )

    if isinstance(event, PullRequestEvent):
        pr = await record_pull_request(db, repo, event.pull_request)
        logger.info(
            "Recorded %s for %s#%d (delivery %s)",
            event.action, repo.full_name, pr.number, x_github_delivery,
        )
        return WebhookResponse(received=True, event=event.event, action=event.action)

    if isinstance(event, (PullRequestReviewEvent, PullRequestReviewCommentEvent)):
        # Reviews arrive with the current PR snapshot; keep the row fresh.
        await record_pull_request(db, repo, event.pull_request)
        return WebhookResponse(received=True, event=event.event, action=event.action)

    if isinstance(event, PingEvent):
        logger.info("Ping from hook %s on %s", event.hook_id, repo.full_name)
        return WebhookResponse(received=True, event="ping", action="pong")

    if isinstance(event, UnsupportedEvent):
        logger.info("Unhandled event type: %s", event.event)
        return WebhookResponse(received=True, event=event.event, action="ignored")

    raise AssertionError(f"unhandled webhook event model: {type(event).__name__}")
