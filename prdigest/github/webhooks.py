"""Inbound GitHub webhook handling.

Every connected repository has its own webhook secret, generated when the
repository is first recorded. Deliveries are authenticated by recomputing
the HMAC-SHA256 of the raw body with that secret and comparing it to the
X-Hub-Signature-256 header in constant time.

Signature verification follows GitHub's documentation:
https://docs.github.com/en/webhooks/using-webhooks/validating-webhook-deliveries
"""

import hashlib
import hmac
import secrets
from typing import Optional

from prdigest.github.schemas import (
    PingEvent,
    PullRequestEvent,
    PullRequestReviewCommentEvent,
    PullRequestReviewEvent,
    UnsupportedEvent,
    WebhookEvent,
)

WEBHOOK_SECRET_BYTES = 32

_EVENT_MODELS = {
    "pull_request": PullRequestEvent,
    "pull_request_review": PullRequestReviewEvent,
    "pull_request_review_comment": PullRequestReviewCommentEvent,
    "ping": PingEvent,
}


def generate_webhook_secret() -> str:
    """Return a fresh 64-character hex secret from the OS CSPRNG."""
    return secrets.token_hex(WEBHOOK_SECRET_BYTES)


def verify_webhook_signature(payload_body: bytes, signature_header: str, secret: str) -> bool:
    """Verify that a webhook payload was signed with `secret`.

    Args:
        payload_body: Raw request body bytes.
        signature_header: Value of the X-Hub-Signature-256 header.
        secret: The repository's stored webhook secret.
    """
    if not secret:
        raise ValueError("Repository has no webhook secret")

    if not signature_header or not signature_header.startswith("sha256="):
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        payload_body,
        hashlib.sha256,
    ).hexdigest()

    received_signature = signature_header.removeprefix("sha256=")

    # Header values can carry any latin-1 text; compare as bytes.
    return hmac.compare_digest(
        expected_signature.encode("ascii"),
        received_signature.encode("utf-8", "replace"),
    )


def repository_key(payload: dict) -> Optional[tuple[str, str]]:
    """Return (owner, name) of the delivery's repository, if present."""
    repo = payload.get("repository") or {}
    owner = (repo.get("owner") or {}).get("login")
    name = repo.get("name")
    if not owner or not name:
        return None
    return owner, name


def parse_webhook_event(event_name: str, payload: dict) -> WebhookEvent:
    """Parse a delivery into the model for its X-GitHub-Event type.

    Events we do not subscribe to become UnsupportedEvent. A subscribed
    event with a malformed payload raises pydantic.ValidationError.
    """
    model = _EVENT_MODELS.get(event_name)
    if model is None:
        return UnsupportedEvent(event=event_name, action=str(payload.get("action", "")))
    return model.model_validate({**payload, "event": event_name})
