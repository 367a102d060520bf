"""Repository webhook provisioning.

Registers a pull-request webhook on one repository, signed with that
repository's generated secret. Before any network call the callback URL
is checked against the approved tunnel domain so a hook is never pointed
at an unreachable or unintended host.

Provisioning is check-then-create: existing hooks are listed first and a
hook already targeting the same URL is reused instead of duplicated. A
reused hook has its config rewritten with the current secret, since GitHub
masks the secret it holds.
Two concurrent calls can still both miss and both create.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

from prdigest.core.config import Settings
from prdigest.core.errors import ConfigurationError, ValidationError
from prdigest.github import client as github_client

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ("pull_request", "pull_request_review", "pull_request_review_comment")
WEBHOOK_PATH = "/api/webhooks/github"


def build_webhook_url(public_app_url: str) -> str:
    """Build the https callback URL from PUBLIC_APP_URL.

    Any scheme and trailing slash on the configured value are dropped.
    """
    if not public_app_url:
        raise ConfigurationError("PUBLIC_APP_URL is not set")
    host = public_app_url.strip()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    host = host.rstrip("/")
    return f"https://{host}{WEBHOOK_PATH}"


def validate_callback_url(url: str, allowed_domain: str) -> None:
    """Raise ValidationError unless `url` is https on the allowed domain.

    The hostname must equal `allowed_domain` or be a subdomain of it.
    """
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
    except ValueError as exc:
        raise ValidationError(f"Invalid webhook URL: {url}") from exc

    domain = allowed_domain.lower().lstrip(".")
    if parts.scheme != "https":
        raise ValidationError(f"Invalid webhook URL: {url}. Webhook callbacks must use https.")
    if not hostname or not (hostname == domain or hostname.endswith(f".{domain}")):
        raise ValidationError(
            f"Invalid webhook URL: {url}. Host must be a *.{domain} address; "
            "check PUBLIC_APP_URL."
        )


def build_webhook_config(url: str, secret: str) -> dict:
    return {
        "name": "web",
        "active": True,
        "events": list(WEBHOOK_EVENTS),
        "config": {
            "url": url,
            "content_type": "json",
            "secret": secret,
            # Tunnel endpoints may present self-signed certificates.
            "insecure_ssl": "1",
        },
    }


class WebhookProvisioner:
    """Attach the pull-request webhook to repositories."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client

    async def register(
        self,
        owner: str,
        repo: str,
        webhook_secret: str,
        token: str,
        callback_url: str,
    ) -> int:
        """Ensure a webhook for `callback_url` exists on owner/repo; return its id.

        Raises:
            ValidationError: callback URL rejected; no request was sent.
            UpstreamAPIError: listing, updating or creating hooks failed.
        """
        validate_callback_url(callback_url, self._settings.webhook_allowed_domain)

        existing = await github_client.list_repository_hooks(
            token, owner, repo, settings=self._settings, client=self._client
        )
        hook_config = build_webhook_config(callback_url, webhook_secret)
        for hook in existing:
            if hook.config.get("url") == callback_url:
                # The stored secret is masked by GitHub; rewrite the config
                # so the hook signs with this repository's current secret.
                await github_client.update_repository_hook_config(
                    token,
                    owner,
                    repo,
                    hook.id,
                    hook_config["config"],
                    settings=self._settings,
                    client=self._client,
                )
                logger.info(
                    "Webhook %d already targets the callback URL on %s/%s; reused with a refreshed secret",
                    hook.id, owner, repo,
                )
                return hook.id

        hook_id = await github_client.create_repository_hook(
            token,
            owner,
            repo,
            hook_config,
            settings=self._settings,
            client=self._client,
        )
        logger.info("Created webhook %d on %s/%s", hook_id, owner, repo)
        return hook_id
