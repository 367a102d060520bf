"""GitHub REST client for App and installation-scoped operations.

Uses httpx for async HTTP calls. Each function takes an optional
`client`; when omitted, a short-lived `httpx.AsyncClient` is opened for
the call. Every request is bounded by GITHUB_HTTP_TIMEOUT_SECONDS.

Failures are never retried here. A timeout, a transport error or a non-2xx
response raises UpstreamAPIError carrying the upstream status, body and
rate-limit headers. So does a 2xx response whose body is not the JSON
shape the endpoint documents.
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional, TypeVar

import httpx
import pydantic

from prdigest.core.config import Settings, get_settings
from prdigest.core.errors import UpstreamAPIError
from prdigest.github.schemas import GitHubHook, GitHubRepository, InstallationToken

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
PAGE_SIZE = 100

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

_RATE_LIMIT_HEADERS = ("x-ratelimit-limit", "x-ratelimit-remaining", "x-ratelimit-reset")


@asynccontextmanager
async def _http_client(
    client: Optional[httpx.AsyncClient], settings: Settings
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.github_http_timeout_seconds) as owned:
        yield owned


def _auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }


def _rate_limit_headers(response: httpx.Response) -> dict[str, str]:
    return {
        name: response.headers[name]
        for name in _RATE_LIMIT_HEADERS
        if name in response.headers
    }


async def _request(
    client: httpx.AsyncClient,
    settings: Settings,
    method: str,
    url: str,
    *,
    action: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request and raise UpstreamAPIError unless it succeeded."""
    try:
        response = await client.request(
            method, url, timeout=settings.github_http_timeout_seconds, **kwargs
        )
    except httpx.TimeoutException as exc:
        raise UpstreamAPIError(f"Failed to {action}: request timed out") from exc
    except httpx.HTTPError as exc:
        raise UpstreamAPIError(f"Failed to {action}: {exc}") from exc

    if not response.is_success:
        rate_limits = _rate_limit_headers(response)
        logger.error(
            "GitHub API error while trying to %s: status=%d rate_limits=%s",
            action,
            response.status_code,
            rate_limits,
        )
        raise UpstreamAPIError(
            f"Failed to {action}",
            status_code=response.status_code,
            body=response.text,
            headers=rate_limits,
        )
    return response


def _unexpected_response(response: httpx.Response, action: str, reason: str) -> UpstreamAPIError:
    logger.error(
        "GitHub API returned an unexpected body while trying to %s: status=%d (%s)",
        action,
        response.status_code,
        reason,
    )
    return UpstreamAPIError(
        f"Failed to {action}: unexpected response ({reason})",
        status_code=response.status_code,
        body=response.text,
    )


def _json(response: httpx.Response, action: str) -> Any:
    """Decode a successful response body, or raise UpstreamAPIError."""
    try:
        return response.json()
    except ValueError as exc:
        raise _unexpected_response(response, action, "body is not JSON") from exc


def _parse(model: type[ModelT], data: Any, response: httpx.Response, action: str) -> ModelT:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise _unexpected_response(
            response, action, f"{exc.error_count()} invalid fields"
        ) from exc


def _has_next_page(response: httpx.Response) -> bool:
    return 'rel="next"' in response.headers.get("link", "")


async def _collect_pages(
    client: httpx.AsyncClient,
    settings: Settings,
    url: str,
    token: str,
    *,
    action: str,
    model: type[ModelT],
    items: Callable[[Any], Optional[list]],
) -> list[ModelT]:
    """Walk a paginated listing endpoint and return every item in page order.

    `items` extracts the page's list from the decoded body and returns None
    when the body does not have the expected shape.

    Stops on an empty page or when the Link header has no rel="next",
    whichever comes first. Any failed or malformed page aborts the whole walk.
    """
    collected: list[ModelT] = []
    page = 1
    while True:
        response = await _request(
            client,
            settings,
            "GET",
            url,
            action=action,
            headers=_auth_headers(token),
            params={"per_page": PAGE_SIZE, "page": page},
        )
        batch = items(_json(response, action))
        if not isinstance(batch, list):
            raise _unexpected_response(response, action, "expected a list of items")
        if not batch:
            break

        collected.extend(_parse(model, item, response, action) for item in batch)
        logger.debug("Fetched %d items on page %d of %s", len(batch), page, url)

        if not _has_next_page(response):
            break
        page += 1
    return collected


async def exchange_installation_token(
    installation_id: int,
    app_jwt: str,
    *,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> InstallationToken:
    """Exchange a GitHub App JWT for an installation access token.

    Single attempt. Installation tokens are scoped to the repos the
    account granted and expire after about an hour.
    """
    settings = settings or get_settings()
    action = "get installation token"
    async with _http_client(client, settings) as http:
        response = await _request(
            http,
            settings,
            "POST",
            f"{settings.github_api_base}/app/installations/{installation_id}/access_tokens",
            action=action,
            headers=_auth_headers(app_jwt),
        )
    return _parse(InstallationToken, _json(response, action), response, action)


async def list_installation_repos(
    token: str,
    *,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list[GitHubRepository]:
    """List every repository accessible to an installation token.

    All-or-nothing: if any page fails, nothing is returned.
    """
    settings = settings or get_settings()
    async with _http_client(client, settings) as http:
        repos = await _collect_pages(
            http,
            settings,
            f"{settings.github_api_base}/installation/repositories",
            token,
            action="fetch repositories",
            model=GitHubRepository,
            items=lambda data: data.get("repositories") if isinstance(data, dict) else None,
        )
    logger.info("Total repositories fetched: %d", len(repos))
    return repos


async def list_repository_hooks(
    token: str,
    owner: str,
    repo: str,
    *,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list[GitHubHook]:
    """GET /repos/{owner}/{repo}/hooks, all pages."""
    settings = settings or get_settings()
    async with _http_client(client, settings) as http:
        return await _collect_pages(
            http,
            settings,
            f"{settings.github_api_base}/repos/{owner}/{repo}/hooks",
            token,
            action=f"list webhooks for {owner}/{repo}",
            model=GitHubHook,
            items=lambda data: data if isinstance(data, list) else None,
        )


async def create_repository_hook(
    token: str,
    owner: str,
    repo: str,
    hook: dict,
    *,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """POST /repos/{owner}/{repo}/hooks and return the new hook id."""
    settings = settings or get_settings()
    action = f"configure webhook for {owner}/{repo}"
    async with _http_client(client, settings) as http:
        response = await _request(
            http,
            settings,
            "POST",
            f"{settings.github_api_base}/repos/{owner}/{repo}/hooks",
            action=action,
            headers=_auth_headers(token),
            json=hook,
        )
    return _parse(GitHubHook, _json(response, action), response, action).id


async def update_repository_hook_config(
    token: str,
    owner: str,
    repo: str,
    hook_id: int,
    config: dict,
    *,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """PATCH /repos/{owner}/{repo}/hooks/{hook_id}/config.

    GitHub never returns a hook's secret, so this is the only way to make
    an existing hook sign with a known secret.
    """
    settings = settings or get_settings()
    action = f"update webhook {hook_id} for {owner}/{repo}"
    async with _http_client(client, settings) as http:
        await _request(
            http,
            settings,
            "PATCH",
            f"{settings.github_api_base}/repos/{owner}/{repo}/hooks/{hook_id}/config",
            action=action,
            headers=_auth_headers(token),
            json=config,
        )
