"""GitHub service layer.

Orchestrates the two credential chains:

    installation sync:  mint JWT -> installation token -> paginate repos -> upsert rows
    webhook setup:      mint JWT -> installation token -> provision hook -> store hook id

and records pull requests delivered by webhooks, plus the summaries
generated for them. This layer is the
boundary between our ORM models and the GitHub client.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.core.config import Settings
from prdigest.core.errors import ValidationError
from prdigest.db.models import PullRequest, PullRequestSummary, Repository
from prdigest.github import client as github_client
from prdigest.github.provisioner import WebhookProvisioner, build_webhook_url
from prdigest.github.schemas import GitHubRepository, PullRequestPayload
from prdigest.github.tokens import InstallationTokenProvider
from prdigest.github.webhooks import generate_webhook_secret

logger = logging.getLogger(__name__)


async def get_repository_by_owner_and_name(
    db: AsyncSession, owner: str, name: str
) -> Optional[Repository]:
    result = await db.execute(
        select(Repository).where(Repository.owner == owner, Repository.name == name)
    )
    return result.scalar_one_or_none()


async def sync_installation_repositories(
    db: AsyncSession,
    tokens: InstallationTokenProvider,
    installation_id: int,
    user_id: Optional[uuid.UUID] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Record every repository the installation can access.

    Repositories already known by (owner, name) are left untouched so
    their webhook secret and hook id survive a re-sync. Returns the
    number of repositories the installation exposes.
    """
    token = await tokens.get_token(installation_id, client=client)
    repositories = await github_client.list_installation_repos(
        token, settings=tokens.settings, client=client
    )

    added = 0
    for repo in repositories:
        existing = await get_repository_by_owner_and_name(db, repo.owner.login, repo.name)
        if existing is not None:
            continue
        db.add(
            Repository(
                owner=repo.owner.login,
                name=repo.name,
                installation_id=installation_id,
                webhook_secret=generate_webhook_secret(),
                created_by=user_id,
            )
        )
        added += 1
    await db.flush()

    logger.info(
        "Synced installation %d: %d repositories, %d new",
        installation_id, len(repositories), added,
    )
    return len(repositories)


async def list_user_repositories(db: AsyncSession, user_id: uuid.UUID) -> list[Repository]:
    result = await db.execute(
        select(Repository)
        .where(Repository.created_by == user_id)
        .order_by(Repository.owner, Repository.name)
    )
    return list(result.scalars().all())


async def list_available_repositories(
    db: AsyncSession,
    tokens: InstallationTokenProvider,
    user_id: uuid.UUID,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> list[GitHubRepository]:
    """Installation repositories the user has not connected yet.

    The installation is taken from the user's first connected repository;
    a user with none has nothing available.
    """
    existing = await list_user_repositories(db, user_id)
    if not existing:
        return []

    installation_id = existing[0].installation_id
    token = await tokens.get_token(installation_id, client=client)
    all_repos = await github_client.list_installation_repos(
        token, settings=tokens.settings, client=client
    )

    connected = {repo.full_name for repo in existing}
    return [repo for repo in all_repos if repo.full_name not in connected]


async def add_repository(
    db: AsyncSession,
    tokens: InstallationTokenProvider,
    user_id: uuid.UUID,
    owner: str,
    name: str,
    installation_id: Optional[int] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Repository:
    """Connect one installation repository for `user_id`.

    Without an explicit installation the user's existing one is used. The
    repository must appear in that installation's listing. The caller is
    responsible for rejecting an (owner, name) that is already recorded.

    Raises:
        ValidationError: no installation is known, or the repository is
            not accessible to it.
        UpstreamAPIError: the token exchange or listing failed.
    """
    if installation_id is None:
        connected = await list_user_repositories(db, user_id)
        if not connected:
            raise ValidationError(
                "No GitHub App installation found for this user. Install the App first."
            )
        installation_id = connected[0].installation_id

    token = await tokens.get_token(installation_id, client=client)
    accessible = await github_client.list_installation_repos(
        token, settings=tokens.settings, client=client
    )
    if not any(r.owner.login == owner and r.name == name for r in accessible):
        raise ValidationError(
            f"Repository {owner}/{name} is not accessible to installation {installation_id}"
        )

    repo = Repository(
        owner=owner,
        name=name,
        installation_id=installation_id,
        webhook_secret=generate_webhook_secret(),
        created_by=user_id,
    )
    db.add(repo)
    await db.flush()
    logger.info("Connected %s to installation %d", repo.full_name, installation_id)
    return repo


async def setup_repository_webhook(
    db: AsyncSession,
    repo: Repository,
    tokens: InstallationTokenProvider,
    provisioner: WebhookProvisioner,
    settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Provision the PR webhook for `repo` and store the returned hook id."""
    callback_url = build_webhook_url(settings.public_app_url)
    token = await tokens.get_token(repo.installation_id, client=client)

    hook_id = await provisioner.register(
        repo.owner,
        repo.name,
        repo.webhook_secret,
        token,
        callback_url,
    )

    repo.webhook_id = str(hook_id)
    await db.flush()
    return hook_id


async def record_pull_request(
    db: AsyncSession, repo: Repository, pr: PullRequestPayload
) -> PullRequest:
    """Insert or update the PullRequest row for a delivery."""
    row = await get_pull_request(db, repo, pr.number)

    if row is None:
        row = PullRequest(
            repo_id=repo.id,
            number=pr.number,
            author=pr.author,
            base_branch=pr.base.ref,
            head_branch=pr.head.ref,
            opened_at=pr.created_at,
            diff_url=pr.diff_url,
            html_url=pr.html_url,
        )
        db.add(row)

    row.title = pr.title
    row.state = pr.effective_state
    row.updated_at = pr.updated_at
    row.closed_at = pr.closed_at
    row.merged_at = pr.merged_at
    row.changed_files = pr.changed_files
    row.additions = pr.additions
    row.deletions = pr.deletions
    row.commit_count = pr.commits

    await db.flush()
    return row


async def list_pull_requests(db: AsyncSession, repo: Repository) -> list[PullRequest]:
    result = await db.execute(
        select(PullRequest)
        .where(PullRequest.repo_id == repo.id)
        .order_by(PullRequest.updated_at.desc())
    )
    return list(result.scalars().all())


async def get_pull_request(
    db: AsyncSession, repo: Repository, number: int
) -> Optional[PullRequest]:
    result = await db.execute(
        select(PullRequest).where(
            PullRequest.repo_id == repo.id,
            PullRequest.number == number,
        )
    )
    return result.scalar_one_or_none()


async def store_pull_request_summary(
    db: AsyncSession,
    pr: PullRequest,
    *,
    summary: str,
    model: str,
    provider: str,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
) -> PullRequestSummary:
    """Append a generated summary for `pr`; earlier ones are kept."""
    row = PullRequestSummary(
        pull_request_id=pr.id,
        summary=summary,
        model=model,
        provider=provider,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        generated_at=datetime.now(timezone.utc),
    )
    db.add(row)
    await db.flush()
    return row


async def get_latest_pull_request_summary(
    db: AsyncSession, pr: PullRequest
) -> Optional[PullRequestSummary]:
    result = await db.execute(
        select(PullRequestSummary)
        .where(PullRequestSummary.pull_request_id == pr.id)
        .order_by(PullRequestSummary.generated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
