"""Repository endpoints.

Routes:
  GET  /repos                                  : repositories connected by the current user
  POST /repos                                  : connect an installation repository
  GET  /repos/available                        : installation repos not connected yet
  POST /repos/{repo_id}/webhook                : provision the pull-request webhook
  GET  /repos/{repo_id}/pulls                  : pull requests recorded from webhooks
  GET  /repos/{repo_id}/pulls/{number}         : one recorded pull request
  GET  /repos/{repo_id}/pulls/{number}/summary : its latest generated summary
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.auth.dependencies import get_current_user
from prdigest.core.config import Settings, get_settings
from prdigest.db.models import PullRequest, Repository
from prdigest.db.session import get_db
from prdigest.github.provisioner import WebhookProvisioner
from prdigest.github.schemas import WebhookSetupResponse
from prdigest.github.service import (
    add_repository,
    get_latest_pull_request_summary,
    get_pull_request,
    get_repository_by_owner_and_name,
    list_available_repositories,
    list_pull_requests,
    list_user_repositories,
    setup_repository_webhook,
)
from prdigest.github.tokens import InstallationTokenProvider, get_token_provider
from prdigest.repos.schemas import (
    AvailableRepoItem,
    AvailableReposResponse,
    PullRequestListResponse,
    PullRequestResponse,
    PullRequestSummaryResponse,
    RepoAddRequest,
    RepoListResponse,
    RepoResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repos", tags=["repos"])


def get_webhook_provisioner(settings: Settings = Depends(get_settings)) -> WebhookProvisioner:
    return WebhookProvisioner(settings)


async def _get_owned_repo(
    repo_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession,
) -> Repository:
    """Return the repo if the user connected it; 404 otherwise."""
    result = await db.execute(
        select(Repository).where(
            Repository.id == repo_id,
            Repository.created_by == user_id,
        )
    )
    repo = result.scalar_one_or_none()
    if not repo:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repository {repo_id} not found",
        )
    return repo


@router.get("", response_model=RepoListResponse)
async def list_repos(
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
) -> RepoListResponse:
    repos = await list_user_repositories(db, user_id)
    return RepoListResponse(
        repos=[RepoResponse.model_validate(r) for r in repos],
        count=len(repos),
    )


@router.post("", response_model=RepoResponse, status_code=status.HTTP_201_CREATED)
async def add_repo(
    body: RepoAddRequest,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
    tokens: InstallationTokenProvider = Depends(get_token_provider),
) -> RepoResponse:
    """Connect a repository the App installation can access.

    A fresh webhook secret is generated for it; the webhook itself is
    provisioned separately.
    """
    if await get_repository_by_owner_and_name(db, body.owner, body.name) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Repository already exists",
        )

    repo = await add_repository(
        db, tokens, user_id, body.owner, body.name, body.installation_id
    )
    return RepoResponse.model_validate(repo)


@router.get("/available", response_model=AvailableReposResponse)
async def list_available_repos(
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
    tokens: InstallationTokenProvider = Depends(get_token_provider),
) -> AvailableReposResponse:
    """List installation repositories the user could still connect.

    Calls GitHub with a fresh installation token.
    """
    available = await list_available_repositories(db, tokens, user_id)
    items = [
        AvailableRepoItem(
            github_repo_id=r.id,
            owner=r.owner.login,
            name=r.name,
            description=r.description,
            private=r.private,
        )
        for r in available
    ]
    return AvailableReposResponse(repos=items, count=len(items))


@router.post("/{repo_id}/webhook", response_model=WebhookSetupResponse)
async def setup_webhook(
    repo_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
    tokens: InstallationTokenProvider = Depends(get_token_provider),
    provisioner: WebhookProvisioner = Depends(get_webhook_provisioner),
    settings: Settings = Depends(get_settings),
) -> WebhookSetupResponse:
    """Attach the pull-request webhook to a connected repository.

    Idempotent: a hook already pointing at our callback URL is reused.
    """
    repo = await _get_owned_repo(repo_id, user_id, db)
    hook_id = await setup_repository_webhook(db, repo, tokens, provisioner, settings)
    return WebhookSetupResponse(repo_id=repo.id, webhook_id=str(hook_id))


@router.get("/{repo_id}/pulls", response_model=PullRequestListResponse)
async def list_repo_pulls(
    repo_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
) -> PullRequestListResponse:
    repo = await _get_owned_repo(repo_id, user_id, db)
    pulls = await list_pull_requests(db, repo)
    return PullRequestListResponse(
        pull_requests=[PullRequestResponse.model_validate(p) for p in pulls],
        count=len(pulls),
    )


async def _get_recorded_pull(
    repo_id: uuid.UUID, number: int, user_id: uuid.UUID, db: AsyncSession
) -> PullRequest:
    repo = await _get_owned_repo(repo_id, user_id, db)
    pr = await get_pull_request(db, repo, number)
    if pr is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Pull request #{number} not found in {repo.full_name}",
        )
    return pr


@router.get("/{repo_id}/pulls/{number}", response_model=PullRequestResponse)
async def get_repo_pull(
    repo_id: uuid.UUID,
    number: int,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
) -> PullRequestResponse:
    pr = await _get_recorded_pull(repo_id, number, user_id, db)
    return PullRequestResponse.model_validate(pr)


@router.get("/{repo_id}/pulls/{number}/summary", response_model=PullRequestSummaryResponse)
async def get_repo_pull_summary(
    repo_id: uuid.UUID,
    number: int,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
) -> PullRequestSummaryResponse:
    """Return the most recent summary generated for the pull request."""
    pr = await _get_recorded_pull(repo_id, number, user_id, db)
    summary = await get_latest_pull_request_summary(db, pr)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No summary generated for pull request #{number}",
        )
    return PullRequestSummaryResponse.model_validate(summary)
