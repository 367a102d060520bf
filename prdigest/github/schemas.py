"""Pydantic schemas for GitHub API payloads and GitHub-facing endpoints.

Upstream payloads carry far more fields than we use; models ignore the
extras so new GitHub fields never break parsing.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class _GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# REST API payloads
# ---------------------------------------------------------------------------


class GitHubAccount(_GitHubModel):
    login: str
    id: Optional[int] = None


class GitHubRepository(_GitHubModel):
    id: int
    name: str
    owner: GitHubAccount
    description: Optional[str] = None
    private: bool = False
    default_branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner.login}/{self.name}"


class InstallationToken(_GitHubModel):
    """Installation access token as returned by the access_tokens endpoint."""

    token: str
    expires_at: Optional[datetime] = None


class GitHubHook(_GitHubModel):
    id: int
    name: str = "web"
    active: bool = True
    events: list[str] = []
    config: dict = {}


# ---------------------------------------------------------------------------
# Inbound webhook events: one model per event type
# ---------------------------------------------------------------------------


class WebhookRepository(_GitHubModel):
    name: str
    owner: GitHubAccount


class BranchRef(_GitHubModel):
    ref: str


class PullRequestPayload(_GitHubModel):
    number: int
    title: str
    user: Optional[GitHubAccount] = None
    state: str
    merged: bool = False
    base: BranchRef
    head: BranchRef
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    diff_url: str
    html_url: str
    changed_files: int = 0
    additions: int = 0
    deletions: int = 0
    commits: int = 0

    @property
    def author(self) -> str:
        return self.user.login if self.user else "unknown"

    @property
    def effective_state(self) -> str:
        """GitHub reports merged PRs as closed; surface them as merged."""
        if self.merged or self.merged_at is not None:
            return "merged"
        return self.state


class Review(_GitHubModel):
    id: int
    state: str
    user: Optional[GitHubAccount] = None


class ReviewComment(_GitHubModel):
    id: int
    body: str = ""
    user: Optional[GitHubAccount] = None


class PullRequestEvent(_GitHubModel):
    event: Literal["pull_request"] = "pull_request"
    action: str
    pull_request: PullRequestPayload
    repository: WebhookRepository


class PullRequestReviewEvent(_GitHubModel):
    event: Literal["pull_request_review"] = "pull_request_review"
    action: str
    review: Review
    pull_request: PullRequestPayload
    repository: WebhookRepository


class PullRequestReviewCommentEvent(_GitHubModel):
    event: Literal["pull_request_review_comment"] = "pull_request_review_comment"
    action: str
    comment: ReviewComment
    pull_request: PullRequestPayload
    repository: WebhookRepository


class PingEvent(_GitHubModel):
    event: Literal["ping"] = "ping"
    zen: str = ""
    hook_id: Optional[int] = None
    repository: Optional[WebhookRepository] = None


class UnsupportedEvent(_GitHubModel):
    event: str
    action: str = ""


WebhookEvent = Union[
    PullRequestEvent,
    PullRequestReviewEvent,
    PullRequestReviewCommentEvent,
    PingEvent,
    UnsupportedEvent,
]


# ---------------------------------------------------------------------------
# Endpoint responses
# ---------------------------------------------------------------------------


class WebhookResponse(BaseModel):
    """Acknowledgement response for webhook deliveries."""

    received: bool
    event: str
    action: str


class InstallationSyncResponse(BaseModel):
    installation_id: int
    repositories: int


class WebhookSetupResponse(BaseModel):
    repo_id: uuid.UUID
    webhook_id: str
