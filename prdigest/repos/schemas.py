"""Pydantic schemas for repository endpoints.

The webhook secret and access token are deliberately absent from every
response model.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RepoResponse(BaseModel):
    """Response schema for a single connected repository."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    owner: str
    name: str
    full_name: str
    installation_id: int
    webhook_id: Optional[str] = None


class RepoAddRequest(BaseModel):
    """Payload for connecting an installation repository."""

    owner: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    installation_id: Optional[int] = Field(
        default=None,
        description="App installation to check against; defaults to the user's existing one",
    )


class RepoListResponse(BaseModel):
    repos: list[RepoResponse]
    count: int


class AvailableRepoItem(BaseModel):
    github_repo_id: int
    owner: str
    name: str
    description: Optional[str] = None
    private: bool = False


class AvailableReposResponse(BaseModel):
    repos: list[AvailableRepoItem]
    count: int


class PullRequestResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    number: int
    title: str
    author: str
    state: str
    base_branch: str
    head_branch: str
    html_url: str
    diff_url: str
    changed_files: int
    additions: int
    deletions: int
    commit_count: int
    opened_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None


class PullRequestListResponse(BaseModel):
    pull_requests: list[PullRequestResponse]
    count: int


class PullRequestSummaryResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    summary: str
    model: str
    provider: str
    prompt_tokens: int
    completion_tokens: int
    generated_at: datetime
