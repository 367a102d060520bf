"""Tests for the GitHub service layer: installation sync, webhook setup, PR recording."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from prdigest.core.errors import UpstreamAPIError, ValidationError
from prdigest.db.models import PullRequest, PullRequestSummary, Repository
from prdigest.github.schemas import GitHubAccount, GitHubRepository, PullRequestPayload
from prdigest.github.service import (
    add_repository,
    get_latest_pull_request_summary,
    get_pull_request,
    list_available_repositories,
    list_pull_requests,
    record_pull_request,
    setup_repository_webhook,
    store_pull_request_summary,
    sync_installation_repositories,
)
from tests.conftest import (
    STUB_INSTALLATION_ID,
    STUB_REPO_ID,
    STUB_USER_ID,
    STUB_WEBHOOK_SECRET,
    make_settings,
)
from tests.github.test_webhooks import pull_request_body


def _gh_repo(i: int, name: str | None = None, owner: str = "acme") -> GitHubRepository:
    return GitHubRepository(id=i, name=name or f"repo-{i}", owner=GitHubAccount(login=owner))


def _tokens(token: str = "ghs_test") -> MagicMock:
    tokens = MagicMock()
    tokens.settings = make_settings()
    tokens.get_token = AsyncMock(return_value=token)
    return tokens


async def _repo(db, repo_id=STUB_REPO_ID) -> Repository:
    return (await db.execute(select(Repository).where(Repository.id == repo_id))).scalar_one()


class TestSyncInstallationRepositories:
    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_adds_new_repositories_with_secrets(self, mock_list, db_session):
        mock_list.return_value = [_gh_repo(1), _gh_repo(2)]
        tokens = _tokens()

        count = await sync_installation_repositories(db_session, tokens, 77)
        await db_session.commit()

        assert count == 2
        tokens.get_token.assert_awaited_once_with(77, client=None)
        assert mock_list.await_args.args == ("ghs_test",)

        rows = (await db_session.execute(select(Repository))).scalars().all()
        assert {r.name for r in rows} == {"repo-1", "repo-2"}
        assert all(r.installation_id == 77 for r in rows)
        assert all(len(r.webhook_secret) == 64 for r in rows)
        assert rows[0].webhook_secret != rows[1].webhook_secret
        assert all(r.webhook_id is None for r in rows)

    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_resync_keeps_existing_secret_and_hook(self, mock_list, seeded_db):
        repo = await _repo(seeded_db)
        repo.webhook_id = "321"
        await seeded_db.commit()

        mock_list.return_value = [_gh_repo(1, "api-service"), _gh_repo(2, "web")]
        count = await sync_installation_repositories(
            seeded_db, _tokens(), STUB_INSTALLATION_ID, STUB_USER_ID
        )
        await seeded_db.commit()

        assert count == 2
        rows = (await seeded_db.execute(select(Repository))).scalars().all()
        assert len(rows) == 2
        kept = next(r for r in rows if r.name == "api-service")
        assert kept.webhook_secret == STUB_WEBHOOK_SECRET
        assert kept.webhook_id == "321"
        added = next(r for r in rows if r.name == "web")
        assert added.created_by == STUB_USER_ID

    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_listing_failure_records_nothing(self, mock_list, db_session):
        mock_list.side_effect = UpstreamAPIError("Failed to list", status_code=502)

        with pytest.raises(UpstreamAPIError):
            await sync_installation_repositories(db_session, _tokens(), 77)

        rows = (await db_session.execute(select(Repository))).scalars().all()
        assert rows == []


class TestListAvailableRepositories:
    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_excludes_connected(self, mock_list, seeded_db):
        mock_list.return_value = [_gh_repo(1, "api-service"), _gh_repo(2, "web")]
        tokens = _tokens()

        available = await list_available_repositories(seeded_db, tokens, STUB_USER_ID)

        assert [r.name for r in available] == ["web"]
        tokens.get_token.assert_awaited_once_with(STUB_INSTALLATION_ID, client=None)

    async def test_user_without_repositories_has_none(self, db_session):
        tokens = _tokens()
        assert await list_available_repositories(db_session, tokens, STUB_USER_ID) == []
        tokens.get_token.assert_not_awaited()


class TestAddRepository:
    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_connects_accessible_repository(self, mock_list, seeded_db):
        mock_list.return_value = [_gh_repo(1, "api-service"), _gh_repo(2, "web")]
        tokens = _tokens()

        repo = await add_repository(seeded_db, tokens, STUB_USER_ID, "acme", "web")
        await seeded_db.commit()

        tokens.get_token.assert_awaited_once_with(STUB_INSTALLATION_ID, client=None)
        assert repo.installation_id == STUB_INSTALLATION_ID
        assert repo.created_by == STUB_USER_ID
        assert len(repo.webhook_secret) == 64
        assert repo.webhook_secret != STUB_WEBHOOK_SECRET
        assert repo.webhook_id is None

    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_explicit_installation(self, mock_list, seeded_db):
        mock_list.return_value = [_gh_repo(5, "tools", owner="other-org")]
        tokens = _tokens()

        repo = await add_repository(
            seeded_db, tokens, STUB_USER_ID, "other-org", "tools", installation_id=99
        )
        tokens.get_token.assert_awaited_once_with(99, client=None)
        assert repo.installation_id == 99

    @patch("prdigest.github.client.list_installation_repos", new_callable=AsyncMock)
    async def test_inaccessible_repository_rejected(self, mock_list, seeded_db):
        mock_list.return_value = [_gh_repo(1, "api-service")]

        with pytest.raises(ValidationError, match="not accessible"):
            await add_repository(seeded_db, _tokens(), STUB_USER_ID, "acme", "secret-project")

        rows = (await seeded_db.execute(select(Repository))).scalars().all()
        assert [r.name for r in rows] == ["api-service"]

    async def test_user_without_installation_rejected(self, db_session):
        tokens = _tokens()
        with pytest.raises(ValidationError, match="Install the App"):
            await add_repository(db_session, tokens, STUB_USER_ID, "acme", "web")
        tokens.get_token.assert_not_awaited()


class TestSetupRepositoryWebhook:
    async def test_stores_hook_id(self, seeded_db):
        repo = await _repo(seeded_db)
        provisioner = MagicMock()
        provisioner.register = AsyncMock(return_value=9876)
        tokens = _tokens("ghs_install")

        hook_id = await setup_repository_webhook(
            seeded_db, repo, tokens, provisioner, make_settings()
        )
        await seeded_db.commit()

        assert hook_id == 9876
        provisioner.register.assert_awaited_once_with(
            "acme",
            "api-service",
            STUB_WEBHOOK_SECRET,
            "ghs_install",
            "https://demo-tunnel.ngrok-free.app/api/webhooks/github",
        )
        assert (await _repo(seeded_db)).webhook_id == "9876"

    async def test_failure_leaves_hook_id_unset(self, seeded_db):
        repo = await _repo(seeded_db)
        provisioner = MagicMock()
        provisioner.register = AsyncMock(
            side_effect=UpstreamAPIError("Failed to create webhook", status_code=422)
        )

        with pytest.raises(UpstreamAPIError):
            await setup_repository_webhook(
                seeded_db, repo, _tokens(), provisioner, make_settings()
            )
        assert repo.webhook_id is None


class TestRecordPullRequest:
    async def test_insert_then_update(self, seeded_db):
        repo = await _repo(seeded_db)

        opened = PullRequestPayload.model_validate(pull_request_body())
        row = await record_pull_request(seeded_db, repo, opened)
        await seeded_db.commit()
        assert row.state == "open"
        assert row.author == "octocat"
        assert row.commit_count == 2

        merged = PullRequestPayload.model_validate(
            pull_request_body(
                title="Add retries to the fetcher (v2)",
                state="closed",
                merged=True,
                updated_at="2026-01-05T00:00:00Z",
                closed_at="2026-01-05T00:00:00Z",
                merged_at="2026-01-05T00:00:00Z",
                commits=3,
            )
        )
        await record_pull_request(seeded_db, repo, merged)
        await seeded_db.commit()

        rows = (await seeded_db.execute(select(PullRequest))).scalars().all()
        assert len(rows) == 1
        assert rows[0].state == "merged"
        assert rows[0].title == "Add retries to the fetcher (v2)"
        assert rows[0].commit_count == 3
        assert rows[0].merged_at is not None

    async def test_list_orders_most_recent_first(self, seeded_db):
        repo = await _repo(seeded_db)
        for number, day in [(1, 2), (2, 9), (3, 5)]:
            payload = PullRequestPayload.model_validate(
                pull_request_body(
                    number=number,
                    updated_at=datetime(2026, 1, day, tzinfo=timezone.utc).isoformat(),
                )
            )
            await record_pull_request(seeded_db, repo, payload)
        await seeded_db.commit()

        pulls = await list_pull_requests(seeded_db, repo)
        assert [p.number for p in pulls] == [2, 3, 1]

    async def test_get_pull_request_by_number(self, seeded_db):
        repo = await _repo(seeded_db)
        await record_pull_request(
            seeded_db, repo, PullRequestPayload.model_validate(pull_request_body())
        )

        assert (await get_pull_request(seeded_db, repo, 7)).title == "Add retries to the fetcher"
        assert await get_pull_request(seeded_db, repo, 8) is None


class TestPullRequestSummaries:
    async def _pull(self, db) -> PullRequest:
        repo = await _repo(db)
        return await record_pull_request(
            db, repo, PullRequestPayload.model_validate(pull_request_body())
        )

    async def test_none_before_any_summary(self, seeded_db):
        pr = await self._pull(seeded_db)
        assert await get_latest_pull_request_summary(seeded_db, pr) is None

    async def test_store_and_fetch(self, seeded_db):
        pr = await self._pull(seeded_db)
        stored = await store_pull_request_summary(
            seeded_db,
            pr,
            summary="Adds retries with backoff to the fetcher.",
            model="claude-sonnet",
            provider="anthropic",
            prompt_tokens=1200,
            completion_tokens=80,
        )
        await seeded_db.commit()

        latest = await get_latest_pull_request_summary(seeded_db, pr)
        assert latest.id == stored.id
        assert latest.provider == "anthropic"
        assert latest.prompt_tokens == 1200
        assert latest.generated_at is not None

    async def test_newest_summary_wins_and_history_is_kept(self, seeded_db):
        pr = await self._pull(seeded_db)
        older = await store_pull_request_summary(
            seeded_db, pr, summary="first", model="m", provider="anthropic"
        )
        older.generated_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        newer = await store_pull_request_summary(
            seeded_db, pr, summary="second", model="m", provider="anthropic"
        )
        newer.generated_at = datetime(2026, 1, 2, tzinfo=timezone.utc)
        await seeded_db.commit()

        assert (await get_latest_pull_request_summary(seeded_db, pr)).summary == "second"
        rows = (await seeded_db.execute(select(PullRequestSummary))).scalars().all()
        assert len(rows) == 2
