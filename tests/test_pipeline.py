"""
Unit tests for the build pipeline
"""
from unittest.mock import AsyncMock, Mock

import pytest

from gitlab_handler.models import (
    BuildRef,
    CommitInfo,
    PipelineStatus,
    RequestType,
    ServiceAuth,
    StatusUpdate,
)
from gitlab_handler.pipeline import BuildPipeline
from gitlab_handler.status_queue import StatusDispatchQueue
from gitlab_handler.utils.exceptions import (
    CoordinatorAPIError,
    DispatchError,
    GitLabAPIError,
    InvalidStatusError,
    NotFoundError,
    ParseError,
    ProjectNotFoundError,
)
from gitlab_handler.webhook.models import (
    MergeRequestWebhookPayload,
    PushWebhookPayload,
    WebhookEventType,
    WebhookValidationResult,
)

CONFIG = {"steps": [{"name": "Run tests", "command": "make test"}]}


@pytest.fixture
def gitlab():
    client = Mock()
    client.post_status = AsyncMock(return_value={"id": 1})
    client.get_commit = AsyncMock()
    client.get_merge_request = AsyncMock()
    return client


@pytest.fixture
def coordinator(project):
    client = Mock()
    client.find_project = AsyncMock(return_value=project)
    client.submit_build = AsyncMock(return_value={"id": "build-1"})
    return client


@pytest.fixture
def credentials():
    manager = Mock()
    manager.ensure_usable_token = AsyncMock()
    return manager


@pytest.fixture
def resolver():
    config_resolver = Mock()
    config_resolver.resolve_config = AsyncMock(return_value=CONFIG)
    return config_resolver


@pytest.fixture
def pipeline(settings, gitlab, coordinator, credentials, resolver):
    return BuildPipeline(
        settings=settings,
        gitlab=gitlab,
        coordinator=coordinator,
        credentials=credentials,
        resolver=resolver,
        queue=StatusDispatchQueue(gitlab),
        notifier=Mock(),
    )


def mr_result(payload):
    return WebhookValidationResult(
        is_valid=True,
        event_type=WebhookEventType.MERGE_REQUEST,
        payload=MergeRequestWebhookPayload(**payload),
        should_process=True,
    )


def push_result(payload):
    return WebhookValidationResult(
        is_valid=True,
        event_type=WebhookEventType.PUSH,
        payload=PushWebhookPayload(**payload),
        should_process=True,
    )


class TestHandleWebhook:
    """Test cases for webhook processing"""

    @pytest.mark.asyncio
    async def test_merge_request_submitted(self, pipeline, mr_payload, coordinator, resolver, project):
        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.SUBMITTED
        assert outcome.submitted
        assert outcome.build == {"id": "build-1"}

        coordinator.find_project.assert_awaited_once_with("gitlab", "acme/widgets")
        resolver.resolve_config.assert_awaited_once_with(project, "abc123def456")

        build, submitted_project = coordinator.submit_build.await_args.args
        assert submitted_project is project
        assert build.type == RequestType.PULL_REQUEST
        assert build.config == CONFIG
        assert build.to_dict()["pullRequest"]["number"] == "7"
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_push_submitted(self, pipeline, push_payload, coordinator):
        outcome = await pipeline.handle_webhook(push_result(push_payload))

        assert outcome.status == PipelineStatus.SUBMITTED
        build = coordinator.submit_build.await_args.args[0]
        assert build.type == RequestType.BRANCH
        assert build.ref == "bbb222"
        assert build.to_dict()["branch"]["name"] == "feature/sprockets"
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_filtered_event_does_nothing(self, pipeline, mr_payload, coordinator, gitlab):
        mr_payload["object_attributes"]["state"] = "merged"

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.FILTERED
        coordinator.find_project.assert_not_awaited()
        gitlab.post_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_project_not_found_stops_quietly(self, pipeline, mr_payload, coordinator, resolver, gitlab):
        """No project means no build and no status"""
        coordinator.find_project.side_effect = ProjectNotFoundError("missing", slug="acme/widgets")

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.PROJECT_NOT_FOUND
        resolver.resolve_config.assert_not_awaited()
        coordinator.submit_build.assert_not_awaited()
        gitlab.post_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_config_posts_error_status(self, pipeline, mr_payload, coordinator, gitlab, project):
        resolver_error = NotFoundError()
        pipeline.resolver.resolve_config.side_effect = resolver_error

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.CONFIG_ERROR
        assert outcome.error is resolver_error
        coordinator.submit_build.assert_not_awaited()

        gitlab.post_status.assert_awaited_once()
        posted_project, sha, status = gitlab.post_status.await_args.args
        assert posted_project is project
        assert sha == "abc123def456"
        assert status.state == "failed"
        assert status.context == "ProboCI/env"
        assert status.description == "No config file was found."
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_parse_error_description_truncated(self, pipeline, push_payload, gitlab):
        pipeline.resolver.resolve_config.side_effect = ParseError(".probo.yml", "y" * 300)

        outcome = await pipeline.handle_webhook(push_result(push_payload))

        assert outcome.status == PipelineStatus.CONFIG_ERROR
        status = gitlab.post_status.await_args.args[2]
        assert len(status.description) == 140
        assert status.description.startswith("Failed to parse .probo.yml: ")
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_config_error_status_rejected(self, pipeline, mr_payload, gitlab):
        """A rejected error status is logged, not raised"""
        pipeline.resolver.resolve_config.side_effect = NotFoundError()
        gitlab.post_status.side_effect = GitLabAPIError("Failed", status_code=403)

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.CONFIG_ERROR
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_custom_config_error_context(self, pipeline, mr_payload, gitlab, settings):
        settings.config_error_context = "ci/config"
        pipeline.resolver.resolve_config.side_effect = NotFoundError()

        await pipeline.handle_webhook(mr_result(mr_payload))

        assert gitlab.post_status.await_args.args[2].context == "ci/config"
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_submit_failure(self, pipeline, mr_payload, coordinator):
        coordinator.submit_build.side_effect = CoordinatorAPIError("boom", status_code=500)

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.status == PipelineStatus.SUBMIT_FAILED
        assert not outcome.submitted

    @pytest.mark.asyncio
    async def test_refreshed_credentials_are_used(
        self, pipeline, mr_payload, coordinator, credentials, resolver, oauth_project
    ):
        """Config is fetched with the credential the manager returns"""
        coordinator.find_project.return_value = oauth_project
        refreshed = ServiceAuth(token="new_token", refresh_token="new_refresh")
        credentials.ensure_usable_token.return_value = refreshed

        outcome = await pipeline.handle_webhook(mr_result(mr_payload))

        assert outcome.submitted
        credentials.ensure_usable_token.assert_awaited_once()
        used_project = resolver.resolve_config.await_args.args[0]
        assert used_project.service_auth.token == "new_token"
        submitted_project = coordinator.submit_build.await_args.args[1]
        assert submitted_project.to_coordinator_dict()["service_auth"]["refreshToken"] == "new_refresh"

    @pytest.mark.asyncio
    async def test_private_token_projects_skip_credential_check(
        self, pipeline, mr_payload, credentials
    ):
        await pipeline.handle_webhook(mr_result(mr_payload))

        credentials.ensure_usable_token.assert_not_awaited()


class TestStatusUpdates:
    """Test cases for build status relay"""

    @pytest.mark.asyncio
    async def test_status_posted_for_build_commit(self, pipeline, gitlab, project):
        build = BuildRef(id="build-1", project=project, commit={"ref": "abc123"})
        update = StatusUpdate(state="success", description="All good", context="ci/tests", target_url="http://x")

        status = await pipeline.post_status_update(update, build)

        assert status.state == "success"
        gitlab.post_status.assert_awaited_once()
        posted_project, sha, posted = gitlab.post_status.await_args.args
        assert posted_project.slug == "acme/widgets"
        assert sha == "abc123"
        assert posted.context == "ci/tests"
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_context_override(self, pipeline, gitlab, project):
        build = BuildRef(id="build-1", project=project, commit={"ref": "abc123"})
        update = StatusUpdate(state="pending", context="ci/tests")

        status = await pipeline.post_status_update(update, build, context="ci/deploy")

        assert status.context == "ci/deploy"
        assert gitlab.post_status.await_args.args[2].context == "ci/deploy"
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_unknown_state_never_queued(self, pipeline, gitlab, project):
        build = BuildRef(id="build-1", project=project, commit={"ref": "abc123"})

        with pytest.raises(InvalidStatusError):
            await pipeline.post_status_update(StatusUpdate(state="canceled"), build)

        gitlab.post_status.assert_not_awaited()
        assert pipeline.queue.pending == 0

    @pytest.mark.asyncio
    async def test_rejected_status_raises(self, pipeline, gitlab, project):
        gitlab.post_status.side_effect = GitLabAPIError("Failed", status_code=403)
        build = BuildRef(id="build-1", project=project, commit={"ref": "abc123"})

        with pytest.raises(DispatchError):
            await pipeline.post_status_update(StatusUpdate(state="success"), build)
        await pipeline.stop()


class TestHashBuild:
    """Test cases for building an explicit commit"""

    @pytest.mark.asyncio
    async def test_hash_build(self, pipeline, gitlab, coordinator, resolver, project):
        gitlab.get_commit.return_value = CommitInfo(
            sha="cafe01",
            html_url="https://gitlab.example.com/acme/widgets/commit/cafe01",
            message="Fix sprocket alignment",
        )

        result = await pipeline.submit_hash_build(project, "cafe01")

        assert result == {"id": "build-1"}
        resolver.resolve_config.assert_awaited_once_with(project, "cafe01")
        build = coordinator.submit_build.await_args.args[0]
        assert build.type == RequestType.HASH
        assert build.name == "Fix sprocket alignment"
        assert build.to_dict()["commit"] == {
            "ref": "cafe01",
            "htmlUrl": "https://gitlab.example.com/acme/widgets/commit/cafe01",
        }

    @pytest.mark.asyncio
    async def test_hash_build_config_error_raises(self, pipeline, gitlab, coordinator, resolver, project):
        gitlab.get_commit.return_value = CommitInfo(sha="cafe01", html_url="http://x", message="Fix")
        resolver.resolve_config.side_effect = NotFoundError()

        with pytest.raises(NotFoundError):
            await pipeline.submit_hash_build(project, "cafe01")

        coordinator.submit_build.assert_not_awaited()
