"""
Pipeline orchestration for the GitLab build handler.

Wires the normalizer, credential manager, config resolver, coordinator
and status queue together:

    webhook -> normalize -> find project -> check token -> resolve config
            -> submit build

and, later, status callback -> map -> queue -> GitLab.
"""

from typing import Any, Dict, Optional

from .alerts import AlertNotifier
from .config.settings import SettingsProtocol, settings as default_settings
from .config_resolver import ConfigResolver
from .coordinator_client import CoordinatorClient
from .credentials import CredentialManager
from .gitlab_client import AsyncGitLabClient
from .models import (
    Build,
    BuildRef,
    FilteredEvent,
    MergeRequestInfo,
    NormalizedRequest,
    PipelineOutcome,
    PipelineStatus,
    Project,
    StatusInfo,
    StatusUpdate,
)
from .status_queue import StatusDispatchQueue, build_status_info
from .utils.exceptions import (
    ConfigResolutionError,
    CoordinatorAPIError,
    DispatchError,
    ProjectNotFoundError,
)
from .utils.logger import get_logger
from .webhook.models import (
    MergeRequestWebhookPayload,
    PushWebhookPayload,
    WebhookValidationResult,
)
from .webhook.normalizer import build_hash_request, normalize_merge_request, normalize_push

logger = get_logger(__name__)


class BuildPipeline:
    """
    Composes the handler's components. Every collaborator is injectable;
    missing ones are built from settings.
    """

    def __init__(
        self,
        settings: Optional[SettingsProtocol] = None,
        gitlab: Optional[AsyncGitLabClient] = None,
        coordinator: Optional[CoordinatorClient] = None,
        credentials: Optional[CredentialManager] = None,
        resolver: Optional[ConfigResolver] = None,
        queue: Optional[StatusDispatchQueue] = None,
        notifier: Optional[AlertNotifier] = None,
    ):
        self.settings = settings or default_settings
        self.gitlab = gitlab or AsyncGitLabClient(self.settings)
        self.coordinator = coordinator or CoordinatorClient(self.settings)
        self.notifier = notifier or AlertNotifier(self.settings)
        self.credentials = credentials or CredentialManager(
            self.coordinator, self.notifier, self.settings
        )
        self.resolver = resolver or ConfigResolver(self.gitlab)
        self.queue = queue or StatusDispatchQueue(self.gitlab)

    async def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    async def handle_webhook(self, result: WebhookValidationResult) -> PipelineOutcome:
        """Normalize a validated webhook and process it."""
        payload = result.payload
        if isinstance(payload, MergeRequestWebhookPayload):
            normalized = normalize_merge_request(payload)
        elif isinstance(payload, PushWebhookPayload):
            normalized = normalize_push(payload)
        else:
            return PipelineOutcome(
                status=PipelineStatus.FILTERED,
                reason=result.rejection_reason or "Unsupported event",
            )

        if isinstance(normalized, FilteredEvent):
            return PipelineOutcome(status=PipelineStatus.FILTERED, reason=normalized.reason)

        return await self.process_request(normalized)

    async def process_request(self, request: NormalizedRequest) -> PipelineOutcome:
        """
        Take a normalized request through to a submitted build.

        Config failures are reported as an ``error`` commit status instead
        of being raised. A project lookup miss stops processing quietly.
        """
        logger.info(
            "Processing build request",
            extra={"type": request.type.value, "slug": request.slug, "sha": request.sha},
        )

        try:
            project = await self.coordinator.find_project(request.service, request.slug)
        except (ProjectNotFoundError, CoordinatorAPIError) as e:
            logger.info(
                f"Project for gitlab project {request.slug} not found",
                extra={"slug": request.slug, "error_message": e.message},
            )
            return PipelineOutcome(
                status=PipelineStatus.PROJECT_NOT_FOUND, request=request, reason=e.message, error=e
            )

        if project.service_auth is not None:
            project.service_auth = await self.credentials.ensure_usable_token(project)

        try:
            config = await self.resolver.resolve_config(project, request.sha)
        except ConfigResolutionError as e:
            logger.error(
                "Problem fetching build config",
                extra={"slug": project.slug, "sha": request.sha, "error_code": e.error_code},
            )
            await self._report_config_error(project, request.sha, e)
            return PipelineOutcome(
                status=PipelineStatus.CONFIG_ERROR, request=request, reason=e.message, error=e
            )

        build = Build.from_request(request, config)
        try:
            submitted = await self.coordinator.submit_build(build, project)
        except CoordinatorAPIError as e:
            logger.error(
                "Problem submitting build",
                extra={"slug": project.slug, "sha": request.sha, "error_message": e.message},
            )
            return PipelineOutcome(
                status=PipelineStatus.SUBMIT_FAILED, request=request, reason=e.message, error=e
            )

        return PipelineOutcome(status=PipelineStatus.SUBMITTED, request=request, build=submitted)

    async def _report_config_error(
        self, project: Project, sha: str, error: ConfigResolutionError
    ) -> None:
        update = StatusUpdate(
            state="error",
            description=error.message,
            context=self.settings.config_error_context,
        )
        try:
            await self.queue.enqueue_status(project, sha, build_status_info(update))
        except DispatchError as e:
            logger.error(
                "An error occurred posting config error status to GitLab",
                extra={"slug": project.slug, "sha": sha, "error_message": e.message},
            )

    async def post_status_update(
        self, update: StatusUpdate, build: BuildRef, context: Optional[str] = None
    ) -> StatusInfo:
        """
        Relay a build status to GitLab through the dispatch queue.

        ``context`` overrides the update's own context.

        Raises:
            InvalidStatusError: Before queueing, for an unmapped state
            DispatchError: If GitLab rejects the status
        """
        if context:
            update = update.model_copy(update={"context": context})

        status = build_status_info(update)
        logger.info(
            "Got build status update",
            extra={"build_id": build.id, "state": update.state, "context": status.context},
        )

        await self.queue.enqueue_status(build.project, build.commit.ref, status)
        logger.info(
            "Posted status to GitLab",
            extra={"slug": build.project.slug, "sha": build.commit.ref, "state": status.state},
        )
        return status

    async def submit_hash_build(self, project: Project, sha: str) -> Dict[str, Any]:
        """
        Build an explicit commit, named after its title.

        Raises:
            GitLabAPIError: If the commit cannot be read
            ConfigResolutionError: If the config cannot be resolved
            CoordinatorAPIError: If submission fails
        """
        logger.info(
            "Processing build for commit hash",
            extra={"owner": project.owner, "repo": project.repo, "sha": sha},
        )
        commit = await self.gitlab.get_commit(project, sha)
        config = await self.resolver.resolve_config(project, sha)
        request = build_hash_request(project, sha, commit)
        return await self.coordinator.submit_build(Build.from_request(request, config), project)

    async def get_merge_request(
        self, provider_id: Any, number: Any, token: Optional[str]
    ) -> MergeRequestInfo:
        return await self.gitlab.get_merge_request(provider_id, number, token)
