"""
App server for the GitLab build handler.

FastAPI application exposing:
- the GitLab webhook endpoint
- build status callbacks from the coordinator
- build-by-commit and merge request lookup endpoints
- a health check
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config.settings import SettingsProtocol, settings as default_settings
from .models import HashBuildRequest, PipelineOutcome, PipelineStatus, StatusCallback
from .pipeline import BuildPipeline
from .utils.exceptions import (
    DispatchError,
    GitLabAPIError,
    HandlerError,
    InvalidStatusError,
)
from .utils.logger import get_logger
from .webhook.handlers import WebhookHandler, WebhookParsingError
from .webhook.models import WebhookValidationResult
from .webhook.validators import WebhookConfig, WebhookValidationError


@dataclass
class ServerConfig:
    """Main server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    webhook_path: str = "/glh"


def _error_response(status_code: int, error: HandlerError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error.message, "error_code": error.error_code, "details": error.details},
    )


class AppServer:
    """
    Application server wiring HTTP routes to the build pipeline.

    Args:
        config: Server configuration
        settings_instance: Application settings
        pipeline: Build pipeline (built from settings when omitted)
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        settings_instance: Optional[SettingsProtocol] = None,
        pipeline: Optional[BuildPipeline] = None,
    ):
        self.logger = get_logger("app_server")
        self.settings = settings_instance or default_settings
        self.config = config or ServerConfig(webhook_path=self.settings.webhook_path)
        self.pipeline = pipeline or BuildPipeline(self.settings)
        self.webhook_handler = WebhookHandler(WebhookConfig.from_settings(self.settings))

        self.startup_time = datetime.now(timezone.utc)
        self.stats = {
            "webhooks_received": 0,
            "builds_submitted": 0,
            "events_filtered": 0,
            "status_updates": 0,
        }

        self._setup_app()

        self.logger.info(
            "Application server initialized",
            extra={
                "host": self.config.host,
                "port": self.config.port,
                "webhook_path": self.config.webhook_path,
            },
        )

    def _setup_app(self) -> None:
        """Setup FastAPI application with all endpoints and middleware."""
        self.app = FastAPI(
            title="GitLab Build Handler",
            description="Bridges GitLab webhooks and the build coordinator",
            version=__version__,
            lifespan=self._lifespan,
        )

        self.app.middleware("http")(self._log_requests)

        self._setup_status_endpoints()
        self._setup_webhook_endpoints()
        self._setup_build_endpoints()
        self._setup_pull_request_endpoints()

    @asynccontextmanager
    async def _lifespan(self, app):
        """Manage application lifecycle."""
        try:
            self.logger.info("Application server starting up")
            await self.pipeline.start()
            yield
        finally:
            self.logger.info("Application server shutting down")
            await self.pipeline.stop()

    async def _log_requests(self, request: Request, call_next):
        """Log incoming requests with timing."""
        start_time = datetime.now(timezone.utc)

        response = await call_next(request)

        duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000

        self.logger.info(
            f"HTTP {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.client.host if request.client else "unknown",
            },
        )

        return response

    def _setup_status_endpoints(self) -> None:
        """Setup server status endpoints."""

        @self.app.get("/health")
        async def health_check():
            """Basic health check for load balancers."""
            return {
                "status": "ok",
                "version": __version__,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": (datetime.now(timezone.utc) - self.startup_time).total_seconds(),
                "queue_pending": self.pipeline.queue.pending,
                "stats": self.stats,
            }

    def _setup_webhook_endpoints(self) -> None:
        """Setup the GitLab webhook endpoint."""

        @self.app.post(self.config.webhook_path)
        async def gitlab_webhook(request: Request, background_tasks: BackgroundTasks):
            """
            Acknowledge a GitLab webhook and process it in the background.

            Every accepted, filtered or unsupported event answers 200.
            """
            if not self.settings.webhook_enabled:
                return {"ok": True, "message": "Webhooks are disabled"}

            body = await request.body()
            try:
                result = await self.webhook_handler.handle_request(body, dict(request.headers))
            except WebhookValidationError as e:
                self.logger.warning(
                    "Invalid webhook signature",
                    extra={"remote_addr": request.client.host if request.client else "unknown"},
                )
                return _error_response(401, e)
            except WebhookParsingError as e:
                return _error_response(400, e)

            self.stats["webhooks_received"] += 1

            if result.should_process:
                background_tasks.add_task(self._process_webhook, result)
            else:
                self.stats["events_filtered"] += 1

            return {"ok": True}

    async def _process_webhook(self, result: WebhookValidationResult) -> Optional[PipelineOutcome]:
        """Run the pipeline for an acknowledged webhook; failures end up in the log."""
        try:
            outcome = await self.pipeline.handle_webhook(result)
        except Exception as e:
            self.logger.error(
                "Webhook processing failed",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
            return None

        if outcome.submitted:
            self.stats["builds_submitted"] += 1
        elif outcome.status == PipelineStatus.FILTERED:
            self.stats["events_filtered"] += 1

        self.logger.info(
            "Webhook processed",
            extra={"outcome": outcome.status.value, "reason": outcome.reason},
        )
        return outcome

    def _setup_build_endpoints(self) -> None:
        """Setup build status and build-by-commit endpoints."""

        async def relay_status(payload: StatusCallback, context: Optional[str] = None):
            try:
                status = await self.pipeline.post_status_update(
                    payload.update, payload.build, context=context
                )
            except InvalidStatusError as e:
                return _error_response(400, e)
            except DispatchError as e:
                self.logger.error(
                    "An error occurred posting status to GitLab",
                    extra={"build_id": payload.build.id, "error_message": e.message},
                )
                return _error_response(500, e)

            self.stats["status_updates"] += 1
            return status.to_dict()

        @self.app.post("/builds/{bid}/status/{context:path}")
        async def build_status(bid: str, context: str, payload: StatusCallback):
            """Relay a build status; the URL context wins over the body's."""
            return await relay_status(payload, context=context)

        @self.app.post("/update")
        async def update_status(payload: StatusCallback):
            """Relay a build status."""
            return await relay_status(payload)

        @self.app.post("/builds/hash")
        async def hash_build(payload: HashBuildRequest):
            """Submit a build for an explicit commit."""
            try:
                build = await self.pipeline.submit_hash_build(payload.project, payload.sha)
            except HandlerError as e:
                self.logger.error(
                    "Problem processing build for commit hash",
                    extra={"sha": payload.sha, "error_code": e.error_code},
                )
                return _error_response(500, e)

            self.stats["builds_submitted"] += 1
            return build

    def _setup_pull_request_endpoints(self) -> None:
        """Setup merge request lookup endpoint."""

        @self.app.get("/pull-request/{owner}/{repo}/{pull_request_number}")
        async def get_pull_request(
            owner: str,
            repo: str,
            pull_request_number: str,
            provider_id: str,
            token: Optional[str] = None,
        ):
            """Return normalized merge request details."""
            try:
                info = await self.pipeline.get_merge_request(provider_id, pull_request_number, token)
            except GitLabAPIError as e:
                content: Any = e.response_body if e.response_body is not None else e.to_dict()
                return JSONResponse(status_code=500, content=content)
            return info.to_dict()

    async def start_server(self) -> None:
        """Start application server."""
        config = uvicorn.Config(
            app=self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        self.server = uvicorn.Server(config)

        self.logger.info(
            "Starting application server",
            extra={"host": self.config.host, "port": self.config.port},
        )
        await self.server.serve()

    def run(self) -> None:
        """Run application server synchronously."""
        try:
            uvicorn.run(
                app=self.app,
                host=self.config.host,
                port=self.config.port,
                log_level=self.config.log_level,
            )
        except KeyboardInterrupt:
            self.logger.info("Application server stopped by user")

    def get_app(self) -> FastAPI:
        """Get the FastAPI application instance."""
        return self.app


def create_server_from_settings(settings_instance: Optional[SettingsProtocol] = None) -> AppServer:
    """Create application server from settings."""
    current = settings_instance or default_settings
    server_config = ServerConfig(
        host=current.server_host,
        port=current.server_port,
        log_level=current.log_level.lower(),
        webhook_path=current.webhook_path,
    )
    return AppServer(config=server_config, settings_instance=current)


def create_app(settings_instance: Optional[SettingsProtocol] = None) -> FastAPI:
    """ASGI factory, e.g. ``uvicorn gitlab_handler.app_server:create_app --factory``."""
    return create_server_from_settings(settings_instance).get_app()
