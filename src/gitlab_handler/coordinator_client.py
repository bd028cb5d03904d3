"""
Async client for the build coordinator API.

The coordinator owns projects and builds. The handler looks projects up
by repository, submits builds and stores refreshed OAuth tokens.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx

from .config.settings import SettingsProtocol, settings as default_settings
from .models import Build, Project
from .utils.exceptions import CoordinatorAPIError, ProjectNotFoundError
from .utils.logger import get_logger


class CoordinatorClient:
    """
    Async client for the coordinator REST API.

    Every call authenticates with the configured coordinator bearer token.
    """

    def __init__(
        self,
        settings: Optional[SettingsProtocol] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or default_settings
        self.base_url = self.settings.coordinator_api_url
        self.timeout = timeout or self.settings.request_timeout_seconds
        self.transport = transport
        self.logger = get_logger("coordinator_client")

    @asynccontextmanager
    async def get_client(self):
        """Async context manager for HTTP client."""
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.settings.get_coordinator_headers(),
            transport=self.transport,
        ) as client:
            yield client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with self.get_client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json() if response.content else None

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            try:
                body = e.response.json()
            except ValueError:
                body = e.response.text
            error_msg = f"Coordinator request {method} {path} failed: HTTP {status_code}"
            self.logger.error(
                error_msg,
                extra={"status_code": status_code, "response_body": body},
            )
            raise CoordinatorAPIError(
                error_msg, status_code=status_code, response_body=body, endpoint=path
            )
        except httpx.RequestError as e:
            error_msg = f"Coordinator request {method} {path} failed: {str(e)}"
            self.logger.error(error_msg, extra={"error_type": type(e).__name__})
            raise CoordinatorAPIError(error_msg, endpoint=path)

    async def find_project(self, service: str, slug: str) -> Project:
        """
        Look up the project for a repository.

        Raises:
            ProjectNotFoundError: If the coordinator knows no such project
            CoordinatorAPIError: If the lookup fails
        """
        try:
            data = await self._request(
                "GET", "/projects", params={"service": service, "slug": slug, "single": "true"}
            )
        except CoordinatorAPIError as e:
            if e.status_code == 404:
                raise ProjectNotFoundError(
                    f"No project for {service} repository {slug}", service=service, slug=slug
                )
            raise

        if not data:
            raise ProjectNotFoundError(
                f"No project for {service} repository {slug}", service=service, slug=slug
            )

        return Project.model_validate(data)

    async def submit_build(self, build: Build, project: Project) -> Dict[str, Any]:
        """
        Submit a build for a project.

        Returns:
            The build as stored by the coordinator
        """
        body = {"build": build.to_dict(), "project": project.to_coordinator_dict()}
        result = await self._request("POST", "/startbuild", json=body)
        self.logger.info("Submitted build", extra={"slug": project.slug, "sha": build.ref})
        return result or {}

    async def update_tokens(self, organization_id: Optional[str], token: str, refresh_token: str) -> Any:
        """Store a refreshed OAuth token pair for an organization."""
        self.logger.info("Updating GitLab tokens", extra={"oid": organization_id})
        return await self._request(
            "POST",
            "/projects/tokens",
            json={"oid": organization_id, "token": token, "refreshToken": refresh_token},
        )
