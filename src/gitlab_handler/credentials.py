"""
Delegated OAuth credential health checks.

Before acting for a project, the handler makes sure the project's stored
GitLab OAuth token still works, refreshing it when it does not. Refresh is
best effort: on any failure an alert is raised and the stored credential
is used as is.
"""

import asyncio
from typing import Optional

import requests

from .alerts import Alert, AlertNotifier, AlertSeverity
from .config.settings import SettingsProtocol, settings as default_settings
from .coordinator_client import CoordinatorClient
from .gitlab_client import gitlab_base_url
from .models import Project, ServiceAuth
from .utils.exceptions import CredentialRefreshError, HandlerError
from .utils.logger import get_logger

logger = get_logger(__name__)

MAX_TOKEN_CHECKS = 5


class CredentialManager:
    """
    Verifies and refreshes a project's delegated GitLab token.

    Args:
        coordinator: Client used to store refreshed tokens
        notifier: Alert notifier for refresh failures
        settings: Handler settings
        max_checks: Token checks before falling back to a refresh
    """

    def __init__(
        self,
        coordinator: CoordinatorClient,
        notifier: AlertNotifier,
        settings: Optional[SettingsProtocol] = None,
        max_checks: int = MAX_TOKEN_CHECKS,
    ):
        self.coordinator = coordinator
        self.notifier = notifier
        self.settings = settings or default_settings
        self.max_checks = max_checks

    def base_url_for(self, project: Project) -> str:
        return gitlab_base_url(project, self.settings.gitlab_url)

    async def ensure_usable_token(self, project: Project) -> Optional[ServiceAuth]:
        """
        Return credentials that work for ``project``.

        Never raises. Projects without a stored credential are returned
        as they are.
        """
        auth = project.service_auth
        if auth is None or not auth.token:
            return auth

        if await asyncio.to_thread(self._token_works, project, auth.token):
            return auth

        logger.info(
            "Stored GitLab token rejected, refreshing",
            extra={"slug": project.slug, "attempts": self.max_checks},
        )

        try:
            refreshed = await asyncio.to_thread(self._refresh, project, auth)
            await self.coordinator.update_tokens(
                project.organization_id, refreshed.token, refreshed.refresh_token
            )
        except HandlerError as e:
            await self._alert(project, e)
            return auth

        logger.info("Refreshed GitLab token", extra={"slug": project.slug})
        return refreshed

    def _token_works(self, project: Project, token: str) -> bool:
        """Blocking: stop at the first 200 from an authenticated endpoint."""
        url = f"{self.base_url_for(project)}/api/v4/projects"
        headers = {"Authorization": f"Bearer {token}"}

        for attempt in range(1, self.max_checks + 1):
            try:
                response = requests.get(
                    url, headers=headers, timeout=self.settings.request_timeout_seconds
                )
                status_code = response.status_code
            except requests.RequestException as e:
                logger.debug(
                    f"Token check {attempt} failed: {e}",
                    extra={"error_type": type(e).__name__},
                )
                continue

            logger.debug(f"Token check {attempt}", extra={"status_code": status_code})
            if status_code == 200:
                return True

        return False

    def _refresh(self, project: Project, auth: ServiceAuth) -> ServiceAuth:
        """
        Blocking: exchange the refresh token for a new token pair.

        Raises:
            CredentialRefreshError: If GitLab refuses or answers malformed data
        """
        if not auth.refresh_token:
            raise CredentialRefreshError("Project has no refresh token", project_id=_project_id(project))

        data = {
            "client_id": self.settings.oauth_client_id,
            "refresh_token": auth.refresh_token,
            "grant_type": "refresh_token",
            "redirect_uri": self.settings.oauth_redirect_uri,
        }
        if self.settings.oauth_client_secret:
            data["client_secret"] = self.settings.oauth_client_secret

        try:
            response = requests.post(
                f"{self.base_url_for(project)}/oauth/token",
                data=data,
                timeout=self.settings.request_timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise CredentialRefreshError(
                f"Token refresh request failed: {e}",
                project_id=_project_id(project),
                attempts=self.max_checks,
            ) from e
        except ValueError as e:
            raise CredentialRefreshError(
                f"Token refresh returned invalid JSON: {e}", project_id=_project_id(project)
            ) from e

        token = body.get("access_token") if isinstance(body, dict) else None
        refresh_token = body.get("refresh_token") if isinstance(body, dict) else None
        if not token or not refresh_token:
            raise CredentialRefreshError(
                "Token refresh response is missing tokens", project_id=_project_id(project)
            )

        return ServiceAuth(token=token, refresh_token=refresh_token)

    async def _alert(self, project: Project, error: HandlerError) -> None:
        logger.error(
            "GitLab token refresh failed, using stored token",
            extra={"slug": project.slug, "error_code": error.error_code, "error_message": error.message},
        )
        await self.notifier.send(
            Alert(
                subject="GitLab Access Token Refresh",
                message="The access token could not be successfully refreshed.",
                severity=AlertSeverity.ERROR,
                system="Token Checking",
                details={
                    "project_id": _project_id(project),
                    "slug": project.slug,
                    "organization_id": project.organization_id,
                    "error": error.to_dict(),
                },
            )
        )


def _project_id(project: Project) -> Optional[str]:
    return str(project.id) if project.id is not None else None
