"""
Async GitLab API client for the GitLab build handler.

Covers the REST calls the pipeline needs: repository files, commits,
commit statuses and merge requests. Each call authenticates as the
project it acts for: the project's delegated OAuth token when it has one,
otherwise the handler's private token.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from .config.settings import SettingsProtocol, settings as default_settings
from .models import CommitInfo, MergeRequestInfo, Project, StatusInfo
from .utils.exceptions import GitLabAPIError
from .utils.logger import get_logger


class AsyncGitLabClient:
    """
    Async client for the GitLab REST API.

    Args:
        settings: Handler settings (module settings when omitted)
        timeout: Request timeout in seconds (settings value when omitted)
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        settings: Optional[SettingsProtocol] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or default_settings
        self.timeout = timeout or self.settings.request_timeout_seconds
        self.transport = transport
        self.limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        self.logger = get_logger("gitlab_client")

        self.logger.info(
            "Async GitLab client initialized",
            extra={"gitlab_url": self.settings.gitlab_url, "timeout": self.timeout},
        )

    @asynccontextmanager
    async def get_client(self):
        """Async context manager for HTTP client."""
        async with httpx.AsyncClient(
            timeout=self.timeout,
            limits=self.limits,
            transport=self.transport,
        ) as client:
            yield client

    def base_url_for(self, project: Optional[Project]) -> str:
        """GitLab web URL for a project, honouring a per-project provider URL."""
        return gitlab_base_url(project, self.settings.gitlab_url)

    def api_url_for(self, project: Optional[Project]) -> str:
        return f"{self.base_url_for(project)}/api/v4"

    def headers_for(self, project: Optional[Project]) -> Dict[str, str]:
        """
        Authentication headers for calls made on behalf of a project.

        A delegated OAuth token is sent as a bearer token; without one the
        handler's private token is used.
        """
        if project is not None and project.service_auth and project.service_auth.token:
            return {"Authorization": f"Bearer {project.service_auth.token}"}
        return {"PRIVATE-TOKEN": self.settings.gitlab_token}

    async def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        action: str,
        **kwargs: Any,
    ) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            GitLabAPIError: On an HTTP error status or transport failure
        """
        try:
            self.logger.debug(f"{method} {url}")
            async with self.get_client() as client:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                return response.json() if response.content else None

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            response_body = _response_body(e.response)
            error_msg = f"Failed to {action}: HTTP {status_code}"
            self.logger.error(
                error_msg,
                extra={
                    "url": url,
                    "error_type": type(e).__name__,
                    "status_code": status_code,
                    "response_body": response_body,
                },
            )
            raise GitLabAPIError(
                error_msg,
                status_code=status_code,
                response_body=response_body,
                endpoint=url,
            )
        except httpx.RequestError as e:
            error_msg = f"Failed to {action}: {str(e)}"
            self.logger.error(
                error_msg,
                extra={"url": url, "error_type": type(e).__name__},
            )
            raise GitLabAPIError(error_msg, endpoint=url)

    async def get_file(self, project: Project, path: str, ref: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a repository file at a commit.

        Returns:
            GitLab's file resource, with base64 ``content`` and ``file_path``

        Raises:
            GitLabAPIError: If the request fails (``is_not_found`` for 404)
        """
        url = (
            f"{self.api_url_for(project)}/projects/{project.provider_id}"
            f"/repository/files/{quote(path, safe='')}"
        )
        return await self._request(
            "GET", url, self.headers_for(project), f"fetch file {path}", params={"ref": ref}
        )

    async def get_commit(self, project: Project, sha: str) -> CommitInfo:
        """
        Fetch commit metadata.

        Raises:
            GitLabAPIError: If the request fails
        """
        url = f"{self.api_url_for(project)}/projects/{project.provider_id}/repository/commits/{sha}"
        data = await self._request("GET", url, self.headers_for(project), f"fetch commit {sha}") or {}

        commit = CommitInfo(
            sha=sha,
            html_url=data.get("web_url") or f"{self.base_url_for(project)}/{project.slug}/commit/{sha}",
            message=data.get("title"),
        )
        self.logger.info("Fetched commit info", extra={"slug": project.slug, "sha": sha})
        return commit

    async def post_status(self, project: Project, sha: str, status: StatusInfo) -> Any:
        """
        Post a commit status.

        The body carries the status fields plus ``user``, ``repo`` and ``sha``.

        Raises:
            GitLabAPIError: If GitLab rejects the status
        """
        url = f"{self.api_url_for(project)}/projects/{project.provider_id}/statuses/{sha}"
        body = status.to_dict()
        body.update({"user": project.owner, "repo": project.repo, "sha": sha})

        result = await self._request(
            "POST", url, self.headers_for(project), f"post status for {sha}", json=body
        )
        self.logger.info(
            "Posted commit status",
            extra={"slug": project.slug, "sha": sha, "state": status.state, "context": status.context},
        )
        return result

    async def get_merge_request(
        self, provider_id: Any, iid: Any, token: Optional[str] = None
    ) -> MergeRequestInfo:
        """
        Fetch a merge request, authenticating with a caller-supplied token.

        Raises:
            GitLabAPIError: If the request fails
        """
        url = f"{self.api_url_for(None)}/projects/{provider_id}/merge_requests/{iid}"
        headers = {"Authorization": f"Bearer {token}"} if token else self.headers_for(None)
        data = await self._request("GET", url, headers, f"fetch merge request {iid}") or {}
        return MergeRequestInfo.from_gitlab(data)


def gitlab_base_url(project: Optional[Project], default_url: str) -> str:
    """
    GitLab web URL for a project.

    A project hosted on its own GitLab instance carries it as
    ``provider.baseUrl``; every other project uses ``default_url``.
    """
    if project is not None and project.provider and project.provider.base_url:
        return project.provider.base_url.rstrip("/")
    return default_url


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
