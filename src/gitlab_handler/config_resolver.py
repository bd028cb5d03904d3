"""
Build configuration resolution.

The build config lives in the repository as ``.probo.yml`` or, failing
that, ``.probo.yaml``. The short name is tried first so the common case
costs a single GitLab call.
"""

import base64
import binascii
from typing import Any, Optional, Sequence

import yaml

from .gitlab_client import AsyncGitLabClient
from .models import Project
from .utils.exceptions import GitLabAPIError, NotFoundError, ParseError, UpstreamError
from .utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_PATHS = (".probo.yml", ".probo.yaml")


class ConfigResolver:
    """
    Resolves the build configuration for a commit.

    Args:
        gitlab: GitLab client used to read repository files
        paths: Candidate file paths, tried in order
    """

    def __init__(self, gitlab: AsyncGitLabClient, paths: Sequence[str] = CONFIG_PATHS):
        self.gitlab = gitlab
        self.paths = tuple(paths)

    async def resolve_config(self, project: Project, sha: str) -> Any:
        """
        Resolve and parse the build config at ``sha``.

        A missing file, or one whose YAML loads to nothing, falls through
        to the next path. ``{}`` and ``[]`` are configs. Any other
        failure stops resolution at the path where it happened.

        Raises:
            NotFoundError: If no path yields a config
            ParseError: If a file cannot be decoded or parsed
            UpstreamError: If GitLab fails for a reason other than 404
        """
        for path in self.paths:
            config = await self._fetch(project, path, sha)
            if config is not None:
                logger.info(
                    f"Resolved build config from {path}",
                    extra={"slug": project.slug, "sha": sha, "path": path},
                )
                return config

            logger.debug(f"No build config at {path}", extra={"slug": project.slug, "sha": sha})

        raise NotFoundError(paths=list(self.paths))

    async def _fetch(self, project: Project, path: str, sha: str) -> Optional[Any]:
        try:
            file = await self.gitlab.get_file(project, path, sha)
        except GitLabAPIError as e:
            if e.is_not_found:
                return None
            raise UpstreamError(
                f"Failed to fetch {path}: {e.description}",
                path=path,
                status_code=e.status_code,
            ) from e

        if not file:
            return None

        return parse_config_file(file, path)


def parse_config_file(file: dict, requested_path: str) -> Any:
    """
    Decode and parse a GitLab file resource.

    Raises:
        ParseError: ``Failed to parse <path>: <parser message>``
    """
    path = file.get("file_path") or requested_path
    content = file.get("content")
    if content is None:
        raise ParseError(path, "file has no content")

    try:
        text = base64.b64decode(content).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise ParseError(path, str(e)) from e

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(path, str(e)) from e
