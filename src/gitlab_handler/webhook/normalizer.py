"""
Event normalization for GitLab webhooks.

Turns validated merge request and push payloads into NormalizedRequest
values and applies the per-event filtering rules. A filtered event is
returned as FilteredEvent; it is never raised.
"""

from typing import Union

from ..models import (
    BranchInfo,
    CommitInfo,
    FilteredEvent,
    NormalizedRequest,
    Project,
    PullRequestInfo,
    RequestType,
)
from ..utils.logger import get_logger
from .models import MergeRequestWebhookPayload, PushWebhookPayload

logger = get_logger(__name__)

BUILD_MARKER = "[build]"
NO_MESSAGE = "no message provided"
SERVICE_NAME = "gitlab"

NormalizationResult = Union[NormalizedRequest, FilteredEvent]


def normalize_merge_request(payload: MergeRequestWebhookPayload) -> NormalizationResult:
    """
    Normalize a merge request webhook.

    Only merge requests in the ``opened`` state produce a build request.

    Args:
        payload: Validated merge request payload

    Returns:
        A ``pull_request`` request, or FilteredEvent
    """
    mr = payload.object_attributes
    project = payload.project

    if mr.state != "opened":
        logger.info(
            f"Merge request {mr.id} ignored in state '{mr.state}'",
            extra={"mr_iid": mr.iid, "state": mr.state},
        )
        return FilteredEvent(reason=f"Merge request state is '{mr.state}'")

    last_commit = mr.last_commit or {}
    sha = last_commit.get("id")
    if not sha:
        logger.warning("Merge request payload has no last commit", extra={"mr_iid": mr.iid})
        return FilteredEvent(reason="Merge request has no last commit")

    source_url = mr.source_web_url or project.web_url

    request = NormalizedRequest(
        type=RequestType.PULL_REQUEST,
        sha=sha,
        commit_url=last_commit.get("url"),
        service=SERVICE_NAME,
        owner=project.namespace,
        repo=project.name,
        repo_id=mr.target_project_id,
        slug=project.path_with_namespace,
        name=mr.title,
        branch=BranchInfo(
            name=mr.source_branch,
            html_url=f"{project.web_url}/tree/{mr.source_branch}",
        ),
        pull_request=PullRequestInfo(
            number=mr.iid,
            id=mr.id,
            name=mr.title,
            description=mr.description,
            html_url=f"{source_url}/merge_requests/{mr.iid}",
        ),
    )

    logger.debug(
        "Normalized merge request",
        extra={"slug": request.slug, "sha": request.sha, "mr_iid": mr.iid},
    )
    return request


def normalize_push(payload: PushWebhookPayload) -> NormalizationResult:
    """
    Normalize a push webhook.

    A push builds only when its most recent commit message contains the
    ``[build]`` marker. Branch deletions never build. A push without
    commits is evaluated against a placeholder message.

    Args:
        payload: Validated push payload

    Returns:
        A ``branch`` request, or FilteredEvent
    """
    branch = payload.branch_name
    project = payload.project

    if payload.is_deleted_branch:
        logger.info("Push is a branch deletion", extra={"branch": branch})
        return FilteredEvent(reason="Push is a branch deletion")

    head = payload.head_commit
    message = (head.message if head and head.message else None) or NO_MESSAGE

    if BUILD_MARKER not in message:
        logger.info(
            f"Push to '{branch}' ignored, no build marker in commit message",
            extra={"branch": branch, "sha": payload.after},
        )
        return FilteredEvent(reason="Commit message has no build marker")

    commit_url = (head.url if head else None) or f"{project.web_url}/commit/{payload.after}"

    request = NormalizedRequest(
        type=RequestType.BRANCH,
        sha=payload.after,
        commit_url=commit_url,
        service=SERVICE_NAME,
        owner=project.namespace,
        repo=project.name,
        repo_id=payload.project_id if payload.project_id is not None else project.id,
        slug=project.path_with_namespace,
        name=(head.title if head and head.title else message.splitlines()[0]),
        message=message,
        branch=BranchInfo(name=branch, html_url=f"{project.web_url}/tree/{branch}"),
    )

    logger.debug("Normalized push", extra={"slug": request.slug, "sha": request.sha, "branch": branch})
    return request


def build_hash_request(project: Project, sha: str, commit: CommitInfo) -> NormalizedRequest:
    """
    Build a ``hash`` request for an explicit commit.

    The build is named after the commit title.
    """
    return NormalizedRequest(
        type=RequestType.HASH,
        sha=sha,
        commit_url=commit.html_url,
        service=project.service or SERVICE_NAME,
        owner=project.owner,
        repo=project.repo,
        repo_id=project.provider_id,
        slug=project.slug,
        name=commit.message,
    )
