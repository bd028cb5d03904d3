"""
Domain models for the GitLab build handler.

Coordinator-owned and HTTP-facing objects are pydantic models so that
unknown fields survive a round trip. Values produced inside the pipeline
(normalized requests, builds, status info, outcomes) are dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class RequestType(str, Enum):
    """Kind of build a normalized request describes."""

    PULL_REQUEST = "pull_request"
    BRANCH = "branch"
    HASH = "hash"


class ServiceAuth(BaseModel):
    """Delegated OAuth credential stored on a project."""

    token: Optional[str] = Field(None, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, alias="refreshToken", description="OAuth refresh token")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        extra = "allow"


class ProviderInfo(BaseModel):
    """Provider connection details attached to a project."""

    base_url: Optional[str] = Field(None, alias="baseUrl", description="Provider base URL")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        extra = "allow"


class Project(BaseModel):
    """
    A project as stored by the build coordinator.

    Fields the handler does not use are kept and forwarded untouched.
    Only ``service_auth`` is ever replaced, by the credential manager.
    """

    id: Optional[Union[str, int]] = Field(None, description="Coordinator project ID")
    provider_id: Optional[Union[str, int]] = Field(None, description="GitLab project ID")
    slug: Optional[str] = Field(None, description="Repository path with namespace")
    owner: Optional[str] = Field(None, description="Repository namespace")
    repo: Optional[str] = Field(None, description="Repository name")
    service: Optional[str] = Field(None, description="Provider service name")
    service_auth: Optional[ServiceAuth] = Field(None, description="Delegated OAuth credential")
    provider: Optional[ProviderInfo] = Field(None, description="Provider connection details")
    organization_id: Optional[str] = Field(None, alias="organizationId", description="Owning organization")

    def to_coordinator_dict(self) -> dict[str, Any]:
        """Serialize with the coordinator's key names."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        extra = "allow"


class StatusUpdate(BaseModel):
    """Build status update as reported by the build system."""

    state: Optional[str] = Field(None, description="Build system state")
    description: Optional[str] = Field(None, description="Human readable status text")
    context: Optional[str] = Field(None, description="Status context key")
    target_url: Optional[str] = Field(None, description="Link shown next to the status")

    class Config:
        """Pydantic configuration."""

        extra = "allow"


class BuildCommit(BaseModel):
    """Commit reference carried by a coordinator build."""

    ref: str = Field(..., description="Commit SHA")

    class Config:
        """Pydantic configuration."""

        extra = "allow"


class BuildRef(BaseModel):
    """The subset of a coordinator build needed to post a status."""

    id: Optional[Union[str, int]] = Field(None, description="Build ID")
    project: Project = Field(..., description="Embedded project")
    commit: BuildCommit = Field(..., description="Built commit")

    class Config:
        """Pydantic configuration."""

        extra = "allow"


class StatusCallback(BaseModel):
    """Body of the status update routes."""

    update: StatusUpdate
    build: BuildRef


class HashBuildRequest(BaseModel):
    """Body of the build-by-commit route."""

    project: Project
    sha: str


@dataclass
class BranchInfo:
    name: str
    html_url: str


@dataclass
class PullRequestInfo:
    number: int
    id: int
    name: str
    description: Optional[str]
    html_url: str


@dataclass
class NormalizedRequest:
    """
    Uniform build request derived from a webhook or an API call.

    ``sha`` is always a non-empty commit identifier. ``branch`` and
    ``pull_request`` are filled according to ``type``.
    """

    type: RequestType
    sha: str
    commit_url: Optional[str]
    service: str = "gitlab"
    owner: Optional[str] = None
    repo: Optional[str] = None
    repo_id: Optional[Union[str, int]] = None
    slug: Optional[str] = None
    name: Optional[str] = None
    message: Optional[str] = None
    branch: Optional[BranchInfo] = None
    pull_request: Optional[PullRequestInfo] = None

    def __post_init__(self):
        if not self.sha:
            raise ValueError("NormalizedRequest.sha must be a non-empty commit identifier")


@dataclass
class FilteredEvent:
    """An event dropped by filtering. A terminal skip, never an error."""

    reason: str


@dataclass(frozen=True)
class Build:
    """Build request submitted to the coordinator."""

    ref: str
    html_url: Optional[str]
    name: Optional[str]
    type: RequestType
    config: Any
    branch: Optional[BranchInfo] = None
    pull_request: Optional[PullRequestInfo] = None

    @classmethod
    def from_request(cls, request: NormalizedRequest, config: Any) -> "Build":
        """Build the coordinator request for a normalized request and its config."""
        return cls(
            ref=request.sha,
            html_url=request.commit_url,
            name=request.name,
            type=request.type,
            config=config,
            branch=request.branch,
            pull_request=request.pull_request,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the coordinator's camelCase representation."""
        data: dict[str, Any] = {
            "commit": {"ref": self.ref, "htmlUrl": self.html_url},
            "name": self.name,
            "type": self.type.value,
            "config": self.config,
        }
        if self.pull_request is not None:
            data["pullRequest"] = {
                "number": str(self.pull_request.number),
                "name": self.pull_request.name,
                "description": self.pull_request.description,
                "htmlUrl": self.pull_request.html_url,
            }
        if self.branch is not None:
            data["branch"] = {"name": self.branch.name, "htmlUrl": self.branch.html_url}
        return data


@dataclass
class StatusInfo:
    """A status ready for dispatch to GitLab."""

    state: str
    description: str
    context: Optional[str]
    target_url: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "description": self.description,
            "context": self.context,
            "target_url": self.target_url,
        }


@dataclass
class CommitInfo:
    """Commit metadata used to name a build-by-commit request."""

    sha: str
    html_url: str
    message: Optional[str]


@dataclass
class MergeRequestInfo:
    """Normalized merge request details returned to API callers."""

    id: int
    number: int
    state: str
    url: Optional[str]
    title: Optional[str]
    user_name: Optional[str]
    user_id: Optional[int]

    @classmethod
    def from_gitlab(cls, data: dict[str, Any]) -> "MergeRequestInfo":
        """Map a GitLab merge request resource. ``opened`` and ``locked`` count as open."""
        author = data.get("author") or {}
        return cls(
            id=data.get("id"),
            number=data.get("id"),
            state="open" if data.get("state") in ("opened", "locked") else "closed",
            url=data.get("web_url"),
            title=data.get("title"),
            user_name=author.get("username"),
            user_id=author.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "state": self.state,
            "url": self.url,
            "title": self.title,
            "userName": self.user_name,
            "userId": self.user_id,
        }


class PipelineStatus(str, Enum):
    """Terminal state of one pass through the pipeline."""

    FILTERED = "filtered"
    PROJECT_NOT_FOUND = "project_not_found"
    CONFIG_ERROR = "config_error"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"


@dataclass
class PipelineOutcome:
    """What happened to an event or build request."""

    status: PipelineStatus
    request: Optional[NormalizedRequest] = None
    build: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    error: Optional[Exception] = field(default=None, repr=False)

    @property
    def submitted(self) -> bool:
        return self.status == PipelineStatus.SUBMITTED
