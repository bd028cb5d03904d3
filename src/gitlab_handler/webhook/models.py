"""
Pydantic models for GitLab webhook payloads.

Only the fields the build pipeline reads are required; everything else
GitLab sends is kept as extra data.

GitLab webhook documentation:
https://docs.gitlab.com/ee/user/project/integrations/webhooks.html
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

ZERO_SHA = "0000000000000000000000000000000000000000"


class WebhookEventType(str, Enum):
    """
    GitLab webhook event types.

    These correspond to the X-Gitlab-Event header values.
    """

    MERGE_REQUEST = "Merge Request Hook"
    PUSH = "Push Hook"
    TAG_PUSH = "Tag Push Hook"
    ISSUE = "Issue Hook"
    NOTE = "Note Hook"
    PIPELINE = "Pipeline Hook"


class GitLabUser(BaseModel):
    """
    GitLab user object.

    Represents a user in GitLab webhook payloads.
    """

    id: int | None = Field(None, description="User ID")
    name: str | None = Field(None, description="User display name")
    username: str | None = Field(None, description="User username")

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class GitLabProject(BaseModel):
    """
    GitLab project object.

    Represents a project in GitLab webhook payloads.
    """

    id: int = Field(..., description="Project ID")
    name: str = Field(..., description="Project name")
    web_url: str = Field(..., description="Project web URL")
    namespace: str = Field(..., description="Project namespace")
    path_with_namespace: str = Field(..., description="Full project path with namespace")
    default_branch: str | None = Field(None, description="Default branch name")

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class GitLabMergeRequest(BaseModel):
    """
    GitLab merge request object.

    Represents ``object_attributes`` of a merge request webhook.
    """

    id: int = Field(..., description="MR database ID")
    iid: int = Field(..., description="MR internal ID (project-scoped)")
    title: str = Field(..., description="MR title")
    description: str | None = Field(None, description="MR description")
    state: str = Field(..., description="MR state (opened, closed, locked, merged)")
    action: str | None = Field(None, description="Action that triggered the hook")
    source_branch: str = Field(..., description="Source branch name")
    target_branch: str | None = Field(None, description="Target branch name")
    source_project_id: int | None = Field(None, description="Source project ID")
    target_project_id: int = Field(..., description="Target project ID")
    source: dict[str, Any] | None = Field(None, description="Source project information")
    last_commit: dict[str, Any] | None = Field(None, description="Last commit information")

    @property
    def source_web_url(self) -> str | None:
        """Web URL of the source project, when GitLab included it."""
        if self.source:
            return self.source.get("web_url")
        return None

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class MergeRequestWebhookPayload(BaseModel):
    """
    GitLab merge request webhook payload.
    """

    object_kind: str = Field(..., description="Event type (always 'merge_request')")
    user: GitLabUser | None = Field(None, description="User who triggered the event")
    project: GitLabProject = Field(..., description="Target project")
    object_attributes: GitLabMergeRequest = Field(..., description="Merge request details")

    @field_validator("object_kind")
    @classmethod
    def validate_object_kind(cls, v: str) -> str:
        """Validate that object_kind is 'merge_request'."""
        if v != "merge_request":
            raise ValueError(f"Expected object_kind 'merge_request', got '{v}'")
        return v

    @property
    def mr_iid(self) -> int:
        """Get the merge request IID."""
        return self.object_attributes.iid

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class PushCommit(BaseModel):
    """
    Git commit in a push event.
    """

    id: str = Field(..., description="Commit SHA")
    message: str | None = Field(None, description="Commit message")
    title: str | None = Field(None, description="Commit title (first line)")
    url: str | None = Field(None, description="Commit web URL")

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class PushWebhookPayload(BaseModel):
    """
    GitLab push webhook payload.
    """

    object_kind: str = Field(..., description="Event type (always 'push')")
    before: str | None = Field(None, description="SHA before push")
    after: str = Field(..., description="SHA after push")
    ref: str = Field(..., description="Full ref name (refs/heads/branch)")
    project_id: int | None = Field(None, description="Project ID")
    project: GitLabProject = Field(..., description="Project details")
    commits: list[PushCommit] = Field(default_factory=list, description="List of commits")
    total_commits_count: int | None = Field(None, description="Total number of commits")

    @field_validator("object_kind")
    @classmethod
    def validate_object_kind(cls, v: str) -> str:
        """Validate that object_kind is 'push'."""
        if v != "push":
            raise ValueError(f"Expected object_kind 'push', got '{v}'")
        return v

    @property
    def branch_name(self) -> str:
        """Extract branch name from ref."""
        # refs/heads/main -> main
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return self.ref

    @property
    def is_deleted_branch(self) -> bool:
        """Check if this push deletes a branch."""
        return self.after == ZERO_SHA

    @property
    def head_commit(self) -> PushCommit | None:
        """
        The most recent commit of the push.

        GitLab lists commits oldest first; the entry matching ``after`` wins
        when present.
        """
        for commit in self.commits:
            if commit.id == self.after:
                return commit
        return self.commits[-1] if self.commits else None

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"


class WebhookValidationResult(BaseModel):
    """
    Result of webhook validation.

    Contains validation status and reasons for rejection.
    """

    is_valid: bool = Field(..., description="Whether webhook is valid")
    event_type: WebhookEventType | None = Field(None, description="Validated event type")
    should_process: bool = Field(False, description="Whether event should be processed")
    rejection_reason: str | None = Field(None, description="Reason for rejection if not valid")
    payload: MergeRequestWebhookPayload | PushWebhookPayload | None = Field(
        None, description="Parsed webhook payload"
    )

    class Config:
        """Pydantic configuration."""

        frozen = False
        extra = "allow"
