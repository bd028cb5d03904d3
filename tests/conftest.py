"""
Configuration for pytest test suite
"""
import base64
import os

# Set test environment variables BEFORE importing anything from the package
os.environ.update({
    "GITLAB_URL": "https://gitlab.example.com",
    "GITLAB_TOKEN": "test_token",
    "COORDINATOR_API_URL": "http://coordinator.example.com",
    "COORDINATOR_API_TOKEN": "coordinator_token",
    "GITLAB_CLIENT_ID": "client_id",
    "GITLAB_REDIRECT_URI": "https://handler.example.com/callback",
    "LOG_FORMAT": "text",
})
os.environ.pop("GITLAB_WEBHOOK_SECRET", None)
os.environ.pop("ALERT_WEBHOOK_URL", None)
os.environ.pop("CONFIG_ERROR_CONTEXT", None)

import pytest

from gitlab_handler.config.settings import Settings
from gitlab_handler.models import Project, ServiceAuth


def encode_file(text: str, file_path: str = ".probo.yml") -> dict:
    """GitLab repository file resource for ``text``."""
    return {
        "file_path": file_path,
        "encoding": "base64",
        "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
    }


@pytest.fixture
def settings():
    """Settings independent of the process environment"""
    return Settings(
        gitlab_url="https://gitlab.example.com",
        gitlab_token="test_token",
        coordinator_api_url="http://coordinator.example.com",
        coordinator_api_token="coordinator_token",
        oauth_client_id="client_id",
        oauth_client_secret="",
        oauth_redirect_uri="https://handler.example.com/callback",
        webhook_secret="",
        alert_webhook_url=None,
    )


@pytest.fixture
def project():
    """Coordinator project without delegated credentials"""
    return Project(
        id="proj-1",
        provider_id=42,
        slug="acme/widgets",
        owner="acme",
        repo="widgets",
        service="gitlab",
        organizationId="org-1",
    )


@pytest.fixture
def oauth_project(project):
    """Coordinator project with a delegated OAuth token"""
    return project.model_copy(
        update={"service_auth": ServiceAuth(token="oauth_token", refresh_token="refresh_token")}
    )


@pytest.fixture
def mr_payload():
    """Merge request webhook payload for an opened MR"""
    return {
        "object_kind": "merge_request",
        "event_type": "merge_request",
        "user": {"id": 1, "name": "Test User", "username": "tester"},
        "project": {
            "id": 42,
            "name": "widgets",
            "web_url": "https://gitlab.example.com/acme/widgets",
            "namespace": "acme",
            "path_with_namespace": "acme/widgets",
            "default_branch": "main",
        },
        "object_attributes": {
            "id": 9001,
            "iid": 7,
            "title": "Add sprockets",
            "description": "Adds sprockets to widgets",
            "state": "opened",
            "action": "open",
            "source_branch": "feature/sprockets",
            "target_branch": "main",
            "source_project_id": 42,
            "target_project_id": 42,
            "source": {"web_url": "https://gitlab.example.com/acme/widgets"},
            "last_commit": {
                "id": "abc123def456",
                "message": "Add sprockets",
                "url": "https://gitlab.example.com/acme/widgets/-/commit/abc123def456",
            },
        },
    }


@pytest.fixture
def push_payload():
    """Push webhook payload whose head commit asks for a build"""
    return {
        "object_kind": "push",
        "before": "1111111111111111111111111111111111111111",
        "after": "bbb222",
        "ref": "refs/heads/feature/sprockets",
        "project_id": 42,
        "project": {
            "id": 42,
            "name": "widgets",
            "web_url": "https://gitlab.example.com/acme/widgets",
            "namespace": "acme",
            "path_with_namespace": "acme/widgets",
        },
        "commits": [
            {
                "id": "aaa111",
                "message": "Older commit [build]",
                "title": "Older commit [build]",
                "url": "https://gitlab.example.com/acme/widgets/-/commit/aaa111",
            },
            {
                "id": "bbb222",
                "message": "Tweak sprockets [build]\n\nLonger body",
                "title": "Tweak sprockets [build]",
                "url": "https://gitlab.example.com/acme/widgets/-/commit/bbb222",
            },
        ],
        "total_commits_count": 2,
    }
