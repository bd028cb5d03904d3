"""
Custom exception classes for the GitLab build handler.

Provides specific exception types for the different failure scenarios
of the webhook-to-build pipeline, each with an error code and details.
"""

from typing import Optional, Dict, Any


class HandlerError(Exception):
    """
    Base exception for the GitLab build handler.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional error context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary representation."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class GitLabAPIError(HandlerError):
    """
    Raised when there's an error with the GitLab API.

    This includes authentication errors, permission issues,
    resource not found, transport failures, etc.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[Any] = None,
        endpoint: Optional[str] = None
    ):
        """Initialize GitLab API error."""
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body
        if endpoint:
            details["endpoint"] = endpoint

        super().__init__(
            message=message,
            error_code="GITLAB_API_ERROR",
            details=details
        )
        self.status_code = status_code
        self.response_body = response_body

    @property
    def is_not_found(self) -> bool:
        """Whether GitLab answered 404 for the requested resource."""
        return self.status_code == 404

    @property
    def description(self) -> str:
        """
        The error text GitLab returned.

        GitLab puts the reason under ``message`` (sometimes ``error``) in
        the JSON body. Falls back to the raw body, then to our message.
        """
        body = self.response_body
        if isinstance(body, dict):
            for key in ("message", "error", "error_description"):
                value = body.get(key)
                if value:
                    return value if isinstance(value, str) else str(value)
        if isinstance(body, str) and body:
            return body
        return self.message


class CoordinatorAPIError(HandlerError):
    """
    Raised when a call to the build coordinator fails.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[Any] = None,
        endpoint: Optional[str] = None
    ):
        """Initialize coordinator API error."""
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body
        if endpoint:
            details["endpoint"] = endpoint

        super().__init__(
            message=message,
            error_code="COORDINATOR_API_ERROR",
            details=details
        )
        self.status_code = status_code


class ProjectNotFoundError(HandlerError):
    """
    Raised when the coordinator has no project for a repository.

    Processing stops here; no status can be posted because no build
    context exists yet.
    """

    def __init__(self, message: str, service: Optional[str] = None, slug: Optional[str] = None):
        """Initialize project not found error."""
        details = {}
        if service:
            details["service"] = service
        if slug:
            details["slug"] = slug

        super().__init__(
            message=message,
            error_code="PROJECT_NOT_FOUND",
            details=details
        )


class ConfigResolutionError(HandlerError):
    """
    Base class for failures resolving the build configuration file.
    """


class NotFoundError(ConfigResolutionError):
    """Raised when neither configuration file path exists for a commit."""

    def __init__(self, message: str = "No config file was found.", paths: Optional[list] = None):
        """Initialize config not found error."""
        super().__init__(
            message=message,
            error_code="CONFIG_NOT_FOUND",
            details={"paths": paths} if paths else {}
        )


class ParseError(ConfigResolutionError):
    """
    Raised when the configuration file cannot be decoded or parsed.

    The message is ``Failed to parse <path>: <parser message>``; callers
    display it verbatim as the commit status description.
    """

    def __init__(self, path: str, parser_message: str):
        """Initialize config parse error."""
        super().__init__(
            message=f"Failed to parse {path}: {parser_message}",
            error_code="CONFIG_PARSE_ERROR",
            details={"path": path}
        )
        self.path = path
        self.parser_message = parser_message


class UpstreamError(ConfigResolutionError):
    """
    Raised when fetching the configuration file fails for a reason other
    than the file being absent.
    """

    def __init__(self, message: str, path: Optional[str] = None, status_code: Optional[int] = None):
        """Initialize upstream error."""
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if status_code:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            error_code="UPSTREAM_ERROR",
            details=details
        )


class InvalidStatusError(HandlerError):
    """
    Raised when a build status update carries a state with no GitLab
    equivalent. Such updates are rejected before they are queued.
    """

    def __init__(self, state: Optional[str]):
        """Initialize invalid status error."""
        super().__init__(
            message=f"Unsupported build state: {state!r}",
            error_code="INVALID_STATUS",
            details={"state": state}
        )
        self.state = state


class DispatchError(HandlerError):
    """
    Raised when GitLab rejects a commit status for a reason other than a
    benign state-transition conflict.
    """

    def __init__(
        self,
        message: str,
        sha: Optional[str] = None,
        context: Optional[str] = None,
        last_error: Optional[Exception] = None
    ):
        """Initialize dispatch error."""
        details = {}
        if sha:
            details["sha"] = sha
        if context:
            details["context"] = context
        if last_error:
            details["last_error_type"] = type(last_error).__name__
            details["last_error_message"] = str(last_error)

        super().__init__(
            message=message,
            error_code="DISPATCH_ERROR",
            details=details
        )


class CredentialRefreshError(HandlerError):
    """
    Raised when an OAuth token refresh fails.

    Never escapes the credential manager: it degrades to the stored
    credentials and an operational alert.
    """

    def __init__(self, message: str, project_id: Optional[str] = None, attempts: Optional[int] = None):
        """Initialize credential refresh error."""
        details: Dict[str, Any] = {}
        if project_id:
            details["project_id"] = project_id
        if attempts:
            details["attempts"] = attempts

        super().__init__(
            message=message,
            error_code="CREDENTIAL_REFRESH_ERROR",
            details=details
        )
