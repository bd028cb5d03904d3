"""
Utilities module for the GitLab build handler.
"""

from .logger import setup_logging, get_logger
from .exceptions import (
    HandlerError,
    GitLabAPIError,
    CoordinatorAPIError,
    ProjectNotFoundError,
    ConfigResolutionError,
    NotFoundError,
    ParseError,
    UpstreamError,
    InvalidStatusError,
    DispatchError,
    CredentialRefreshError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "HandlerError",
    "GitLabAPIError",
    "CoordinatorAPIError",
    "ProjectNotFoundError",
    "ConfigResolutionError",
    "NotFoundError",
    "ParseError",
    "UpstreamError",
    "InvalidStatusError",
    "DispatchError",
    "CredentialRefreshError",
]
