"""
Configuration management for the GitLab build handler.

Settings are read from environment variables (optionally from a .env
file) into a dataclass that validates itself on instantiation.
"""

import os
from typing import Optional, Dict, Protocol
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


@dataclass
class Settings:
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults where applicable and
    are validated on instantiation.
    """

    # GitLab Configuration
    gitlab_url: str = field(default_factory=lambda: os.getenv("GITLAB_URL", "https://gitlab.com"))
    gitlab_token: str = field(default_factory=lambda: os.getenv("GITLAB_TOKEN", ""))

    # Webhook Configuration
    webhook_path: str = field(default_factory=lambda: os.getenv("GITLAB_WEBHOOK_PATH", "/glh"))
    webhook_secret: str = field(default_factory=lambda: os.getenv("GITLAB_WEBHOOK_SECRET", ""))
    webhook_enabled: bool = field(default_factory=lambda: _env_bool("WEBHOOK_ENABLED", "true"))

    # Coordinator Configuration
    coordinator_api_url: str = field(default_factory=lambda: os.getenv("COORDINATOR_API_URL", "http://localhost:3000"))
    coordinator_api_token: str = field(default_factory=lambda: os.getenv("COORDINATOR_API_TOKEN", ""))

    # OAuth application used to refresh delegated tokens
    oauth_client_id: str = field(default_factory=lambda: os.getenv("GITLAB_CLIENT_ID", ""))
    oauth_client_secret: str = field(default_factory=lambda: os.getenv("GITLAB_CLIENT_SECRET", ""))
    oauth_redirect_uri: str = field(default_factory=lambda: os.getenv("GITLAB_REDIRECT_URI", ""))

    # Alerting
    alert_webhook_url: Optional[str] = field(default_factory=lambda: os.getenv("ALERT_WEBHOOK_URL") or None)

    # Pipeline behaviour
    config_error_context: str = field(default_factory=lambda: os.getenv("CONFIG_ERROR_CONTEXT", "ProboCI/env"))
    request_timeout_seconds: float = field(default=30.0)

    # Logging Configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="json")
    log_file: Optional[str] = field(default=None)

    # Server Configuration
    server_host: str = field(default_factory=lambda: os.getenv("SERVER_HOST", "0.0.0.0"))
    server_port: int = field(default_factory=lambda: int(os.getenv("SERVER_PORT", "8000")))

    def __post_init__(self):
        """Validate settings after initialization."""
        if not self.gitlab_url.startswith(("http://", "https://")):
            raise ValueError("GITLAB_URL must be an http(s) URL")

        if not self.coordinator_api_url.startswith(("http://", "https://")):
            raise ValueError("COORDINATOR_API_URL must be an http(s) URL")

        if not self.webhook_path.startswith("/"):
            raise ValueError("GITLAB_WEBHOOK_PATH must start with '/'")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

        if self.log_format not in ["json", "text"]:
            raise ValueError("log_format must be one of: json, text")

        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        # Trailing slashes would produce '//' in request URLs
        self.gitlab_url = self.gitlab_url.rstrip("/")
        self.coordinator_api_url = self.coordinator_api_url.rstrip("/")

    @property
    def gitlab_api_url(self) -> str:
        """Base URL of the GitLab REST API."""
        return f"{self.gitlab_url}/api/v4"

    @property
    def oauth_refresh_enabled(self) -> bool:
        """Token refresh needs at least an OAuth client id."""
        return bool(self.oauth_client_id)

    def get_coordinator_headers(self) -> Dict[str, str]:
        """Get headers for coordinator API requests."""
        return {
            "Authorization": f"Bearer {self.coordinator_api_token}",
            "Content-Type": "application/json"
        }

    @classmethod
    def from_env(cls, **kwargs) -> "Settings":
        """Create Settings instance from environment variables with optional overrides."""
        env_vars = {}

        # Map environment variables to field names
        env_mapping = {
            "GITLAB_URL": "gitlab_url",
            "GITLAB_TOKEN": "gitlab_token",
            "GITLAB_WEBHOOK_PATH": "webhook_path",
            "GITLAB_WEBHOOK_SECRET": "webhook_secret",
            "WEBHOOK_ENABLED": "webhook_enabled",
            "COORDINATOR_API_URL": "coordinator_api_url",
            "COORDINATOR_API_TOKEN": "coordinator_api_token",
            "GITLAB_CLIENT_ID": "oauth_client_id",
            "GITLAB_CLIENT_SECRET": "oauth_client_secret",
            "GITLAB_REDIRECT_URI": "oauth_redirect_uri",
            "ALERT_WEBHOOK_URL": "alert_webhook_url",
            "CONFIG_ERROR_CONTEXT": "config_error_context",
            "REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
            "LOG_LEVEL": "log_level",
            "LOG_FORMAT": "log_format",
            "LOG_FILE": "log_file",
            "SERVER_HOST": "server_host",
            "SERVER_PORT": "server_port",
        }

        # Collect environment variables
        for env_var, field_name in env_mapping.items():
            if env_var in os.environ:
                env_vars[field_name] = os.environ[env_var]

        # Convert boolean and numeric strings
        for key, value in env_vars.items():
            if key in ["webhook_enabled"]:
                env_vars[key] = value.lower() in ("true", "1", "yes", "on")
            elif key in ["request_timeout_seconds"]:
                env_vars[key] = float(value)
            elif key in ["server_port"]:
                env_vars[key] = int(value)
            elif key in ["log_level"]:
                env_vars[key] = value.upper()

        # Merge with provided kwargs
        env_vars.update(kwargs)

        return cls(**env_vars)


class SettingsProtocol(Protocol):
    """Protocol for settings interface."""
    gitlab_url: str
    gitlab_token: str
    webhook_path: str
    webhook_secret: str
    webhook_enabled: bool
    coordinator_api_url: str
    coordinator_api_token: str
    oauth_client_id: str
    oauth_client_secret: str
    oauth_redirect_uri: str
    alert_webhook_url: Optional[str]
    config_error_context: str
    request_timeout_seconds: float
    log_level: str
    log_format: str
    log_file: Optional[str]
    server_host: str
    server_port: int

    @property
    def gitlab_api_url(self) -> str: ...
    @property
    def oauth_refresh_enabled(self) -> bool: ...
    def get_coordinator_headers(self) -> Dict[str, str]: ...


# Initialize settings from environment variables
settings = Settings.from_env()
