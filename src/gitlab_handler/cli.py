"""
Command line entry point for the GitLab build handler.

Commands:
- serve: run the HTTP server
- check-config: validate the environment configuration
- version: show version information
"""

import sys
from enum import Enum
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config.settings import Settings
from .utils.logger import get_logger, setup_logging

console = Console()

# Settings fields never printed in clear text
SECRET_FIELDS = {
    "gitlab_token",
    "webhook_secret",
    "coordinator_api_token",
    "oauth_client_secret",
}


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


app = typer.Typer(
    name="gitlab-handler",
    help="GitLab webhook handler for the build coordinator",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _mask(name: str, value: Any) -> str:
    if name in SECRET_FIELDS:
        return "***" if value else "[dim]<unset>[/dim]"
    if value in (None, ""):
        return "[dim]<unset>[/dim]"
    return str(value)


def _load_settings(overrides: Dict[str, Any]) -> Settings:
    try:
        return Settings.from_env(**{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port"),
    webhook_path: Optional[str] = typer.Option(
        None, "--webhook-path", help="Path GitLab posts webhooks to"
    ),
    webhook_secret: Optional[str] = typer.Option(
        None, "--webhook-secret", help="Shared secret expected in X-Gitlab-Token"
    ),
    api_token: Optional[str] = typer.Option(
        None, "--api-token", help="Bearer token for the coordinator API"
    ),
    log_level: Optional[LogLevel] = typer.Option(None, "--log-level", help="Logging level"),
):
    """Start the webhook handler server."""
    settings = _load_settings(
        {
            "server_host": host,
            "server_port": port,
            "webhook_path": webhook_path,
            "webhook_secret": webhook_secret,
            "coordinator_api_token": api_token,
            "log_level": log_level.value if log_level else None,
        }
    )

    setup_logging(level=settings.log_level, format_type=settings.log_format, log_file=settings.log_file)
    logger = get_logger("cli")

    console.print(Panel.fit(
        f"[bold blue]GitLab Build Handler[/bold blue]\n"
        f"Host: {settings.server_host}:{settings.server_port}\n"
        f"Webhook path: {settings.webhook_path}\n"
        f"Coordinator: {settings.coordinator_api_url}",
        title="Server Starting",
    ))

    from .app_server import create_server_from_settings

    server = create_server_from_settings(settings)
    logger.info("Starting server", extra={"host": settings.server_host, "port": settings.server_port})
    server.run()


@app.command("check-config")
def check_config():
    """Validate configuration from the environment and print it."""
    settings = _load_settings({})

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in vars(settings).items():
        table.add_row(name, _mask(name, value))

    console.print(table)

    warnings = []
    if not settings.gitlab_token:
        warnings.append("GITLAB_TOKEN is not set; projects without OAuth credentials cannot be served")
    if not settings.webhook_secret:
        warnings.append("GITLAB_WEBHOOK_SECRET is not set; webhook deliveries are not authenticated")
    if not settings.coordinator_api_token:
        warnings.append("COORDINATOR_API_TOKEN is not set")
    if not settings.oauth_refresh_enabled:
        warnings.append("GITLAB_CLIENT_ID is not set; expired OAuth tokens cannot be refreshed")

    for warning in warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    console.print("[green]Configuration is valid[/green]")


@app.command()
def version():
    """Show version information."""
    console.print(Panel.fit(
        f"[bold blue]GitLab Build Handler[/bold blue]\n"
        f"Version: {__version__}",
        title="Version Information",
    ))


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
