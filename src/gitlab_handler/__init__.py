"""
GitLab build handler.

Bridges GitLab webhooks and a build coordinator: turns merge request and
push events into build requests, resolves the per-commit build config and
relays build status updates back to GitLab as commit statuses.
"""

__version__ = "0.1.0"
