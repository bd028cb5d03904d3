"""
Configuration module for the GitLab build handler.
"""

from .settings import Settings, SettingsProtocol, settings

__all__ = ["Settings", "SettingsProtocol", "settings"]
