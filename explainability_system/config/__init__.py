"""
Configuration module for the explainability system.

Provides centralized configuration management using Pydantic settings
and YAML-based configuration files.
"""

from .settings import ExplainerSettings, LoggingSettings, Settings, get_settings

__all__ = ["ExplainerSettings", "LoggingSettings", "Settings", "get_settings"]
