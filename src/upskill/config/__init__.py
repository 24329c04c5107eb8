"""
Configuration module for upskill.

Exports the main components for convenient imports.
"""

from .loader import load_config
from .schema import (
    AppConfig,
    InstallConfig,
    InstallerConfig,
    LoggingConfig,
    RegistryConfig,
    SkillsConfig,
)

__all__ = [
    "load_config",
    "AppConfig",
    "InstallConfig",
    "InstallerConfig",
    "LoggingConfig",
    "RegistryConfig",
    "SkillsConfig",
]
