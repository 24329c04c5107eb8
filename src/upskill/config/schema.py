"""
Pydantic models for upskill configuration.

Defines all configuration schemas using Pydantic v2 for validation,
defaults, and serialization.
"""

import sys
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_ROOT = Path.home() / ".upskill"


class InstallConfig(BaseModel):
    """Fixed install root shared by every package and generated skill.

    The root never depends on the directory upskill is invoked from.
    """

    root: Path = DEFAULT_ROOT
    skills_dir: Path | None = Field(
        default=None,
        description="Skills root. Defaults to <root>/skills",
    )
    cache_file: Path | None = Field(
        default=None,
        description="Version cache document. Defaults to <root>/versions.json",
    )
    lock_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds to wait for the per-package install lock",
    )

    model_config = {"extra": "forbid"}

    @field_validator("root", "skills_dir", "cache_file", mode="after")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def skills_root(self) -> Path:
        return self.skills_dir or self.root / "skills"

    @property
    def cache_path(self) -> Path:
        return self.cache_file or self.root / "versions.json"

    @property
    def locks_dir(self) -> Path:
        return self.root / ".locks"


class RegistryConfig(BaseModel):
    """Registry endpoints and HTTP limits."""

    npm_registry: str = "https://registry.npmjs.org"
    npm_search_url: str = "https://registry.npmjs.org/-/v1/search"
    npm_downloads_url: str = "https://api.npmjs.org/downloads/point/last-week"
    pypi_url: str = "https://pypi.org/pypi"
    timeout: float = Field(default=15.0, gt=0, description="Per-request timeout in seconds")
    search_size: int = Field(default=20, ge=1, le=250)

    model_config = {"extra": "forbid"}


class InstallerConfig(BaseModel):
    """Package manager commands."""

    npm_command: list[str] = Field(default_factory=lambda: ["npm"])
    pip_command: list[str] = Field(
        default_factory=lambda: [sys.executable, "-m", "pip"],
    )
    timeout: int = Field(default=300, ge=1, description="Per-subprocess timeout in seconds")

    model_config = {"extra": "forbid"}


class SkillsConfig(BaseModel):
    """Generated skill bundles."""

    short_max_lines: int = Field(
        default=30,
        ge=10,
        description="Soft line budget for SKILL.md",
    )
    credential_prefix: str = Field(
        default="UPSKILL",
        description="Prefix of the credential env var: <PREFIX>_<SERVICE>_TOKEN",
    )

    model_config = {"extra": "forbid"}

    @field_validator("credential_prefix")
    @classmethod
    def upper_prefix(cls, v: str) -> str:
        if not v or not v.replace("_", "").isalnum():
            raise ValueError("credential_prefix must be alphanumeric (underscores allowed)")
        return v.upper()


class LoggingConfig(BaseModel):
    """Logging system configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Complete application configuration.

    This is the root of the configuration tree. It combines all sections
    and is the entry point for validation.
    """

    install: InstallConfig = Field(default_factory=InstallConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    installer: InstallerConfig = Field(default_factory=InstallerConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}
