"""
Uniform package summary produced by every registry query.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Registry = Literal["npm", "pypi"]


class PackageSummary(BaseModel):
    """One registry's view of a package, normalized across NPM and PyPI.

    Produced fresh from each query and never persisted on its own.
    """

    name: str
    version: str
    description: str = ""
    weekly_downloads: int | None = Field(
        default=None,
        description="Popularity proxy. NPM only; PyPI exposes none.",
    )
    has_type_info: bool = False
    registry: Registry
    official: bool = Field(
        default=False,
        description="Published by the service the package wraps",
    )
    last_published: datetime | None = None
    keywords: list[str] = Field(default_factory=list)
    homepage: str | None = None
    repository: str | None = None
    deprecated: bool = Field(
        default=False,
        description="Latest version is deprecated (npm) or yanked (PyPI)",
    )
    readme: str = Field(default="", repr=False)

    model_config = {"extra": "forbid"}

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version} ({self.registry})"
