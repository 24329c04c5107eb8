"""
Registry access -- NPM search/metadata and PyPI metadata.
"""

from .client import RegistryClient, VersionStatus, is_official
from .models import PackageSummary, Registry

__all__ = [
    "PackageSummary",
    "Registry",
    "RegistryClient",
    "VersionStatus",
    "is_official",
]
