"""
Package installation into the fixed install root.
"""

from .installer import Installer, canonical_name
from .models import InstalledPackage, credential_env_var, service_name

__all__ = [
    "InstalledPackage",
    "Installer",
    "canonical_name",
    "credential_env_var",
    "service_name",
]
