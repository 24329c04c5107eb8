"""
InstalledPackage record and the credential naming convention.
"""

import re

from pydantic import BaseModel

from ..registry.models import Registry


def service_name(package: str) -> str:
    """Service part of the credential variable.

    Scoped NPM packages use their scope (``@stripe/stripe-js`` -> ``STRIPE``);
    everything else uses the package name.
    """
    if package.startswith("@"):
        package = package[1:].split("/", 1)[0]
    return re.sub(r"[^A-Z0-9]+", "_", package.upper()).strip("_")


def credential_env_var(package: str, prefix: str = "UPSKILL") -> str:
    """<PREFIX>_<SERVICE>_TOKEN. upskill names the variable; it never sets it."""
    return f"{prefix}_{service_name(package)}_TOKEN"


class InstalledPackage(BaseModel):
    """A package placed under the install root.

    Holds no timestamps: installing the same name and version twice yields
    an identical record.
    """

    name: str
    version: str
    registry: Registry
    install_path: str
    requires_auth: bool = False
    credential_env_var: str | None = None

    model_config = {"extra": "forbid", "frozen": True}

    def with_auth(self, requires_auth: bool, prefix: str) -> "InstalledPackage":
        """Copy with the authentication fields filled in."""
        return self.model_copy(
            update={
                "requires_auth": requires_auth,
                "credential_env_var": credential_env_var(self.name, prefix) if requires_auth else None,
            }
        )
