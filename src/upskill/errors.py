"""
Error taxonomy for upskill.

Every error raised by a component carries the context needed to explain it:
which package, which registry and which workflow step. Lower-level errors
(httpx, subprocess, OSError) are wrapped into one of these before they leave
the component that caught them.

Two kinds are notices rather than failures: MissingTypeInfo and
AuthRequiredNotConfigured. The workflow collects them in
UpskillResult.warnings and never raises them.
"""

from typing import Any


class UpskillError(Exception):
    """Base error with package/registry/step context."""

    def __init__(
        self,
        message: str,
        *,
        package: str | None = None,
        registry: str | None = None,
        step: str | None = None,
    ):
        self.package = package
        self.registry = registry
        self.step = step
        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Context fields that are set, for structured logging."""
        ctx = {"package": self.package, "registry": self.registry, "step": self.step}
        return {k: v for k, v in ctx.items() if v is not None}

    def __str__(self) -> str:
        base = super().__str__()
        where = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{base} [{where}]" if where else base


class NotFoundError(UpskillError):
    """No registry has a package with that name."""

    def __init__(self, message: str, *, suggestions: list[str] | None = None, **kw: Any):
        self.suggestions = suggestions or []
        super().__init__(message, **kw)


class NetworkError(UpskillError):
    """Transport failure talking to a registry. Not retried internally."""

    pass


class OperationTimeoutError(UpskillError, TimeoutError):
    """An HTTP call, subprocess or lock acquisition exceeded its timeout."""

    def __init__(self, message: str, *, seconds: float | None = None, **kw: Any):
        self.seconds = seconds
        super().__init__(message, **kw)


class InstallError(UpskillError):
    """Package manager failure or failed post-install verification.

    reason is "exit-code" or "verification-failed".
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        exit_code: int | None = None,
        stderr: str = "",
        **kw: Any,
    ):
        self.reason = reason
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, **kw)


class SelectionTieError(UpskillError):
    """Both registries matched and the policy could not pick one."""

    def __init__(self, message: str, *, selection: Any, **kw: Any):
        self.selection = selection
        super().__init__(message, **kw)


class CacheError(UpskillError):
    """The version cache file exists but cannot be read or written."""

    pass


class ConfigError(UpskillError):
    """Invalid or missing configuration."""

    pass


# ── Non-fatal notices ────────────────────────────────────────────────────


class UpskillNotice(UpskillError):
    """Base for conditions reported to the user but never raised."""

    pass


class MissingTypeInfo(UpskillNotice):
    """The package ships no type information; the reference is less precise."""

    pass


class AuthRequiredNotConfigured(UpskillNotice):
    """The package needs a credential and its environment variable is unset."""

    def __init__(self, message: str, *, env_var: str, **kw: Any):
        self.env_var = env_var
        super().__init__(message, **kw)
