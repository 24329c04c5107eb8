"""
PackageSelector -- deterministic choice between an NPM and a PyPI candidate.

Precedence, first match wins:
1. Only one registry has a candidate -> that one ("single").
2. Exactly one candidate is official -> that one ("official"), whatever
   the download counts say.
3. Both report weekly downloads and they differ -> the higher ("downloads").
   PyPI reports none, so it is unranked and this rule is skipped rather than
   favoring NPM by default.
   Exactly one ships type information -> that one ("types").
4. Both have publish dates and they differ -> the newer ("recency").
5. Otherwise a tie. The caller must resolve it; nothing is chosen silently.

The result always names the runner-up so it can be disclosed.
"""

from dataclasses import dataclass
from typing import Literal

import structlog

from ..errors import NotFoundError
from ..registry.models import PackageSummary, Registry

logger = structlog.get_logger()

SelectionReason = Literal["single", "official", "downloads", "types", "recency", "tie", "user"]


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of a selection.

    On a tie, winner is the NPM candidate only as a placeholder and must
    not be installed without resolve_tie(). Reason "user" marks an explicit
    choice made through resolve_tie().
    """

    winner: PackageSummary
    alternative: PackageSummary | None
    reason: SelectionReason

    @property
    def is_tie(self) -> bool:
        return self.reason == "tie"


class PackageSelector:
    """Applies the fixed precedence policy to at most one candidate per registry."""

    def select(
        self,
        npm: PackageSummary | None,
        pypi: PackageSummary | None,
        query: str | None = None,
    ) -> SelectionResult:
        """Pick a winner.

        Raises:
            NotFoundError: neither registry has a candidate.
        """
        if npm is None and pypi is None:
            raise NotFoundError(
                f"No package named '{query}' on npm or PyPI" if query else "No candidates",
                package=query,
                step="select",
            )

        if npm is None or pypi is None:
            only = npm or pypi
            return self._result(only, None, "single")

        if npm.official != pypi.official:
            return self._pick(npm, pypi, npm.official, "official")

        if npm.weekly_downloads is not None and pypi.weekly_downloads is not None:
            if npm.weekly_downloads != pypi.weekly_downloads:
                return self._pick(npm, pypi, npm.weekly_downloads > pypi.weekly_downloads, "downloads")

        if npm.has_type_info != pypi.has_type_info:
            return self._pick(npm, pypi, npm.has_type_info, "types")

        if npm.last_published and pypi.last_published:
            if npm.last_published != pypi.last_published:
                return self._pick(npm, pypi, npm.last_published > pypi.last_published, "recency")

        return self._result(npm, pypi, "tie")

    def resolve_tie(self, result: SelectionResult, registry: Registry) -> SelectionResult:
        """Turn a tie (or any result) into an explicit choice of registry.

        Keeps the result unchanged when the policy already picked that
        registry; otherwise the choice is recorded with reason "user".

        Raises:
            NotFoundError: the requested registry has no candidate.
        """
        if not result.is_tie and result.winner.registry == registry:
            return result

        candidates = [c for c in (result.winner, result.alternative) if c is not None]
        chosen = next((c for c in candidates if c.registry == registry), None)
        if chosen is None:
            raise NotFoundError(
                f"No {registry} candidate for '{result.winner.name}'",
                package=result.winner.name,
                registry=registry,
                step="select",
            )
        other = next((c for c in candidates if c is not chosen), None)
        logger.info("selection.resolved", package=chosen.name, registry=registry)
        return SelectionResult(winner=chosen, alternative=other, reason="user")

    def _pick(
        self,
        npm: PackageSummary,
        pypi: PackageSummary,
        npm_wins: bool,
        reason: SelectionReason,
    ) -> SelectionResult:
        if npm_wins:
            return self._result(npm, pypi, reason)
        return self._result(pypi, npm, reason)

    def _result(
        self,
        winner: PackageSummary,
        alternative: PackageSummary | None,
        reason: SelectionReason,
    ) -> SelectionResult:
        logger.debug(
            "selection.decided",
            winner=winner.label,
            alternative=alternative.label if alternative else None,
            reason=reason,
        )
        return SelectionResult(winner=winner, alternative=alternative, reason=reason)
