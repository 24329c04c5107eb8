"""
UpskillWorkflow -- search -> select -> install -> scaffold -> cache update.

One invocation runs to completion sequentially. Install, skill generation
and the cache update for a package happen under an exclusive file lock
named after the package (<root>/.locks/<package>.lock), so two runs for the
same package cannot race on its install path or its cache entry.

Missing type information and an unset credential variable are reported as
warnings on the result; they never stop the install or the scaffolding.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import structlog
from filelock import FileLock, Timeout

from .cache import VersionCache, VersionCacheEntry
from .config.schema import AppConfig
from .errors import (
    AuthRequiredNotConfigured,
    MissingTypeInfo,
    NetworkError,
    NotFoundError,
    OperationTimeoutError,
    SelectionTieError,
    UpskillError,
    UpskillNotice,
)
from .install import InstalledPackage, Installer
from .logging import HumanLog
from .registry import PackageSummary, Registry, RegistryClient
from .selection import PackageSelector, SelectionResult
from .skills import ApiSurfaceAnalyzer, SkillCatalog, SkillScaffolder, skill_dir_name

logger = structlog.get_logger()


@dataclass
class UpskillResult:
    """Everything one workflow run produced."""

    selection: SelectionResult
    installed: InstalledPackage
    skill_dir: Path
    cache_entry: VersionCacheEntry
    warnings: list[UpskillNotice] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        """False while a required credential is not configured."""
        return not any(isinstance(w, AuthRequiredNotConfigured) for w in self.warnings)

    def to_dict(self) -> dict:
        return {
            "installed": self.installed.model_dump(),
            "selection": {
                "reason": self.selection.reason,
                "winner": self.selection.winner.label,
                "alternative": self.selection.alternative.label if self.selection.alternative else None,
            },
            "skill_dir": str(self.skill_dir),
            "cache": self.cache_entry.to_dict(),
            "warnings": [f"{type(w).__name__}: {w}" for w in self.warnings],
            "ready": self.ready,
        }


@dataclass
class UpdateReport:
    """Outcome of an update check: refreshed cache entries and per-package failures."""

    entries: dict[str, VersionCacheEntry] = field(default_factory=dict)
    failures: dict[str, UpskillError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class UpskillWorkflow:
    """Wires the components together from an AppConfig.

    Every component can be injected, which is how the tests replace the
    network and the package managers.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: RegistryClient | None = None,
        selector: PackageSelector | None = None,
        installer: Installer | None = None,
        analyzer: ApiSurfaceAnalyzer | None = None,
        scaffolder: SkillScaffolder | None = None,
        cache: VersionCache | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.config = config
        self.registry = registry or RegistryClient(config.registry)
        self.selector = selector or PackageSelector()
        self.installer = installer or Installer(config.install, config.installer)
        self.analyzer = analyzer or ApiSurfaceAnalyzer()
        self.scaffolder = scaffolder or SkillScaffolder(
            config.install.skills_root,
            short_max_lines=config.skills.short_max_lines,
        )
        self.cache = cache or VersionCache(
            config.install.cache_path,
            lock_timeout=config.install.lock_timeout,
        )
        self.catalog = SkillCatalog(config.install.skills_root)
        self.environ = environ if environ is not None else os.environ
        self.log = logger.bind(component="workflow")
        self.hlog = HumanLog(self.log)

    def close(self) -> None:
        self.registry.close()

    def __enter__(self) -> "UpskillWorkflow":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Search & selection ───────────────────────────────────────────────

    def search(self, query: str) -> tuple[PackageSummary | None, PackageSummary | None]:
        """Best NPM candidate and exact PyPI match for query."""
        self.hlog.search(query)
        npm = self.registry.best_npm_match(query)
        pypi = self.registry.fetch_pypi(query, query=query)
        for registry, candidate in (("npm", npm), ("pypi", pypi)):
            if candidate:
                self.hlog.candidate(registry, candidate.name, candidate.version)
            else:
                self.hlog.candidate(registry)
        return npm, pypi

    def select(self, query: str, prefer_registry: Registry | None = None) -> SelectionResult:
        """Search both registries and apply the selection policy.

        Raises:
            NotFoundError: no registry matched (with suggestions when any exist).
            SelectionTieError: the policy could not decide and no registry
                was preferred.
        """
        npm, pypi = self.search(query)
        try:
            selection = self.selector.select(npm, pypi, query=query)
        except NotFoundError as e:
            e.suggestions = self.suggest(query)
            raise

        if prefer_registry is not None:
            selection = self.selector.resolve_tie(selection, prefer_registry)
        elif selection.is_tie:
            self.hlog.tie(selection.winner.label, selection.alternative.label)
            raise SelectionTieError(
                f"'{query}' matches npm and PyPI equally; choose a registry",
                selection=selection,
                package=query,
                step="select",
            )

        self.hlog.selected(
            selection.winner.name,
            selection.winner.version,
            selection.winner.registry,
            selection.reason,
            selection.alternative.label if selection.alternative else None,
        )
        return selection

    def suggest(self, query: str) -> list[str]:
        """PyPI names close to query that do exist."""
        variants = []
        base = query.strip().lower()
        for candidate in (base.replace("_", "-"), f"py{base}", f"python-{base}", f"{base}-sdk"):
            if candidate != base and candidate not in variants:
                variants.append(candidate)

        found = []
        for name in variants:
            if self.registry.fetch_pypi(name) is not None:
                found.append(name)
        return found

    # ── Install ──────────────────────────────────────────────────────────

    def run(
        self,
        query: str,
        prefer_registry: Registry | None = None,
        force: bool = False,
    ) -> UpskillResult:
        """Full workflow for a package name.

        force re-runs the package manager even when the selected version is
        already verified on disk.
        """
        selection = self.select(query, prefer_registry)
        return self.install_selected(selection, force=force)

    def install_selected(self, selection: SelectionResult, force: bool = False) -> UpskillResult:
        """Install the winner of a (non-tie) selection and generate its skill."""
        if selection.is_tie:
            raise SelectionTieError(
                "A tie must be resolved before installing",
                selection=selection,
                package=selection.winner.name,
                step="install",
            )

        summary = selection.winner
        prefix = self.config.skills.credential_prefix
        with self._package_lock(summary.name):
            installed = self.installer.install(summary, force=force)
            surface = self.analyzer.analyze(installed.install_path, summary)
            installed = installed.with_auth(surface.requires_auth, prefix)
            skill_dir = self.scaffolder.generate(installed, surface, summary)
            entry = self.cache.update(
                summary.name,
                installed.version,
                summary.version,
                critical=summary.deprecated,
            )

        warnings: list[UpskillNotice] = []
        if not surface.has_type_info:
            warnings.append(
                MissingTypeInfo(
                    f"{summary.name} ships no type information; signatures in the "
                    f"reference are inferred",
                    package=summary.name,
                    registry=summary.registry,
                    step="scaffold",
                )
            )
        if installed.requires_auth and not self.environ.get(installed.credential_env_var or ""):
            warnings.append(
                AuthRequiredNotConfigured(
                    f"{summary.name} needs a credential: export {installed.credential_env_var}",
                    env_var=installed.credential_env_var or "",
                    package=summary.name,
                    registry=summary.registry,
                    step="auth",
                )
            )
        for warning in warnings:
            self.hlog.notice(str(warning))
            self.log.warning("workflow.notice", kind=type(warning).__name__, **warning.context)

        result = UpskillResult(
            selection=selection,
            installed=installed,
            skill_dir=skill_dir,
            cache_entry=entry,
            warnings=warnings,
        )
        self.hlog.complete(summary.name, result.ready, installed.credential_env_var)
        return result

    # ── Maintenance ──────────────────────────────────────────────────────

    def check_updates(self, names: list[str] | None = None) -> UpdateReport:
        """Re-query the registry for cached packages and refresh their entries.

        Packages without a skill bundle (unknown registry) are skipped. A
        registry failure for one package is recorded in the report and the
        remaining packages are still checked.
        """
        cached = self.cache.all()
        wanted = names if names is not None else sorted(cached)
        report = UpdateReport()

        for name in wanted:
            current = cached.get(name)
            metadata = self.catalog.metadata(name)
            if current is None or not metadata or metadata.get("registry") not in ("npm", "pypi"):
                self.log.warning("workflow.check_skipped", package=name)
                continue

            try:
                status = self.registry.check_version(name, metadata["registry"], current.installed)
            except (NotFoundError, NetworkError, OperationTimeoutError) as e:
                self.hlog.update_failed(name, str(e))
                self.log.warning("workflow.check_failed", error=str(e), **e.context)
                report.failures[name] = e
                continue

            entry = self.cache.update(name, current.installed, status.latest, critical=status.critical)
            self.hlog.update_check(
                name, entry.installed, entry.latest, entry.update_available, entry.breaking
            )
            report.entries[name] = entry
        return report

    def remove(self, name: str) -> bool:
        """Uninstall a package, delete its skill and drop its cache entry."""
        metadata = self.catalog.metadata(name) or {}
        removed = False
        with self._package_lock(name):
            registry = metadata.get("registry")
            if registry in ("npm", "pypi"):
                removed = self.installer.uninstall(name, registry) or removed
            removed = self.catalog.remove(name) or removed
            removed = self.cache.remove(name) or removed
        return removed

    def _package_lock(self, name: str):
        locks_dir = self.config.install.locks_dir
        locks_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(
            str(locks_dir / f"{skill_dir_name(name)}.lock"),
            timeout=self.config.install.lock_timeout,
        )
        try:
            return lock.acquire()
        except Timeout as e:
            raise OperationTimeoutError(
                f"Another upskill run holds the lock for {name}",
                seconds=self.config.install.lock_timeout,
                package=name,
                step="lock",
            ) from e
