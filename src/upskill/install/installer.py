"""
Installer -- places packages under the fixed install root.

Layout under the root:
    package.json              root manifest used by npm
    node_modules/<name>/      NPM packages
    lib/<module>/             PyPI packages (pip --target), or lib/<module>.py

Success is defined by what is on disk, not by the exit code alone: after
the package manager returns, the expected directory (or module file) and
the version are checked, and a mismatch is an
InstallError("verification-failed"). The same check runs before installing,
which makes re-installing an identical name and version a no-op (unless
forced) and lets the next run detect an interrupted install.
"""

import csv
import json
import re
import shutil
import subprocess
from pathlib import Path

import structlog

from ..config.schema import InstallConfig, InstallerConfig
from ..errors import InstallError, OperationTimeoutError
from ..logging import HumanLog
from ..registry.models import PackageSummary, Registry
from .models import InstalledPackage

logger = structlog.get_logger()

_STDERR_EXCERPT = 500


def canonical_name(name: str) -> str:
    """PEP 503 normalization: 'Foo_Bar.baz' -> 'foo-bar-baz'."""
    return re.sub(r"[-_.]+", "-", name).lower()


class Installer:
    """Runs npm or pip against the install root and verifies the result."""

    MANIFEST_NAME = "package.json"
    NODE_MODULES = "node_modules"
    LIB_DIR = "lib"

    def __init__(self, install: InstallConfig, config: InstallerConfig):
        self.root = install.root
        self.config = config
        self.log = logger.bind(component="installer")
        self.hlog = HumanLog(self.log)

    @property
    def node_modules(self) -> Path:
        return self.root / self.NODE_MODULES

    @property
    def lib_dir(self) -> Path:
        return self.root / self.LIB_DIR

    # ── Public API ───────────────────────────────────────────────────────

    def install(self, summary: PackageSummary, force: bool = False) -> InstalledPackage:
        """Install the package described by summary.

        Args:
            summary: The selected package.
            force: Run the package manager even when the exact version is
                already verified on disk (repairs a broken install).

        Returns:
            InstalledPackage with requires_auth unset (the workflow fills it
            in after analyzing the API surface).

        Raises:
            InstallError: manager missing, non-zero exit or failed verification.
            OperationTimeoutError: the manager exceeded installer.timeout.
        """
        if summary.registry == "npm":
            return self._install_npm(summary, force)
        return self._install_pypi(summary, force)

    def is_installed(self, name: str, version: str, registry: Registry) -> bool:
        if registry == "npm":
            return self._npm_verified(name, version)
        return self._pypi_verified(name, version) is not None

    def uninstall(self, name: str, registry: Registry) -> bool:
        """Remove a package from the install root.

        Returns:
            True if something was removed.
        """
        if registry == "npm":
            if not (self.node_modules / name).exists():
                return False
            self._run(
                [*self.config.npm_command, "uninstall", "--prefix", str(self.root), name],
                name=name,
                registry=registry,
                step="uninstall",
            )
            shutil.rmtree(self.node_modules / name, ignore_errors=True)
            self.log.info("install.removed", package=name, registry=registry)
            return True

        removed = False
        for dist_info in self._dist_infos(name):
            module = self._module_path(dist_info, name)
            if module is not None and module.is_dir():
                shutil.rmtree(module)
            elif module is not None:
                module.unlink()
            shutil.rmtree(dist_info)
            removed = True
        if removed:
            self.log.info("install.removed", package=name, registry=registry)
        return removed

    # ── NPM ──────────────────────────────────────────────────────────────

    def _install_npm(self, summary: PackageSummary, force: bool = False) -> InstalledPackage:
        path = self.node_modules / summary.name
        if self._npm_verified(summary.name, summary.version):
            if not force:
                self.hlog.install_skipped(_dir_str(path))
                return self._record(summary, path)
            # npm leaves a matching version alone; remove it to get a fresh copy
            shutil.rmtree(path)

        self._ensure_manifest()
        self.hlog.install_start(summary.name, summary.version, "npm")
        self._run(
            [
                *self.config.npm_command, "install",
                "--prefix", str(self.root),
                "--no-audit", "--no-fund", "--save-exact",
                f"{summary.name}@{summary.version}",
            ],
            name=summary.name,
            registry="npm",
            step="install",
        )

        if not self._npm_verified(summary.name, summary.version):
            raise self._verification_failed(summary, path)

        self.hlog.install_complete(_dir_str(path))
        return self._record(summary, path)

    def _ensure_manifest(self) -> None:
        manifest = self.root / self.MANIFEST_NAME
        if manifest.exists():
            return
        self.root.mkdir(parents=True, exist_ok=True)
        manifest.write_text(
            json.dumps(
                {
                    "name": "upskill-root",
                    "private": True,
                    "description": "Packages installed by upskill",
                    "dependencies": {},
                },
                indent=2,
            ) + "\n",
            encoding="utf-8",
        )
        self.log.info("install.manifest_created", path=str(manifest))

    def _npm_verified(self, name: str, version: str) -> bool:
        pkg_json = self.node_modules / name / "package.json"
        try:
            data = json.loads(pkg_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return False
        return data.get("version") == version

    # ── PyPI ─────────────────────────────────────────────────────────────

    def _install_pypi(self, summary: PackageSummary, force: bool = False) -> InstalledPackage:
        path = self._pypi_verified(summary.name, summary.version)
        if path is not None and not force:
            self.hlog.install_skipped(_module_str(path))
            return self._record(summary, path)

        self.lib_dir.mkdir(parents=True, exist_ok=True)
        self.hlog.install_start(summary.name, summary.version, "pip")
        self._run(
            [
                *self.config.pip_command, "install",
                "--target", str(self.lib_dir),
                "--upgrade", "--no-input", "--disable-pip-version-check",
                f"{summary.name}=={summary.version}",
            ],
            name=summary.name,
            registry="pypi",
            step="install",
        )
        # pip --target replaces the package directories but leaves the
        # previous version's dist-info behind
        self._drop_stale_dist_infos(summary.name, summary.version)

        path = self._pypi_verified(summary.name, summary.version)
        if path is None:
            raise self._verification_failed(summary, self.lib_dir)

        self.hlog.install_complete(_module_str(path))
        return self._record(summary, path)

    def _dist_infos(self, name: str) -> list[Path]:
        if not self.lib_dir.exists():
            return []
        wanted = canonical_name(name)
        return sorted(
            d for d in self.lib_dir.glob("*.dist-info")
            if canonical_name(_dist_info_parts(d)[0]) == wanted
        )

    def _drop_stale_dist_infos(self, name: str, version: str) -> None:
        for dist_info in self._dist_infos(name):
            if _dist_info_parts(dist_info)[1] != version:
                shutil.rmtree(dist_info)
                self.log.info("install.stale_dist_info_removed", path=str(dist_info))

    def _pypi_verified(self, name: str, version: str) -> Path | None:
        """Module path of name==version, or None if that is not what lib/ holds.

        More than one dist-info for the same project means the layout is
        stale and the version on disk cannot be trusted.
        """
        dist_infos = self._dist_infos(name)
        if len(dist_infos) != 1 or _dist_info_parts(dist_infos[0])[1] != version:
            return None
        return self._module_path(dist_infos[0], name)

    def _module_path(self, dist_info: Path, name: str) -> Path | None:
        """Importable top-level package directory or module file of a dist-info.

        Looks at top_level.txt, then the RECORD file list (wheels built by
        hatchling, flit or poetry ship no top_level.txt), then the
        normalized project name. Returns None when none of them exists.
        """
        candidates: list[str] = []
        top_level = dist_info / "top_level.txt"
        if top_level.exists():
            candidates += [
                line.strip()
                for line in top_level.read_text(encoding="utf-8").splitlines()
                if line.strip()
            ]
        candidates += _record_top_levels(dist_info)
        candidates.append(canonical_name(name).replace("-", "_"))

        public = [c for c in candidates if not c.startswith("_")]
        for candidate in public + [c for c in candidates if c.startswith("_")]:
            package_dir = self.lib_dir / candidate
            if package_dir.is_dir():
                return package_dir
            module_file = self.lib_dir / f"{candidate}.py"
            if module_file.is_file():
                return module_file
        return None

    # ── Helpers ──────────────────────────────────────────────────────────

    def _record(self, summary: PackageSummary, path: Path) -> InstalledPackage:
        return InstalledPackage(
            name=summary.name,
            version=summary.version,
            registry=summary.registry,
            install_path=_module_str(path),
        )

    def _verification_failed(self, summary: PackageSummary, path: Path) -> InstallError:
        self.hlog.install_failed("verification failed")
        self.log.error(
            "install.verification_failed",
            package=summary.name,
            version=summary.version,
            expected=str(path),
        )
        return InstallError(
            f"{summary.name} {summary.version} not found under {path} after install",
            reason="verification-failed",
            package=summary.name,
            registry=summary.registry,
            step="verify",
        )

    def _run(self, argv: list[str], *, name: str, registry: Registry, step: str) -> None:
        self.log.debug("install.run", argv=argv)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
                cwd=str(self.root),
            )
        except subprocess.TimeoutExpired as e:
            self.hlog.install_failed(f"timed out after {self.config.timeout}s")
            raise OperationTimeoutError(
                f"{argv[0]} did not finish within {self.config.timeout}s",
                seconds=self.config.timeout,
                package=name,
                registry=registry,
                step=step,
            ) from e
        except FileNotFoundError as e:
            raise InstallError(
                f"Package manager not found: {argv[0]}",
                reason="manager-missing",
                package=name,
                registry=registry,
                step=step,
            ) from e

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-_STDERR_EXCERPT:]
            self.hlog.install_failed(f"exit code {proc.returncode}")
            self.log.error(
                "install.command_failed",
                package=name,
                exit_code=proc.returncode,
                stderr=stderr,
            )
            raise InstallError(
                f"{argv[0]} exited with code {proc.returncode}: {stderr}",
                reason="exit-code",
                exit_code=proc.returncode,
                stderr=stderr,
                package=name,
                registry=registry,
                step=step,
            )


def _dir_str(path: Path) -> str:
    """Directory path with a trailing slash, as recorded in metadata."""
    return f"{path.as_posix().rstrip('/')}/"


def _module_str(path: Path) -> str:
    """Install path as recorded: directories end with a slash, module files do not."""
    return path.as_posix() if path.is_file() else _dir_str(path)


def _dist_info_parts(dist_info: Path) -> tuple[str, str]:
    """'six-1.16.0.dist-info' -> ('six', '1.16.0')."""
    project, _, version = dist_info.name[: -len(".dist-info")].rpartition("-")
    return project, version


def _record_top_levels(dist_info: Path) -> list[str]:
    """Top-level packages and modules listed in a dist-info RECORD, in order."""
    record = dist_info / "RECORD"
    if not record.exists():
        return []

    names: list[str] = []
    with open(record, newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            if not row or not row[0]:
                continue
            parts = row[0].replace("\\", "/").split("/")
            head = parts[0]
            if head in ("..", "__pycache__", "bin") or head.endswith((".dist-info", ".data")):
                continue
            if len(parts) == 1:
                if not head.endswith(".py"):
                    continue
                head = head[: -len(".py")]
            if head not in names:
                names.append(head)
    return names
