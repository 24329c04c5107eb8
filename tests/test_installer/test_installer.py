"""
Tests for Installer.

The package managers are never run: subprocess.run is patched with side
effects that lay out what npm or pip would have written.

Covers:
- NPM install into <root>/node_modules/<name>/ and the root manifest
- Idempotent re-install (no second subprocess call, identical record)
- Exit-code, verification, timeout and missing-manager failures
- PyPI install with --target: top_level.txt, RECORD-only wheels, single modules
- PyPI version changes leave exactly one dist-info
- Forced re-install
- Uninstall
- Credential variable naming
"""

import json
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from upskill.config.schema import InstallConfig, InstallerConfig
from upskill.errors import InstallError, OperationTimeoutError
from upskill.install import Installer, credential_env_var
from upskill.install.models import service_name

from conftest import make_summary

RUN = "upskill.install.installer.subprocess.run"


@pytest.fixture
def installer(root: Path) -> Installer:
    return Installer(
        InstallConfig(root=root),
        InstallerConfig(npm_command=["npm"], pip_command=["pip"], timeout=30),
    )


def completed(returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)


def fake_npm(root: Path, name: str, version: str):
    """side_effect that writes node_modules/<name>/package.json."""

    def run(argv, **kwargs):
        pkg = root / "node_modules" / name
        pkg.mkdir(parents=True, exist_ok=True)
        (pkg / "package.json").write_text(json.dumps({"name": name, "version": version}))
        return completed()

    return run


def fake_pip(root: Path, dist: str, version: str, module: str):
    """side_effect that writes lib/<module>/ and its dist-info."""

    def run(argv, **kwargs):
        lib = root / "lib"
        (lib / module).mkdir(parents=True, exist_ok=True)
        (lib / module / "__init__.py").write_text("")
        info = lib / f"{dist}-{version}.dist-info"
        info.mkdir(parents=True, exist_ok=True)
        (info / "top_level.txt").write_text(f"{module}\n")
        return completed()

    return run


def fake_wheel(root: Path, dist: str, version: str, files: list[str]):
    """side_effect that unpacks a wheel the way pip --target does.

    Writes files under lib/ and a dist-info holding only a RECORD (no
    top_level.txt, as hatchling, flit and poetry build them). Existing
    top-level directories are replaced; other dist-infos are left alone.
    """

    def run(argv, **kwargs):
        lib = root / "lib"
        info = lib / f"{dist}-{version}.dist-info"
        for rel in files:
            top = lib / rel.split("/")[0]
            if top.is_dir():
                shutil.rmtree(top)
        for rel in files:
            target = lib / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("def ping():\n    pass\n")
        info.mkdir(parents=True, exist_ok=True)
        rows = [f"{rel},sha256=x,1" for rel in files]
        rows += [
            f"{info.name}/METADATA,sha256=x,1",
            f"{info.name}/RECORD,,",
            f"../../bin/{dist},sha256=x,1",
            "__pycache__/x.cpython-312.pyc,,",
        ]
        (info / "RECORD").write_text("\n".join(rows) + "\n")
        return completed()

    return run


# ── Tests: NPM ───────────────────────────────────────────────────────────


class TestNpmInstall:
    def test_installs_into_node_modules(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")) as run:
            installed = installer.install(make_summary())

        assert installed.install_path == f"{root.as_posix()}/node_modules/widgetkit/"
        assert installed.version == "2.1.0"
        assert installed.registry == "npm"
        assert installed.requires_auth is False

        argv = run.call_args.args[0]
        assert argv[:2] == ["npm", "install"]
        assert "--prefix" in argv and str(root) in argv
        assert argv[-1] == "widgetkit@2.1.0"
        assert run.call_args.kwargs["cwd"] == str(root)

        manifest = json.loads((root / "package.json").read_text())
        assert manifest["private"] is True

    def test_reinstall_is_idempotent(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")) as run:
            first = installer.install(make_summary())
            second = installer.install(make_summary())

        assert run.call_count == 1
        assert first.model_dump_json() == second.model_dump_json()

    def test_new_version_reinstalls(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")):
            installer.install(make_summary())
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.2.0")) as run:
            installed = installer.install(make_summary(version="2.2.0"))
        assert run.call_count == 1
        assert installed.version == "2.2.0"

    def test_force_reinstalls_same_version(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")):
            installer.install(make_summary())
        stray = root / "node_modules" / "widgetkit" / "broken.js"
        stray.write_text("garbage")

        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")) as run:
            installed = installer.install(make_summary(), force=True)

        assert run.call_count == 1
        assert installed.version == "2.1.0"
        assert not stray.exists()

    def test_scoped_package_path(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "@acme/widgets", "1.0.0")):
            installed = installer.install(make_summary(name="@acme/widgets", version="1.0.0"))
        assert installed.install_path.endswith("/node_modules/@acme/widgets/")


class TestFailures:
    def test_nonzero_exit(self, installer):
        with patch(RUN, return_value=completed(1, "npm ERR! 404 Not Found")):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary())
        err = exc_info.value
        assert err.reason == "exit-code"
        assert err.exit_code == 1
        assert "404 Not Found" in err.stderr
        assert err.package == "widgetkit"
        assert err.registry == "npm"

    def test_stderr_is_truncated(self, installer):
        with patch(RUN, return_value=completed(1, "x" * 5000)):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary())
        assert len(exc_info.value.stderr) == 500

    def test_exit_zero_but_nothing_on_disk(self, installer):
        with patch(RUN, return_value=completed()):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary())
        assert exc_info.value.reason == "verification-failed"

    def test_wrong_version_on_disk(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "1.0.0")):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary())
        assert exc_info.value.reason == "verification-failed"

    def test_timeout(self, installer):
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["npm"], 30)):
            with pytest.raises(OperationTimeoutError) as exc_info:
                installer.install(make_summary())
        assert exc_info.value.seconds == 30
        assert exc_info.value.step == "install"

    def test_manager_missing(self, installer):
        with patch(RUN, side_effect=FileNotFoundError("npm")):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary())
        assert exc_info.value.reason == "manager-missing"


# ── Tests: PyPI ──────────────────────────────────────────────────────────


class TestPypiInstall:
    def test_installs_into_lib(self, installer, root):
        summary = make_summary(name="Widget_Kit", registry="pypi", version="1.3.0")
        with patch(RUN, side_effect=fake_pip(root, "widget_kit", "1.3.0", "widgetkit")) as run:
            installed = installer.install(summary)

        assert installed.install_path == f"{root.as_posix()}/lib/widgetkit/"
        argv = run.call_args.args[0]
        assert argv[:2] == ["pip", "install"]
        assert "--target" in argv
        assert argv[-1] == "Widget_Kit==1.3.0"

    def test_reinstall_is_idempotent(self, installer, root):
        summary = make_summary(registry="pypi", version="1.3.0")
        with patch(RUN, side_effect=fake_pip(root, "widgetkit", "1.3.0", "widgetkit")) as run:
            installer.install(summary)
            installer.install(summary)
        assert run.call_count == 1
        assert installer.is_installed("widgetkit", "1.3.0", "pypi")

    def test_missing_dist_info(self, installer):
        with patch(RUN, return_value=completed()):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary(registry="pypi", version="1.3.0"))
        assert exc_info.value.reason == "verification-failed"

    def test_package_dir_from_record(self, installer, root):
        summary = make_summary(name="beautifulsoup4", registry="pypi", version="4.13.4")
        wheel = fake_wheel(root, "beautifulsoup4", "4.13.4", ["bs4/__init__.py", "bs4/element.py"])
        with patch(RUN, side_effect=wheel):
            installed = installer.install(summary)

        assert installed.install_path == f"{root.as_posix()}/lib/bs4/"
        assert (root / "lib" / "bs4").is_dir()
        assert installer.is_installed("beautifulsoup4", "4.13.4", "pypi")

    def test_single_module_from_record(self, installer, root):
        summary = make_summary(name="six", registry="pypi", version="1.16.0")
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.16.0", ["six.py"])):
            installed = installer.install(summary)
        assert installed.install_path == f"{root.as_posix()}/lib/six.py"

    def test_dist_info_without_module_fails(self, installer, root):
        def run(argv, **kwargs):
            (root / "lib" / "widgetkit-1.3.0.dist-info").mkdir(parents=True)
            return completed()

        with patch(RUN, side_effect=run):
            with pytest.raises(InstallError) as exc_info:
                installer.install(make_summary(registry="pypi", version="1.3.0"))
        assert exc_info.value.reason == "verification-failed"

    def test_version_change_leaves_one_dist_info(self, installer, root):
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.15.0", ["six.py"])):
            installer.install(make_summary(name="six", registry="pypi", version="1.15.0"))
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.16.0", ["six.py"])) as run:
            installed = installer.install(make_summary(name="six", registry="pypi", version="1.16.0"))

        assert run.call_count == 1
        assert installed.version == "1.16.0"
        assert sorted(p.name for p in (root / "lib").glob("*.dist-info")) == ["six-1.16.0.dist-info"]
        assert installer.is_installed("six", "1.16.0", "pypi")
        assert not installer.is_installed("six", "1.15.0", "pypi")

    def test_downgrade_runs_pip_again(self, installer, root):
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.16.0", ["six.py"])):
            installer.install(make_summary(name="six", registry="pypi", version="1.16.0"))
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.15.0", ["six.py"])) as run:
            installed = installer.install(make_summary(name="six", registry="pypi", version="1.15.0"))

        assert run.call_count == 1
        assert installed.version == "1.15.0"
        assert sorted(p.name for p in (root / "lib").glob("*.dist-info")) == ["six-1.15.0.dist-info"]

    def test_two_dist_infos_are_not_trusted(self, installer, root):
        lib = root / "lib"
        lib.mkdir(parents=True)
        (lib / "six.py").write_text("")
        (lib / "six-1.15.0.dist-info").mkdir()
        (lib / "six-1.16.0.dist-info").mkdir()

        assert not installer.is_installed("six", "1.15.0", "pypi")
        assert not installer.is_installed("six", "1.16.0", "pypi")

    def test_force_runs_pip_again(self, installer, root):
        summary = make_summary(registry="pypi", version="1.3.0")
        with patch(RUN, side_effect=fake_pip(root, "widgetkit", "1.3.0", "widgetkit")) as run:
            installer.install(summary)
            installer.install(summary, force=True)
        assert run.call_count == 2


# ── Tests: uninstall ─────────────────────────────────────────────────────


class TestUninstall:
    def test_npm(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")):
            installer.install(make_summary())
        with patch(RUN, return_value=completed()) as run:
            assert installer.uninstall("widgetkit", "npm") is True
        assert run.call_args.args[0][:2] == ["npm", "uninstall"]
        assert not (root / "node_modules" / "widgetkit").exists()

    def test_pypi(self, installer, root):
        with patch(RUN, side_effect=fake_pip(root, "widgetkit", "1.3.0", "widgetkit")):
            installer.install(make_summary(registry="pypi", version="1.3.0"))
        assert installer.uninstall("widgetkit", "pypi") is True
        assert list((root / "lib").iterdir()) == []

    def test_pypi_single_module(self, installer, root):
        with patch(RUN, side_effect=fake_wheel(root, "six", "1.16.0", ["six.py"])):
            installer.install(make_summary(name="six", registry="pypi", version="1.16.0"))
        assert installer.uninstall("six", "pypi") is True
        assert list((root / "lib").iterdir()) == []

    def test_not_installed(self, installer):
        run = MagicMock()
        with patch(RUN, run):
            assert installer.uninstall("widgetkit", "npm") is False
            assert installer.uninstall("widgetkit", "pypi") is False
        run.assert_not_called()


# ── Tests: credentials ───────────────────────────────────────────────────


class TestCredentialNaming:
    @pytest.mark.parametrize(
        "package,expected",
        [
            ("stripe", "UPSKILL_STRIPE_TOKEN"),
            ("@stripe/stripe-js", "UPSKILL_STRIPE_TOKEN"),
            ("google-cloud-storage", "UPSKILL_GOOGLE_CLOUD_STORAGE_TOKEN"),
            ("twilio.rest", "UPSKILL_TWILIO_REST_TOKEN"),
        ],
    )
    def test_names(self, package, expected):
        assert credential_env_var(package) == expected

    def test_custom_prefix(self):
        assert credential_env_var("stripe", "ACME") == "ACME_STRIPE_TOKEN"

    def test_service_name(self):
        assert service_name("@my-org/client") == "MY_ORG"

    def test_with_auth(self, installer, root):
        with patch(RUN, side_effect=fake_npm(root, "widgetkit", "2.1.0")):
            installed = installer.install(make_summary())
        authed = installed.with_auth(True, "UPSKILL")
        assert authed.credential_env_var == "UPSKILL_WIDGETKIT_TOKEN"
        assert installed.credential_env_var is None
