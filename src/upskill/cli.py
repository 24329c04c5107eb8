"""
Main CLI for upskill using Click.

    upskill install <name> [--registry npm|pypi] [--force]
    upskill search <name>
    upskill list
    upskill show <name>
    upskill check [names...]
    upskill remove <name>
    upskill validate-config
"""

import json
import sys
from pathlib import Path
from typing import Any, Callable

import click

from . import __version__
from .config.loader import load_config
from .config.schema import AppConfig
from .errors import (
    ConfigError,
    NotFoundError,
    OperationTimeoutError,
    SelectionTieError,
    UpskillError,
)
from .logging import configure_logging
from .registry import PackageSummary
from .selection import SelectionResult
from .skills import SHORT_FILE, SkillCatalog
from .workflow import UpskillWorkflow

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_TIE = 2
EXIT_CONFIG_ERROR = 3
EXIT_NOT_FOUND = 4
EXIT_TIMEOUT = 5
EXIT_INTERRUPTED = 130


def _common_options(fn: Callable) -> Callable:
    """Options shared by every command that loads configuration."""
    options = [
        click.option(
            "-c",
            "--config",
            type=click.Path(exists=True, path_type=Path),
            help="Path to the YAML configuration file",
        ),
        click.option(
            "--root",
            type=click.Path(path_type=Path),
            help="Install root (default: ~/.upskill or UPSKILL_ROOT)",
        ),
        click.option("-v", "--verbose", count=True, help="Technical logs (-v info, -vv debug)"),
        click.option("--quiet", is_flag=True, help="Only errors"),
        click.option(
            "--log-file",
            type=click.Path(path_type=Path),
            help="Write JSON logs to this file",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _load_app_config(kwargs: dict[str, Any], json_output: bool = False) -> AppConfig:
    """Load configuration and set up logging; exits on invalid config."""
    cli_args = {
        "root": kwargs.get("root"),
        "verbose": kwargs.get("verbose") or None,
        "log_file": kwargs.get("log_file"),
    }
    try:
        app_config = load_config(config_path=kwargs.get("config"), cli_args=cli_args)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(
        app_config.logging,
        json_output=json_output,
        quiet=bool(kwargs.get("quiet")),
    )
    return app_config


def _describe(candidate: PackageSummary) -> str:
    downloads = (
        f"{candidate.weekly_downloads:,}/week" if candidate.weekly_downloads is not None else "n/a"
    )
    flags = []
    if candidate.official:
        flags.append("official")
    if candidate.has_type_info:
        flags.append("typed")
    if candidate.deprecated:
        flags.append("deprecated")
    flag_str = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"{candidate.registry:<5} {candidate.name} {candidate.version}{flag_str}\n"
        f"        downloads: {downloads}\n"
        f"        {candidate.description or '(no description)'}"
    )


def _prompt_tie(selection: SelectionResult) -> str:
    click.echo("\nBoth registries match equally:\n")
    for candidate in (selection.winner, selection.alternative):
        if candidate is not None:
            click.echo(f"  {_describe(candidate)}\n")
    return click.prompt(
        "Install from which registry?",
        type=click.Choice(["npm", "pypi"]),
    )


@click.group()
@click.version_option(version=__version__, prog_name="upskill")
def main() -> None:
    """upskill -- install a package globally and generate a skill for it.

    \b
    Searches NPM and PyPI, picks the better match, installs it into a fixed
    root (never the current project) and writes SKILL.md, REFERENCE.md and
    metadata.json describing how to use it.
    """
    pass


@main.command()
@click.argument("name")
@click.option(
    "--registry",
    type=click.Choice(["npm", "pypi"]),
    help="Skip selection and install from this registry",
)
@click.option("--no-input", is_flag=True, help="Never prompt; a tie exits with code 2")
@click.option(
    "--force",
    is_flag=True,
    help="Re-run the package manager even if this version is already installed",
)
@click.option("--json", "json_output", is_flag=True, help="Print the result as JSON on stdout")
@_common_options
def install(
    name: str,
    registry: str | None,
    no_input: bool,
    force: bool,
    json_output: bool,
    **kwargs,
) -> None:
    """Find NAME on npm/PyPI, install it and generate its skill."""
    app_config = _load_app_config(kwargs, json_output=json_output)

    try:
        with UpskillWorkflow(app_config) as workflow:
            try:
                selection = workflow.select(name, registry)
            except SelectionTieError as e:
                if no_input:
                    click.echo(
                        f"Error: {e}. Re-run with --registry npm or --registry pypi.",
                        err=True,
                    )
                    sys.exit(EXIT_TIE)
                choice = _prompt_tie(e.selection)
                selection = workflow.selector.resolve_tie(e.selection, choice)

            result = workflow.install_selected(selection, force=force)
    except NotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        if e.suggestions:
            click.echo(f"Did you mean: {', '.join(e.suggestions)}?", err=True)
        sys.exit(EXIT_NOT_FOUND)
    except OperationTimeoutError as e:
        click.echo(f"Timeout: {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    except UpskillError as e:
        click.echo(f"Error: {e}", err=True)
        stderr = getattr(e, "stderr", "")
        if stderr:
            click.echo(stderr, err=True)
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        click.echo("\nInterrupted. The next run verifies the install on disk.", err=True)
        sys.exit(EXIT_INTERRUPTED)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    installed = result.installed
    click.echo(f"Installed {installed.name} {installed.version} ({installed.registry})")
    click.echo(f"  path:  {installed.install_path}")
    click.echo(f"  skill: {result.skill_dir}")
    if result.selection.alternative is not None:
        click.echo(f"  alternative: {result.selection.alternative.label}")
    for warning in result.warnings:
        click.echo(f"  warning: {warning}")
    if not result.ready:
        click.echo(f"Set {installed.credential_env_var} before using {installed.name}.")


@main.command()
@click.argument("name")
@_common_options
def search(name: str, **kwargs) -> None:
    """Show the npm and PyPI candidates for NAME and which would be chosen."""
    app_config = _load_app_config(kwargs)
    try:
        with UpskillWorkflow(app_config) as workflow:
            npm, pypi = workflow.search(name)
            if npm is None and pypi is None:
                click.echo(f"No package named '{name}' on npm or PyPI")
                suggestions = workflow.suggest(name)
                if suggestions:
                    click.echo(f"Did you mean: {', '.join(suggestions)}?")
                sys.exit(EXIT_NOT_FOUND)
            selection = workflow.selector.select(npm, pypi, query=name)
    except OperationTimeoutError as e:
        click.echo(f"Timeout: {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    except UpskillError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    for candidate in (npm, pypi):
        if candidate is not None:
            click.echo(f"  {_describe(candidate)}")
    if selection.is_tie:
        click.echo("\nDecision: tie (choose with --registry when installing)")
    else:
        click.echo(f"\nDecision: {selection.winner.label} ({selection.reason})")


@main.command("list")
@_common_options
def list_skills(**kwargs) -> None:
    """List generated skills."""
    app_config = _load_app_config(kwargs)
    skills = SkillCatalog(app_config.install.skills_root).list()
    if not skills:
        click.echo("  No skills installed.")
        return
    for s in skills:
        auth = f"  auth: {s.credential_env_var}" if s.requires_auth else ""
        click.echo(f"  {s.name:30s} {s.version:12s} ({s.registry}){auth}")


@main.command()
@click.argument("name")
@_common_options
def show(name: str, **kwargs) -> None:
    """Print the SKILL.md of an installed package."""
    app_config = _load_app_config(kwargs)
    skill = SkillCatalog(app_config.install.skills_root).get(name)
    if skill is None:
        click.echo(f"Skill '{name}' not found", err=True)
        sys.exit(EXIT_NOT_FOUND)
    click.echo((skill.path / SHORT_FILE).read_text(encoding="utf-8"), nl=False)


@main.command()
@click.argument("names", nargs=-1)
@_common_options
def check(names: tuple[str, ...], **kwargs) -> None:
    """Check installed packages for newer versions."""
    app_config = _load_app_config(kwargs)
    try:
        with UpskillWorkflow(app_config) as workflow:
            report = workflow.check_updates(list(names) if names else None)
    except OperationTimeoutError as e:
        click.echo(f"Timeout: {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    except UpskillError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    if not report.entries and not report.failures:
        click.echo("  Nothing to check.")
        return
    for name, entry in report.entries.items():
        status = "up to date"
        if entry.update_available:
            status = f"update available: {entry.latest}"
            if entry.breaking:
                status += " (breaking)"
        if entry.critical:
            status += " [installed version deprecated]"
        click.echo(f"  {name:30s} {entry.installed:12s} {status}")
    for name, error in report.failures.items():
        click.echo(f"  {name:30s} check failed: {error}", err=True)
    if not report.ok:
        sys.exit(EXIT_FAILED)


@main.command()
@click.argument("name")
@_common_options
def remove(name: str, **kwargs) -> None:
    """Uninstall a package and delete its skill."""
    app_config = _load_app_config(kwargs)
    try:
        with UpskillWorkflow(app_config) as workflow:
            removed = workflow.remove(name)
    except UpskillError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    if removed:
        click.echo(f"'{name}' removed")
    else:
        click.echo(f"'{name}' not found", err=True)
        sys.exit(EXIT_NOT_FOUND)


@main.command("validate-config")
@_common_options
def validate_config(**kwargs) -> None:
    """Validate the configuration and print the resolved paths."""
    app_config = _load_app_config(kwargs)
    click.echo("Valid configuration")
    click.echo(f"  Install root: {app_config.install.root}")
    click.echo(f"  Skills root:  {app_config.install.skills_root}")
    click.echo(f"  Cache file:   {app_config.install.cache_path}")
    click.echo(f"  Credential:   {app_config.skills.credential_prefix}_<SERVICE>_TOKEN")


if __name__ == "__main__":
    main()
