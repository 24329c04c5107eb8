"""
Configuration loader with deep merge.

Precedence (lowest to highest):
1. Defaults (defined in the Pydantic schemas)
2. YAML file (explicit path, or <root>/config.yaml when present)
3. Environment variables
4. CLI arguments

The merge is recursive so every key is preserved at every level.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .schema import DEFAULT_ROOT, AppConfig

DEFAULT_CONFIG_NAME = "config.yaml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive dictionary merge.

    Args:
        base: Base dictionary
        override: Dictionary whose values win on leaf conflicts

    Returns:
        New merged dictionary.

    Example:
        >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": 99}, "e": 4})
        {'a': {'b': 99, 'c': 2}, 'e': 4}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None to skip

    Returns:
        Dictionary with the configuration, or an empty dict if there is no file
    """
    if not config_path:
        return {}

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{config_path} is not valid YAML: {e}", step="config") from e

    if data and not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping", step="config")
    return data if data else {}


def default_config_path(root: Path | str | None = None) -> Path | None:
    """<root>/config.yaml if it exists. root defaults to UPSKILL_ROOT, then ~/.upskill."""
    root = Path(root or os.environ.get("UPSKILL_ROOT") or DEFAULT_ROOT).expanduser()
    candidate = root / DEFAULT_CONFIG_NAME
    return candidate if candidate.exists() else None


def load_env_overrides() -> dict[str, Any]:
    """Load overrides from environment variables.

    Supported variables:
        UPSKILL_ROOT: install.root
        UPSKILL_SKILLS_DIR: install.skills_dir
        UPSKILL_LOG_LEVEL: logging.level
        UPSKILL_HTTP_TIMEOUT: registry.timeout
        UPSKILL_CREDENTIAL_PREFIX: skills.credential_prefix

    Returns:
        Dictionary with overrides from env vars
    """
    overrides: dict[str, Any] = {}

    if root := os.environ.get("UPSKILL_ROOT"):
        overrides.setdefault("install", {})["root"] = root

    if skills_dir := os.environ.get("UPSKILL_SKILLS_DIR"):
        overrides.setdefault("install", {})["skills_dir"] = skills_dir

    if log_level := os.environ.get("UPSKILL_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    if timeout := os.environ.get("UPSKILL_HTTP_TIMEOUT"):
        overrides.setdefault("registry", {})["timeout"] = timeout

    if prefix := os.environ.get("UPSKILL_CREDENTIAL_PREFIX"):
        overrides.setdefault("skills", {})["credential_prefix"] = prefix

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Apply overrides from CLI arguments.

    Args:
        config_dict: Base configuration (already merged with YAML and env)
        cli_args: Dictionary with CLI arguments

    Returns:
        Configuration with CLI overrides applied
    """
    overrides: dict[str, Any] = {}

    if cli_args.get("root"):
        overrides.setdefault("install", {})["root"] = cli_args["root"]

    if cli_args.get("timeout") is not None:
        overrides.setdefault("registry", {})["timeout"] = cli_args["timeout"]

    if cli_args.get("log_level"):
        overrides.setdefault("logging", {})["level"] = cli_args["log_level"]

    if cli_args.get("log_file"):
        overrides.setdefault("logging", {})["file"] = cli_args["log_file"]

    if cli_args.get("verbose") is not None:
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> AppConfig:
    """Load and validate the full application configuration.

    Args:
        config_path: Path to the YAML configuration file. When None, the
            default <root>/config.yaml is used if present.
        cli_args: Dictionary with CLI arguments

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: If config_path does not exist
        ConfigError: If the file is not valid YAML or the final
            configuration does not validate
    """
    cli_args = cli_args or {}

    yaml_config = load_yaml_config(config_path or default_config_path(cli_args.get("root")))

    merged = deep_merge(yaml_config, load_env_overrides())
    merged = apply_cli_overrides(merged, cli_args)

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", step="config") from e
