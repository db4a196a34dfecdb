"""Two-tier configuration manager (user + project override) on top of packaged defaults."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import ValidationError as PydanticValidationError
from .paths import get_defaults_path, get_user_config_path, get_project_config_path
from .settings import EngineSettings
from ..utils.errors import ConfigError
from ..utils.logging import get_logger

logger = get_logger("config.manager")

ENV_PREFIX = "CONVERGE_"
ENV_KEYS = ("parallelism", "lock_timeout", "state_path", "refresh", "log_level")


def _read_yaml(path: Path, required: bool = False) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a dictionary")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load full config tree: defaults, then user config, then project config.

    Args:
        config_path: Explicit config file used instead of the project config

    Returns:
        Configuration dictionary (later tiers override earlier ones)

    Raises:
        ConfigError: If a config file is unreadable or malformed
    """
    config = _read_yaml(get_defaults_path(), required=True)

    user_config_path = get_user_config_path()
    if user_config_path.exists():
        _deep_merge(config, _read_yaml(user_config_path))
        logger.info(f"Loaded user config from {user_config_path}")

    project_config_path = Path(config_path) if config_path else get_project_config_path()
    if project_config_path:
        _deep_merge(config, _read_yaml(project_config_path, required=bool(config_path)))
        logger.info(f"Loaded project config from {project_config_path}")

    return config


def environment_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Settings taken from CONVERGE_* environment variables (values parsed as YAML scalars)."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for key in ENV_KEYS:
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None or raw == "":
            continue
        overrides[key] = raw if key in ("state_path", "log_level") else yaml.safe_load(raw)
    return overrides


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> EngineSettings:
    """
    Resolve the effective engine settings.

    Args:
        overrides: Highest-priority values (command-line flags); None values are ignored
        config_path: Explicit config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated EngineSettings

    Raises:
        ConfigError: If the merged configuration is invalid
    """
    config = load_config(config_path)
    _deep_merge(config, environment_overrides(environ))
    _deep_merge(config, {k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return EngineSettings.model_validate(config)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
