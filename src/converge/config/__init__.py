"""Configuration module: packaged defaults, user/project overrides, environment."""

from .manager import load_config, load_settings, environment_overrides
from .paths import get_defaults_path, get_user_config_path, get_project_config_path
from .settings import EngineSettings

__all__ = [
    "load_config",
    "load_settings",
    "environment_overrides",
    "get_defaults_path",
    "get_user_config_path",
    "get_project_config_path",
    "EngineSettings",
]
