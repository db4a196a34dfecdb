"""converge - Declarative infrastructure provisioning engine."""

from pathlib import Path
from typing import Any, Dict, Optional
from .config import EngineSettings, load_settings
from .contracts import ApplyResult, Module, Plan
from .engine import Engine, Run
from .ingest.module_loader import load_module
from .providers.registry import ProviderRegistry
from .state.file_store import FileStateStore
from .utils.logging import setup_logging, get_logger
from .utils.errors import ConvergeError

__version__ = "0.1.0"

__all__ = ["Engine", "Run", "EngineSettings", "plan", "apply", "engine_for"]

setup_logging("WARNING")
logger = get_logger("converge")


def engine_for(module_path: str, settings: Optional[EngineSettings] = None) -> Engine:
    """
    Build an engine for a module document using configured providers and state.

    Args:
        module_path: Module file or directory
        settings: Explicit settings (defaults to the merged configuration)
    """
    settings = settings or load_settings()
    module = load_module(module_path)
    providers = ProviderRegistry.from_config(settings.providers, settings.provider_options)
    return Engine(module, providers, FileStateStore(Path(settings.state_path)), settings)


def plan(module_path: str, variables: Optional[Dict[str, Any]] = None, destroy: bool = False) -> Plan:
    """Plan a module document and return the ordered operations."""
    try:
        logger.info(f"Planning module: {module_path}")
        return engine_for(module_path).plan(variables, destroy=destroy)
    except ConvergeError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during plan: {e}", exc_info=True)
        raise ConvergeError(f"Plan failed: {e}") from e


def apply(module_path: str, variables: Optional[Dict[str, Any]] = None) -> ApplyResult:
    """Plan and apply a module document in one locked run."""
    try:
        logger.info(f"Applying module: {module_path}")
        return engine_for(module_path).apply(variables)
    except ConvergeError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during apply: {e}", exc_info=True)
        raise ConvergeError(f"Apply failed: {e}") from e
