"""CLI utilities package."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
import click
from ...config import EngineSettings, load_settings
from ...contracts.module import Module
from ...contracts.plan import Plan
from ...engine import Engine
from ...ingest.module_loader import load_module, load_var_file
from ...providers.registry import ProviderRegistry
from ...state.file_store import FileStateStore
from ...utils.errors import ConvergeError, LockedError, ModuleLoadError, StalePlanError
from ...utils.logging import get_logger, setup_logging
from .file_resolver import resolve_file_path

logger = get_logger("cli.utils")


def module_options(command):
    """Options shared by every command that plans a module."""
    options = [
        click.argument("module", type=click.Path(exists=False)),
        click.option("--var", "var_pairs", multiple=True, metavar="NAME=VALUE", help="Set a variable (repeatable)"),
        click.option("--var-file", "var_files", multiple=True, type=click.Path(), help="YAML/JSON file of variable values"),
        click.option("--state", "state_path", type=click.Path(), help="State file (default from configuration)"),
        click.option("--config", "config_path", type=click.Path(), help="Config file overriding the project config"),
        click.option("--lock-timeout", type=click.FloatRange(min=0), help="Seconds to wait for a held state lock"),
        click.option("--no-refresh", is_flag=True, help="Skip re-reading recorded resources from providers"),
        click.option("--json", "json_output", is_flag=True, help="Output structured JSON instead of human-readable"),
        click.option("--quiet", is_flag=True, help="Suppress progress messages"),
    ]
    for option in reversed(options):
        command = option(command)
    return command


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"❌ Error: {message}"
    if suggestion:
        error += f"\n💡 Tip: {suggestion}"
    return error


def suggestion_for(error: ConvergeError) -> Optional[str]:
    """Follow-up hint shown under an error, if one applies."""
    if isinstance(error, LockedError):
        lock_id = error.holder.get("id")
        if lock_id:
            return f"If no other run is active, release the lock with: converge force-unlock {lock_id}"
        return "Wait for the other run to finish, or pass --lock-timeout to wait for it."
    if isinstance(error, StalePlanError):
        return "Run 'converge plan' again and apply the new plan."
    if isinstance(error, ModuleLoadError):
        return "Pass a module.yaml/module.json file or a directory containing one."
    return None


def parse_vars(pairs: Iterable[str]) -> Dict[str, str]:
    """
    Parse repeated ``--var name=value`` options.

    Raises:
        click.BadParameter: If an option is not of the form name=value
    """
    values = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            raise click.BadParameter(f"Expected name=value, got {pair!r}", param_hint="--var")
        values[name] = value
    return values


def collect_variables(pairs: Iterable[str], var_files: Iterable[str]) -> Dict[str, Any]:
    """Merge variable files in order, then ``--var`` options on top."""
    variables: Dict[str, Any] = {}
    for var_file in var_files:
        variables.update(load_var_file(resolve_file_path(var_file)))
    variables.update(parse_vars(pairs))
    return variables


def resolve_settings(
    config_path: Optional[str] = None,
    state_path: Optional[str] = None,
    parallelism: Optional[int] = None,
    lock_timeout: Optional[float] = None,
    refresh: Optional[bool] = None,
) -> EngineSettings:
    """Load settings with command-line flags as the highest-priority layer."""
    settings = load_settings(
        overrides={
            "state_path": state_path,
            "parallelism": parallelism,
            "lock_timeout": lock_timeout,
            "refresh": refresh,
        },
        config_path=config_path,
    )
    ctx = click.get_current_context(silent=True)
    if not (ctx and ctx.find_root().obj and ctx.find_root().obj.get("log_level")):
        setup_logging(settings.log_level)
    return settings


def build_engine(module_path: str, settings: EngineSettings) -> Tuple[Engine, Module]:
    """
    Shared engine construction helper - every module command calls this.

    Raises:
        ModuleLoadError: If the module document is missing or malformed
        ConfigError: If a configured provider cannot be loaded
    """
    module = load_module(module_path)
    providers = ProviderRegistry.from_config(settings.providers, settings.provider_options)
    engine = Engine(module, providers, FileStateStore(Path(settings.state_path)), settings)
    logger.debug(f"Engine ready for {module_path} (state: {settings.state_path})")
    return engine, module


def state_store_for(settings: EngineSettings) -> FileStateStore:
    return FileStateStore(Path(settings.state_path))


def sensitive_outputs(module: Optional[Module]) -> List[str]:
    if module is None:
        return []
    return [output.name for output in module.outputs if output.sensitive]


def to_json(model: Any) -> str:
    """Serialize a contract model; unknown values render as ``(known after apply)``."""
    data = model.model_dump() if hasattr(model, "model_dump") else model
    return json.dumps(data, indent=2, default=str)


def load_plan_file(path: str) -> Plan:
    """
    Load a plan saved with ``converge plan --out``.

    Raises:
        ConvergeError: If the file is not a valid plan document
    """
    plan_path = resolve_file_path(path)
    try:
        with open(plan_path, "r", encoding="utf-8") as f:
            return Plan.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        raise ConvergeError(f"Plan file {plan_path} is not valid JSON: {e}")
    except ValueError as e:
        raise ConvergeError(f"Plan file {plan_path} is not a valid plan: {e}")


def write_output(text: str, output: Optional[str], quiet: bool = False) -> None:
    """Write text to a file, or echo it when no file is given."""
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        if not quiet:
            click.echo(f"Output saved to: {output_path}", err=True)
        return
    try:
        click.echo(text)
    except UnicodeEncodeError:
        click.echo(text.encode("ascii", errors="replace").decode("ascii"))


__all__ = [
    "module_options",
    "resolve_file_path",
    "format_error",
    "suggestion_for",
    "parse_vars",
    "collect_variables",
    "resolve_settings",
    "build_engine",
    "state_store_for",
    "sensitive_outputs",
    "to_json",
    "load_plan_file",
    "write_output",
]
