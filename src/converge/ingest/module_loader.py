"""Load module documents (YAML or JSON) into Module models."""

import json
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from pydantic import ValidationError as PydanticValidationError
from ..contracts.module import Module, Output, ResourceDeclaration, ValidationRule, Variable
from ..utils.errors import ModuleLoadError
from ..utils.logging import get_logger
from .references import decode_expression

logger = get_logger("ingest.module_loader")

MODULE_FILENAMES = ("module.yaml", "module.yml", "module.json")
TOP_LEVEL_KEYS = {"variables", "resources", "outputs"}
RESOURCE_META_KEYS = ("count", "for_each", "depends_on")
VARIABLE_KEYS = {"type", "default", "description", "sensitive", "validation"}


def resolve_module_path(module_path: Union[str, Path]) -> Path:
    """
    Resolve a module file, or a directory holding module.yaml/module.yml/module.json.

    Raises:
        ModuleLoadError: If no module document is found
    """
    path = Path(module_path)
    if path.is_dir():
        for filename in MODULE_FILENAMES:
            candidate = path / filename
            if candidate.is_file():
                return candidate
        raise ModuleLoadError(
            f"No module document in {module_path}. Expected one of: {', '.join(MODULE_FILENAMES)}"
        )
    if not path.exists():
        raise ModuleLoadError(f"Module file not found: {module_path}. Please check the path and try again.")
    return path


def load_module(module_path: Union[str, Path]) -> Module:
    """
    Load and validate a module document.

    Args:
        module_path: Module file or directory

    Returns:
        Parsed Module

    Raises:
        ModuleLoadError: If the document cannot be read or is malformed
    """
    path = resolve_module_path(module_path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except json.JSONDecodeError as e:
        raise ModuleLoadError(f"Invalid JSON in module file {path}: {e}")
    except yaml.YAMLError as e:
        raise ModuleLoadError(f"Invalid YAML in module file {path}: {e}")
    except OSError as e:
        raise ModuleLoadError(f"Error reading module file {path}: {e}")

    module = parse_module(data if data is not None else {}, source=str(path))
    logger.info(
        f"Loaded module from {path} ({len(module.variables)} variables, "
        f"{len(module.resources)} resources, {len(module.outputs)} outputs)"
    )
    return module


def parse_module(data: Any, source: str = "<module>") -> Module:
    """
    Build a Module from an already-parsed document.

    Raises:
        ModuleLoadError: If the structure is invalid
    """
    if not isinstance(data, dict):
        raise ModuleLoadError(f"{source}: module document must be a mapping")
    unknown = sorted(set(data) - TOP_LEVEL_KEYS)
    if unknown:
        raise ModuleLoadError(f"{source}: unknown top-level keys: {', '.join(unknown)}")

    try:
        return Module(
            variables=_parse_variables(_mapping(data, "variables", source), source),
            resources=_parse_resources(_mapping(data, "resources", source), source),
            outputs=_parse_outputs(_mapping(data, "outputs", source), source),
        )
    except PydanticValidationError as e:
        raise ModuleLoadError(f"{source}: invalid module: {e}")


def _mapping(data: Dict[str, Any], key: str, source: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ModuleLoadError(f"{source}: '{key}' must be a mapping")
    return value


def _parse_variables(section: Dict[str, Any], source: str) -> List[Variable]:
    variables = []
    for name, definition in section.items():
        definition = definition if definition is not None else {}
        if not isinstance(definition, dict):
            raise ModuleLoadError(f"{source}: variable '{name}' must be a mapping")
        unknown = sorted(set(definition) - VARIABLE_KEYS)
        if unknown:
            raise ModuleLoadError(f"{source}: variable '{name}' has unknown keys: {', '.join(unknown)}")

        where = f"var.{name}"
        rules = []
        for rule in definition.get("validation") or []:
            if not isinstance(rule, dict) or "condition" not in rule:
                raise ModuleLoadError(f"{source}: validation of '{name}' needs a condition", address=where)
            rules.append(ValidationRule(
                condition=decode_expression(rule["condition"], where),
                error_message=rule.get("error_message", f"Invalid value for variable '{name}'"),
            ))

        fields = {k: v for k, v in definition.items() if k != "validation"}
        variables.append(Variable(name=str(name), validation=rules, **fields))
    return variables


def _parse_resources(section: Dict[str, Any], source: str) -> List[ResourceDeclaration]:
    resources = []
    for resource_type, named in section.items():
        if not isinstance(named, dict):
            raise ModuleLoadError(f"{source}: resources of type '{resource_type}' must be a mapping of names")
        for name, body in named.items():
            where = f"{resource_type}.{name}"
            body = body if body is not None else {}
            if not isinstance(body, dict):
                raise ModuleLoadError(f"{source}: resource body must be a mapping", address=where)

            depends_on = body.get("depends_on") or []
            if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
                raise ModuleLoadError(f"{source}: depends_on must be a list of addresses", address=where)

            declaration = {
                "type": str(resource_type),
                "name": str(name),
                "depends_on": depends_on,
                "attributes": {
                    str(key): decode_expression(value, where)
                    for key, value in body.items()
                    if key not in RESOURCE_META_KEYS
                },
            }
            for meta in ("count", "for_each"):
                if body.get(meta) is not None:
                    declaration[meta] = decode_expression(body[meta], where)
            resources.append(ResourceDeclaration(**declaration))
    return resources


def _parse_outputs(section: Dict[str, Any], source: str) -> List[Output]:
    outputs = []
    for name, definition in section.items():
        where = f"output.{name}"
        if not isinstance(definition, dict) or "value" not in definition:
            definition = {"value": definition}
        outputs.append(Output(
            name=str(name),
            value=decode_expression(definition["value"], where),
            description=definition.get("description", ""),
            sensitive=bool(definition.get("sensitive", False)),
        ))
    return outputs


def load_var_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load variable values from a YAML or JSON file.

    Raises:
        ModuleLoadError: If the file is missing or not a mapping
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
    except FileNotFoundError:
        raise ModuleLoadError(f"Variable file not found: {path}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ModuleLoadError(f"Invalid variable file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ModuleLoadError(f"Variable file {path} must contain a mapping")
    return data
