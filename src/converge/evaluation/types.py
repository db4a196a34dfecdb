"""Type constraints for variables and resource attributes."""

import re
from typing import Any, Optional
import yaml
from .unknown import is_unknown
from ..utils.errors import TypeMismatchError

_COLLECTION = re.compile(r'^(list|set|map)\((.+)\)$')
_PRIMITIVES = ("string", "number", "bool", "any")
_BARE_COLLECTIONS = ("list", "set", "map", "object")


def validate_constraint(constraint: str) -> None:
    """
    Check that a type constraint string is well formed.

    Raises:
        TypeMismatchError: If the constraint is not supported
    """
    constraint = constraint.strip()
    if constraint in _PRIMITIVES or constraint in _BARE_COLLECTIONS:
        return
    match = _COLLECTION.match(constraint)
    if not match:
        raise TypeMismatchError(f"Unsupported type constraint: {constraint!r}")
    validate_constraint(match.group(2))


def matches_type(value: Any, constraint: Optional[str]) -> bool:
    """True if the value satisfies the constraint. Null and unknown satisfy every type."""
    if constraint is None or value is None or is_unknown(value):
        return True

    constraint = constraint.strip()
    if constraint == "any":
        return True
    if constraint == "string":
        return isinstance(value, str)
    if constraint == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if constraint == "bool":
        return isinstance(value, bool)
    if constraint in ("list", "set"):
        return isinstance(value, (list, tuple))
    if constraint in ("map", "object"):
        return isinstance(value, dict)

    match = _COLLECTION.match(constraint)
    if not match:
        raise TypeMismatchError(f"Unsupported type constraint: {constraint!r}")

    outer, inner = match.group(1), match.group(2)
    if outer in ("list", "set"):
        return isinstance(value, (list, tuple)) and all(matches_type(item, inner) for item in value)
    return isinstance(value, dict) and all(matches_type(item, inner) for item in value.values())


def check_type(value: Any, constraint: Optional[str], subject: str, address: Optional[str] = None) -> None:
    """
    Raise if a value does not satisfy a type constraint.

    Args:
        value: Value to check
        constraint: Type constraint (None means unconstrained)
        subject: What is being checked, used in the error message
        address: Originating address for the error

    Raises:
        TypeMismatchError: If the value does not match
    """
    if not matches_type(value, constraint):
        raise TypeMismatchError(
            f"{subject} expects {constraint}, got {describe_type(value)} ({value!r})",
            address=address,
        )


def coerce_string(value: Any, constraint: Optional[str]) -> Any:
    """Convert a string given on the command line to the constrained type."""
    if not isinstance(value, str) or constraint is None:
        return value
    constraint = constraint.strip()
    if constraint in ("string", "any"):
        return value
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    return parsed if matches_type(parsed, constraint) else value


def describe_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, dict):
        return "map"
    return type(value).__name__
