"""Bind input variables: defaults, type constraints and validation rules."""

from typing import Any, Dict, List, Optional
from ..contracts.module import Variable
from ..utils.errors import TypeMismatchError, ValidationError
from ..utils.logging import get_logger
from .evaluator import Evaluator
from .types import check_type, coerce_string, describe_type, validate_constraint

logger = get_logger("evaluation.variables")


def bind_variables(
    variables: List[Variable],
    supplied: Optional[Dict[str, Any]] = None,
    coerce_strings: bool = False,
) -> Dict[str, Any]:
    """
    Bind every declared variable to its value for one run.

    Args:
        variables: Declared variables
        supplied: Caller-supplied values by name
        coerce_strings: Convert string values to the declared type (command-line input)

    Returns:
        Mapping of variable name to bound value

    Raises:
        ValidationError: If a required variable is missing or a validation rule rejects a value
        TypeMismatchError: If a value does not match the declared type
    """
    supplied = dict(supplied or {})
    declared = {variable.name for variable in variables}
    for name in sorted(set(supplied) - declared):
        logger.warning(f"Value supplied for undeclared variable '{name}' is ignored")

    bound: Dict[str, Any] = {}
    for variable in variables:
        address = f"var.{variable.name}"
        if variable.type is not None:
            validate_constraint(variable.type)

        if variable.name in supplied:
            value = supplied[variable.name]
            if coerce_strings:
                value = coerce_string(value, variable.type)
        elif variable.has_default:
            value = variable.default
        else:
            raise ValidationError(f"No value given for required variable '{variable.name}'", address=address)

        check_type(value, variable.type, f"Variable '{variable.name}'", address=address)
        _run_validation(variable, value)
        bound[variable.name] = value

    logger.debug(f"Bound {len(bound)} variables")
    return bound


def _run_validation(variable: Variable, value: Any) -> None:
    """Evaluate each validation rule with only the variable itself in scope."""
    address = f"var.{variable.name}"
    evaluator = Evaluator({variable.name: value})
    for rule in variable.validation:
        result = evaluator.evaluate(rule.condition, origin=address)
        if not isinstance(result, bool):
            raise TypeMismatchError(
                f"Validation condition must be bool, got {describe_type(result)}", address=address
            )
        if not result:
            raise ValidationError(rule.error_message, address=address)
