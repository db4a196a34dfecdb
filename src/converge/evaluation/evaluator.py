"""Evaluate expressions against bound variables and resolved resource attributes."""

import copy
from typing import Any, Callable, Dict, List, Optional
from ..contracts.address import Address
from ..contracts.expressions import (
    Conditional,
    ExpressionNode,
    FunctionCall,
    IndexOf,
    InstanceRef,
    ListExpr,
    LiteralValue,
    MapExpr,
    ResourceRef,
    Splat,
    VariableRef,
)
from ..contracts.module import ResourceInstance
from ..utils.errors import EvaluationError, TypeMismatchError, UnknownReferenceError
from ..utils.logging import get_logger
from .functions import BUILTIN_FUNCTIONS
from .types import describe_type
from .unknown import UNKNOWN, contains_unknown, is_unknown

logger = get_logger("evaluation.evaluator")

InstanceLister = Callable[[str, str], List[Address]]


class Evaluator:
    """
    Evaluates expression trees.

    The environment maps each resolved address to its attribute view. Callers
    evaluate instances in dependency order and publish each result with
    ``resolve()`` before evaluating dependents. Instance results are memoised
    for the lifetime of the evaluator.
    """

    def __init__(
        self,
        variables: Dict[str, Any],
        instances_of: Optional[InstanceLister] = None,
        environment: Optional[Dict[Address, Dict[str, Any]]] = None,
    ):
        self.variables = variables
        self._instances_of = instances_of
        self.environment: Dict[Address, Dict[str, Any]] = environment if environment is not None else {}
        self._memo: Dict[Address, Dict[str, Any]] = {}

    def resolve(self, address: Address, attributes: Dict[str, Any]) -> None:
        """Publish the attribute view dependents of ``address`` will see."""
        self.environment[address] = attributes

    def evaluate_instance(self, instance: ResourceInstance) -> Dict[str, Any]:
        """Evaluate every attribute of an instance (memoised per address)."""
        if instance.address in self._memo:
            return self._memo[instance.address]

        values = {
            name: self.evaluate(expr, instance=instance)
            for name, expr in instance.declaration.attributes.items()
        }
        self._memo[instance.address] = values
        logger.debug(f"Evaluated {instance.address}: {sorted(values)}")
        return values

    def evaluate(
        self,
        expr: ExpressionNode,
        instance: Optional[ResourceInstance] = None,
        origin: Optional[str] = None,
    ) -> Any:
        """
        Evaluate a single expression.

        Args:
            expr: Expression to evaluate
            instance: Instance whose count/each keys are in scope
            origin: Label used in errors when no instance is given

        Returns:
            The concrete value, or UNKNOWN if it depends on a value known only after apply

        Raises:
            UnknownReferenceError: If a variable, instance key, resource or function is unknown
            TypeMismatchError: If a value has the wrong type for its use
            EvaluationError: For other evaluation failures
        """
        where = str(instance.address) if instance is not None else origin

        if isinstance(expr, LiteralValue):
            return copy.deepcopy(expr.value)

        if isinstance(expr, VariableRef):
            if expr.name not in self.variables:
                raise UnknownReferenceError(f"Reference to undeclared variable 'var.{expr.name}'", address=where)
            return copy.deepcopy(self.variables[expr.name])

        if isinstance(expr, InstanceRef):
            return self._instance_key(expr, instance, where)

        if isinstance(expr, ResourceRef):
            return self._resource_ref(expr, instance, where)

        if isinstance(expr, Splat):
            return self._splat(expr, where)

        if isinstance(expr, Conditional):
            condition = self.evaluate(expr.condition, instance, origin)
            if is_unknown(condition):
                return UNKNOWN
            if not isinstance(condition, bool):
                raise TypeMismatchError(
                    f"Condition must be bool, got {describe_type(condition)}", address=where
                )
            branch = expr.when_true if condition else expr.when_false
            return self.evaluate(branch, instance, origin)

        if isinstance(expr, IndexOf):
            collection = self.evaluate(expr.collection, instance, origin)
            key = self.evaluate(expr.key, instance, origin)
            return self._index(collection, key, where)

        if isinstance(expr, FunctionCall):
            return self._call(expr, instance, origin, where)

        if isinstance(expr, ListExpr):
            return [self.evaluate(item, instance, origin) for item in expr.items]

        if isinstance(expr, MapExpr):
            return {key: self.evaluate(value, instance, origin) for key, value in expr.entries.items()}

        raise EvaluationError(f"Unsupported expression: {type(expr).__name__}", address=where)

    def target_address(
        self,
        expr: ResourceRef,
        instance: Optional[ResourceInstance] = None,
        origin: Optional[str] = None,
    ) -> Address:
        """Address a resource reference points at, with its index evaluated."""
        where = str(instance.address) if instance is not None else origin
        if expr.index is None:
            return Address(type=expr.type, name=expr.name)

        index = self.evaluate(expr.index, instance, origin)
        if is_unknown(index):
            raise EvaluationError(
                f"Index of {expr.type}.{expr.name} must be known before apply", address=where
            )
        if isinstance(index, bool) or not isinstance(index, (int, str)):
            raise TypeMismatchError(
                f"Index of {expr.type}.{expr.name} must be a number or string, got {describe_type(index)}",
                address=where,
            )
        return Address(type=expr.type, name=expr.name, index=index)

    def _instance_key(self, expr: InstanceRef, instance: Optional[ResourceInstance], where: Optional[str]) -> Any:
        if expr.name == "count.index":
            if instance is None or instance.count_index is None:
                raise UnknownReferenceError("'count.index' used outside a resource with count", address=where)
            return instance.count_index

        if instance is None or instance.each_key is None:
            raise UnknownReferenceError(f"'{expr.name}' used outside a resource with for_each", address=where)
        if expr.name == "each.key":
            return instance.each_key
        return copy.deepcopy(instance.each_value)

    def _lookup(self, target: Address, where: Optional[str]) -> Dict[str, Any]:
        if target not in self.environment:
            raise EvaluationError(
                f"Attributes of {target} are not available; resource values are only known "
                f"after its dependencies are resolved",
                address=where,
            )
        return self.environment[target]

    def _resource_ref(self, expr: ResourceRef, instance: Optional[ResourceInstance], where: Optional[str]) -> Any:
        target = self.target_address(expr, instance, where)
        attributes = self._lookup(target, where)
        if expr.attribute is None:
            return copy.deepcopy(attributes)
        if expr.attribute not in attributes:
            raise UnknownReferenceError(f"{target} has no attribute '{expr.attribute}'", address=where)
        return copy.deepcopy(attributes[expr.attribute])

    def _splat(self, expr: Splat, where: Optional[str]) -> List[Any]:
        if self._instances_of is None:
            raise EvaluationError(
                f"{expr.type}.{expr.name}[*].{expr.attribute} is only known after resources are resolved",
                address=where,
            )
        values = []
        for target in self._instances_of(expr.type, expr.name):
            attributes = self._lookup(target, where)
            if expr.attribute not in attributes:
                raise UnknownReferenceError(f"{target} has no attribute '{expr.attribute}'", address=where)
            values.append(copy.deepcopy(attributes[expr.attribute]))
        return values

    def _index(self, collection: Any, key: Any, where: Optional[str]) -> Any:
        if is_unknown(collection) or is_unknown(key):
            return UNKNOWN
        if isinstance(collection, (list, tuple)):
            if isinstance(key, bool) or not isinstance(key, int):
                raise TypeMismatchError(f"List index must be a number, got {describe_type(key)}", address=where)
            if not -len(collection) <= key < len(collection):
                raise EvaluationError(f"Index {key} out of range for list of length {len(collection)}", address=where)
            return collection[key]
        if isinstance(collection, dict):
            if not isinstance(key, str):
                raise TypeMismatchError(f"Map key must be a string, got {describe_type(key)}", address=where)
            if key not in collection:
                raise EvaluationError(f"Key {key!r} not found in map", address=where)
            return collection[key]
        raise TypeMismatchError(f"Cannot index into {describe_type(collection)}", address=where)

    def _call(self, expr: FunctionCall, instance: Optional[ResourceInstance], origin: Optional[str], where: Optional[str]) -> Any:
        function = BUILTIN_FUNCTIONS.get(expr.function)
        if function is None:
            raise UnknownReferenceError(f"Call to unknown function '{expr.function}'", address=where)

        args = [self.evaluate(arg, instance, origin) for arg in expr.args]
        if contains_unknown(args):
            return UNKNOWN
        try:
            return function(*args)
        except EvaluationError as e:
            raise type(e)(e.message, address=where) from e
        except TypeError as e:
            raise TypeMismatchError(f"{expr.function}(): {e}", address=where) from e
