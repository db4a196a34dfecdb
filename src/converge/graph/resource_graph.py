"""Build the directed dependency graph of resource instances."""

import networkx as nx
from typing import Any, Dict, List, Optional, Set, Tuple
from ..contracts.address import Address
from ..contracts.expressions import ExpressionNode, FunctionCall, InstanceRef, ResourceRef, Splat, VariableRef, walk
from ..contracts.module import Module, Output, ResourceDeclaration, ResourceInstance
from ..evaluation.evaluator import Evaluator
from ..evaluation.functions import BUILTIN_FUNCTIONS
from ..evaluation.types import describe_type
from ..utils.errors import (
    ConvergeError,
    CycleError,
    EvaluationError,
    GraphConstructionError,
    PlanConflictError,
    TypeMismatchError,
    UnknownReferenceError,
)
from ..utils.logging import get_logger

logger = get_logger("graph.resource_graph")


class ResourceGraph:
    """Directed dependency graph: nodes=resource instances, edges=dependent -> dependency."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._instances: Dict[Address, ResourceInstance] = {}
        self._declarations: Dict[Tuple[str, str], ResourceDeclaration] = {}
        self._expanded: Dict[Tuple[str, str], List[Address]] = {}

    def build(self, module: Module, variables: Dict[str, Any]) -> None:
        """
        Build the complete graph for a module.

        Repetition (count/for_each) is expanded before any edge is discovered.

        Args:
            module: Declared variables, resources and outputs
            variables: Bound variable values

        Raises:
            PlanConflictError: If two instances share an address
            UnknownReferenceError: If an expression references something undeclared
            CycleError: If the references form a cycle
        """
        evaluator = Evaluator(variables)
        try:
            for declaration in module.resources:
                key = (declaration.type, declaration.name)
                if key in self._declarations:
                    raise PlanConflictError(
                        "Resource declared more than once", address=declaration.base_address
                    )
                self._declarations[key] = declaration

            for declaration in module.resources:
                self._check_repetition_references(declaration, variables)
                for instance in self._expand(declaration, evaluator):
                    self.add_instance(instance)

            for instance in list(self._instances.values()):
                self._add_reference_edges(instance, variables, evaluator)
                self._add_explicit_edges(instance)

            for output in module.outputs:
                self._check_output(output, variables, evaluator)

            self._check_acyclic()

        except ConvergeError:
            raise
        except Exception as e:
            raise GraphConstructionError(f"Failed to build resource graph: {e}") from e

        logger.info(
            f"Built resource graph with {self.graph.number_of_nodes()} nodes "
            f"and {self.graph.number_of_edges()} edges"
        )

    def add_instance(self, instance: ResourceInstance) -> None:
        """Add one expanded instance as a node."""
        if instance.address in self._instances:
            raise PlanConflictError("Address appears more than once in the desired graph", address=str(instance.address))
        self.graph.add_node(instance.address, instance=instance)
        self._instances[instance.address] = instance
        self._expanded.setdefault(instance.address.declaration_key(), []).append(instance.address)

    def add_dependency(self, source: Address, target: Address, attribute: Optional[str]) -> None:
        """Record that ``source`` consumes ``attribute`` of ``target`` (None = whole resource)."""
        if self.graph.has_edge(source, target):
            consumed = self.graph.edges[source, target]["attributes"]
            if consumed is not None:
                if attribute is None:
                    self.graph.edges[source, target]["attributes"] = None
                else:
                    consumed.add(attribute)
            return
        self.graph.add_edge(source, target, attributes=None if attribute is None else {attribute})
        logger.debug(f"Added dependency edge: {source} -> {target}")

    def _expand(self, declaration: ResourceDeclaration, evaluator: Evaluator) -> List[ResourceInstance]:
        base = declaration.base_address

        if declaration.count is not None:
            count = evaluator.evaluate(declaration.count, origin=base)
            if isinstance(count, bool) or not isinstance(count, int):
                raise TypeMismatchError(f"count must be a whole number, got {describe_type(count)}", address=base)
            if count < 0:
                raise TypeMismatchError(f"count must not be negative, got {count}", address=base)
            return [
                ResourceInstance(
                    address=Address(type=declaration.type, name=declaration.name, index=i),
                    declaration=declaration,
                    count_index=i,
                )
                for i in range(count)
            ]

        if declaration.for_each is not None:
            collection = evaluator.evaluate(declaration.for_each, origin=base)
            if isinstance(collection, dict):
                items = [(str(key), collection[key]) for key in sorted(collection)]
            elif isinstance(collection, (list, tuple)):
                items = []
                for key in collection:
                    if not isinstance(key, str):
                        raise TypeMismatchError(
                            f"for_each over a list requires strings, got {describe_type(key)}", address=base
                        )
                    items.append((key, key))
            else:
                raise TypeMismatchError(
                    f"for_each must be a map or a list of strings, got {describe_type(collection)}", address=base
                )
            return [
                ResourceInstance(
                    address=Address(type=declaration.type, name=declaration.name, index=key),
                    declaration=declaration,
                    each_key=key,
                    each_value=value,
                )
                for key, value in items
            ]

        return [ResourceInstance(address=Address(type=declaration.type, name=declaration.name), declaration=declaration)]

    def _check_repetition_references(self, declaration: ResourceDeclaration, variables: Dict[str, Any]) -> None:
        for expr in (declaration.count, declaration.for_each):
            if expr is None:
                continue
            for node in walk(expr):
                if isinstance(node, (ResourceRef, Splat)):
                    raise EvaluationError(
                        f"count/for_each must be known before apply and cannot reference {node.type}.{node.name}",
                        address=declaration.base_address,
                    )
                self._check_common(node, variables, declaration.base_address, declaration)

    def _check_common(
        self,
        node: ExpressionNode,
        variables: Dict[str, Any],
        where: str,
        declaration: Optional[ResourceDeclaration],
    ) -> None:
        """Checks shared by resource attributes, repetition and outputs."""
        if isinstance(node, VariableRef) and node.name not in variables:
            raise UnknownReferenceError(f"Reference to undeclared variable 'var.{node.name}'", address=where)

        if isinstance(node, FunctionCall) and node.function not in BUILTIN_FUNCTIONS:
            raise UnknownReferenceError(f"Call to unknown function '{node.function}'", address=where)

        if isinstance(node, InstanceRef):
            if node.name == "count.index" and (declaration is None or declaration.count is None):
                raise UnknownReferenceError("'count.index' used outside a resource with count", address=where)
            if node.name != "count.index" and (declaration is None or declaration.for_each is None):
                raise UnknownReferenceError(f"'{node.name}' used outside a resource with for_each", address=where)

    def _add_reference_edges(self, instance: ResourceInstance, variables: Dict[str, Any], evaluator: Evaluator) -> None:
        where = str(instance.address)
        for expr in instance.declaration.attributes.values():
            for node in walk(expr):
                self._check_common(node, variables, where, instance.declaration)
                if isinstance(node, ResourceRef):
                    target = self._resolve_reference(node, evaluator, instance, where)
                    self.add_dependency(instance.address, target, node.attribute)
                elif isinstance(node, Splat):
                    for target in self._splat_targets(node, where):
                        self.add_dependency(instance.address, target, node.attribute)

    def _add_explicit_edges(self, instance: ResourceInstance) -> None:
        where = str(instance.address)
        for text in instance.declaration.depends_on:
            try:
                address = Address.parse(text)
            except ValueError as e:
                raise UnknownReferenceError(str(e), address=where)

            declaration = self._declarations.get(address.declaration_key())
            if declaration is None:
                raise UnknownReferenceError(f"depends_on references undeclared resource {address.base}", address=where)

            if address.index is None and declaration.is_repeated:
                targets = self.instances_of(address.type, address.name)
            else:
                targets = [address]

            for target in targets:
                if target not in self._instances:
                    raise UnknownReferenceError(f"depends_on references {target}, which does not exist", address=where)
                self.add_dependency(instance.address, target, None)

    def _resolve_reference(
        self,
        node: ResourceRef,
        evaluator: Evaluator,
        instance: Optional[ResourceInstance],
        where: str,
    ) -> Address:
        declaration = self._declarations.get((node.type, node.name))
        if declaration is None:
            raise UnknownReferenceError(f"Reference to undeclared resource {node.type}.{node.name}", address=where)

        if node.index is None and declaration.is_repeated:
            raise TypeMismatchError(
                f"{declaration.base_address} uses count/for_each; reference one instance by index or use [*]",
                address=where,
            )
        if node.index is not None and not declaration.is_repeated:
            raise TypeMismatchError(f"{declaration.base_address} is not repeated and cannot be indexed", address=where)

        for index_node in walk(node.index) if node.index is not None else []:
            if isinstance(index_node, (ResourceRef, Splat)):
                raise EvaluationError(
                    f"Index of {declaration.base_address} must be known before apply", address=where
                )

        target = evaluator.target_address(node, instance=instance, origin=where)
        if target not in self._instances:
            raise UnknownReferenceError(f"Reference to {target}, which does not exist", address=where)
        return target

    def _splat_targets(self, node: Splat, where: str) -> List[Address]:
        if (node.type, node.name) not in self._declarations:
            raise UnknownReferenceError(f"Reference to undeclared resource {node.type}.{node.name}", address=where)
        return self.instances_of(node.type, node.name)

    def _check_output(self, output: Output, variables: Dict[str, Any], evaluator: Evaluator) -> None:
        where = f"output.{output.name}"
        for node in walk(output.value):
            self._check_common(node, variables, where, None)
            if isinstance(node, ResourceRef):
                self._resolve_reference(node, evaluator, None, where)
            elif isinstance(node, Splat):
                self._splat_targets(node, where)

    def _check_acyclic(self) -> None:
        try:
            cycle = nx.find_cycle(self.graph)
        except nx.NetworkXNoCycle:
            return
        raise CycleError([str(source) for source, _ in cycle])

    def topological_order(self) -> List[Address]:
        """All addresses, every dependency before its dependents (deterministic)."""
        return list(nx.lexicographical_topological_sort(self.graph.reverse(copy=False), key=Address.sort_key))

    def instances_of(self, resource_type: str, name: str) -> List[Address]:
        """Instances of one declaration in index order."""
        return sorted(self._expanded.get((resource_type, name), []), key=Address.sort_key)

    def dependencies_of(self, address: Address) -> Set[Address]:
        """Direct dependencies of an address."""
        if address not in self.graph:
            return set()
        return set(self.graph.successors(address))

    def consumed_attributes(self, source: Address, target: Address) -> Optional[Set[str]]:
        """Attributes of ``target`` that ``source`` reads; None means the whole resource."""
        return self.graph.edges[source, target]["attributes"]

    def get_downstream_resources(self, address: Address) -> Set[Address]:
        """Get all resources that depend on the given resource (downstream)."""
        if address not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, address))

    def get_upstream_resources(self, address: Address) -> Set[Address]:
        """Get all resources the given resource depends on (upstream)."""
        if address not in self.graph:
            return set()
        return set(nx.descendants(self.graph, address))

    def get_instance(self, address: Address) -> Optional[ResourceInstance]:
        return self._instances.get(address)

    def get_all_instances(self) -> List[ResourceInstance]:
        return [self._instances[address] for address in self.topological_order()]

    def __contains__(self, address: Address) -> bool:
        return address in self._instances

    def __len__(self) -> int:
        return len(self._instances)
