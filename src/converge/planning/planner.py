"""Diff the desired graph against recorded state into an ordered plan."""

import hashlib
import json
import networkx as nx
from typing import Any, Dict, List, Optional, Tuple
from ..contracts.address import Address
from ..contracts.module import Module
from ..contracts.plan import OperationKind, Plan, PlanOperation
from ..contracts.state import StateRecord
from ..evaluation.evaluator import Evaluator
from ..evaluation.unknown import UNKNOWN
from ..execution.context import RunContext
from ..providers.base import ResourceSchema
from ..utils.errors import ConvergeError, PlanConflictError, ProviderError
from ..utils.logging import get_logger

logger = get_logger("planning.planner")

ADDRESS_ORDER = Address.sort_key


def compute_fingerprint(module: Module, variables: Dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a module and its bound variables."""
    payload = {"module": module.model_dump(mode="json"), "variables": variables}
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _dependents_in_state(records: Dict[Address, StateRecord]) -> Dict[Address, List[Address]]:
    dependents: Dict[Address, List[Address]] = {}
    for address, record in records.items():
        for dependency in record.dependencies:
            dependents.setdefault(dependency, []).append(address)
    return dependents


class Planner:
    """
    Computes a plan for one run.

    The planner only reads: it loads state, optionally refreshes it through
    the providers, and never writes to the state store.
    """

    def __init__(self, context: RunContext):
        self.context = context

    def plan(self, destroy: bool = False) -> Plan:
        """
        Compute the ordered operations that converge state onto the module.

        Args:
            destroy: Plan the destruction of every recorded resource instead

        Returns:
            Plan whose operations each appear after their dependencies

        Raises:
            PlanConflictError: If the operations cannot be ordered
            ProviderError: If refresh fails
        """
        snapshot = self.context.state_store.snapshot()
        records = snapshot.records()
        if self.context.settings.refresh:
            records = self.refresh(records)

        if destroy:
            operations = self._plan_destroy(records)
            outputs: Dict[str, Any] = {}
        else:
            operations, evaluator = self._plan_desired(records)
            outputs = self._preview_outputs(evaluator)

        plan = Plan(
            operations=self._order(operations),
            outputs=outputs,
            destroy=destroy,
            state_serial=snapshot.serial,
            state_lineage=snapshot.lineage,
            fingerprint=self.fingerprint(),
        )
        summary = ", ".join(f"{count} {kind.lower()}" for kind, count in plan.summary().items() if count)
        logger.info(f"Computed plan with {len(plan.operations)} operations ({summary or 'empty'})")
        return plan

    def fingerprint(self) -> str:
        return compute_fingerprint(self.context.module, self.context.variables)

    def refresh(self, records: Dict[Address, StateRecord]) -> Dict[Address, StateRecord]:
        """
        Re-read recorded resources through their providers.

        Returns:
            Planning view of state: vanished resources dropped, drifted attributes replaced
        """
        refreshed: Dict[Address, StateRecord] = {}
        for address in sorted(records, key=ADDRESS_ORDER):
            record = records[address]
            provider = self.context.providers.for_type(address.type)
            try:
                current = provider.read(address.type, record.identity)
            except ConvergeError:
                raise
            except Exception as e:
                raise ProviderError(f"Refresh failed: {e}", address=str(address)) from e

            if current is None:
                logger.warning(f"{address} ({record.identity}) no longer exists and will be created again")
                continue
            if current != record.attributes:
                drifted = sorted(k for k in set(current) | set(record.attributes) if current.get(k) != record.attributes.get(k))
                logger.warning(f"{address} drifted outside converge: {', '.join(drifted)}")
                record = record.model_copy(update={"attributes": current})
            refreshed[address] = record
        return refreshed

    def _plan_desired(self, records: Dict[Address, StateRecord]) -> Tuple[Dict[Address, PlanOperation], Evaluator]:
        graph = self.context.graph
        evaluator = Evaluator(self.context.variables, instances_of=graph.instances_of)
        operations: Dict[Address, PlanOperation] = {}

        for address in graph.topological_order():
            instance = graph.get_instance(address)
            schema = self.context.providers.schema(address.type)
            config = evaluator.evaluate_instance(instance)
            schema.check(address, config)

            record = records.get(address)
            operation = self._classify(address, schema, config, record)
            operation.after = self._planned_view(schema, config, record, operation.kind)
            operation.dependencies = self._dependencies(address, operations)
            evaluator.resolve(address, operation.after)
            operations[address] = operation
            logger.debug(f"{address}: {operation.kind}")

        dependents = _dependents_in_state(records)
        for address, record in records.items():
            if address not in graph:
                operations[address] = PlanOperation(
                    kind=OperationKind.DESTROY,
                    address=address,
                    identity=record.identity,
                    before=record.attributes,
                )

        for address, operation in operations.items():
            waiting = sorted((a for a in dependents.get(address, []) if a in operations), key=ADDRESS_ORDER)
            if operation.kind == OperationKind.DESTROY:
                operation.dependencies = waiting
                operation.destroy_dependencies = waiting
            elif operation.kind == OperationKind.REPLACE:
                operation.destroy_dependencies = [
                    a for a in waiting if operations[a].kind in (OperationKind.REPLACE, OperationKind.DESTROY)
                ]
        return operations, evaluator

    def _plan_destroy(self, records: Dict[Address, StateRecord]) -> Dict[Address, PlanOperation]:
        dependents = _dependents_in_state(records)
        operations = {}
        for address, record in records.items():
            waiting = sorted((a for a in dependents.get(address, []) if a in records), key=ADDRESS_ORDER)
            operations[address] = PlanOperation(
                kind=OperationKind.DESTROY,
                address=address,
                identity=record.identity,
                before=record.attributes,
                dependencies=waiting,
                destroy_dependencies=waiting,
            )
        return operations

    def _classify(
        self,
        address: Address,
        schema: ResourceSchema,
        config: Dict[str, Any],
        record: Optional[StateRecord],
    ) -> PlanOperation:
        if record is None:
            return PlanOperation(kind=OperationKind.CREATE, address=address, changed_attributes=sorted(config))

        recorded = record.attributes
        compared = set(config) | {
            name for name in recorded if schema.get(name) is not None and not schema.is_computed(name)
        }
        changed = sorted(name for name in compared if config.get(name) != recorded.get(name))
        reasons = [name for name in changed if schema.is_force_new(name)]

        if reasons:
            kind = OperationKind.REPLACE
        elif changed:
            kind = OperationKind.UPDATE
        else:
            kind = OperationKind.NO_OP

        # Recorded dependencies drive destroy ordering.
        stale = set(record.dependencies) != self.context.graph.dependencies_of(address)
        return PlanOperation(
            kind=kind,
            address=address,
            identity=record.identity,
            before=recorded,
            changed_attributes=changed,
            replace_reasons=reasons,
            refresh_record=kind == OperationKind.NO_OP and stale,
        )

    def _planned_view(
        self,
        schema: ResourceSchema,
        config: Dict[str, Any],
        record: Optional[StateRecord],
        kind: OperationKind,
    ) -> Dict[str, Any]:
        """Attributes dependents see: configured values plus computed ones."""
        view = dict(config)
        keeps_instance = kind in (OperationKind.NO_OP, OperationKind.UPDATE)

        if keeps_instance:
            for name, value in record.attributes.items():
                if name not in view and (schema.get(name) is None or schema.is_computed(name)):
                    view[name] = value

        for name in schema.computed:
            if name in view:
                continue
            if record is not None and kind == OperationKind.REPLACE and schema.is_stable(name) and name in record.attributes:
                view[name] = record.attributes[name]
            else:
                view[name] = UNKNOWN

        view.setdefault("id", record.identity if keeps_instance else UNKNOWN)
        return view

    def _dependencies(self, address: Address, operations: Dict[Address, PlanOperation]) -> List[Address]:
        graph = self.context.graph
        dependencies = []
        for target in graph.dependencies_of(address):
            if operations[target].kind == OperationKind.REPLACE:
                consumed = graph.consumed_attributes(address, target)
                schema = self.context.providers.schema(target.type)
                if consumed and all(schema.is_stable(name) for name in consumed):
                    logger.debug(f"{address} only reads stable attributes of {target}; not waiting for its replacement")
                    continue
            dependencies.append(target)
        return sorted(dependencies, key=ADDRESS_ORDER)

    def _preview_outputs(self, evaluator: Evaluator) -> Dict[str, Any]:
        return {
            output.name: evaluator.evaluate(output.value, origin=f"output.{output.name}")
            for output in self.context.module.outputs
        }

    def _order(self, operations: Dict[Address, PlanOperation]) -> List[PlanOperation]:
        ordering = nx.DiGraph()
        for address, operation in operations.items():
            ordering.add_node(address)
            for dependency in operation.dependencies:
                ordering.add_edge(dependency, address)
        try:
            order = list(nx.lexicographical_topological_sort(ordering, key=ADDRESS_ORDER))
        except nx.NetworkXUnfeasible:
            raise PlanConflictError("Planned operations depend on each other in a cycle")
        return [operations[address] for address in order]
