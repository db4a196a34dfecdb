"""Execute a plan against provider plugins with bounded parallelism."""

import networkx as nx
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple
from ..contracts.address import Address
from ..contracts.plan import OperationKind, Plan, PlanOperation
from ..contracts.results import ApplyResult, OperationOutcome, OperationStatus, RunStatus
from ..contracts.state import StateRecord
from ..evaluation.evaluator import Evaluator
from ..evaluation.unknown import contains_unknown
from ..utils.errors import ConvergeError, EvaluationError, ProviderError
from ..utils.logging import get_logger
from .context import RunContext

logger = get_logger("execution.executor")

DESTROY = "destroy"
APPLY = "apply"

PhaseKey = Tuple[Address, str]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_phase_graph(plan: Plan) -> nx.DiGraph:
    """
    Expand operations into phases; edges run from prerequisite to phase.

    DESTROY and REPLACE get a destroy phase, CREATE/UPDATE/REPLACE an apply
    phase. NO_OP has no phase and counts as done.
    """
    operations = {op.address: op for op in plan.operations}

    def final_phase(address: Address) -> Optional[PhaseKey]:
        op = operations.get(address)
        if op is None or op.kind == OperationKind.NO_OP:
            return None
        return (address, DESTROY) if op.kind == OperationKind.DESTROY else (address, APPLY)

    phases = nx.DiGraph()
    for op in plan.operations:
        if op.kind in (OperationKind.DESTROY, OperationKind.REPLACE):
            phases.add_node((op.address, DESTROY), operation=op)
        if op.kind in (OperationKind.CREATE, OperationKind.UPDATE, OperationKind.REPLACE):
            phases.add_node((op.address, APPLY), operation=op)

    for op in plan.operations:
        if (op.address, APPLY) in phases:
            for dependency in op.dependencies:
                prerequisite = final_phase(dependency)
                if prerequisite is not None:
                    phases.add_edge(prerequisite, (op.address, APPLY))
            if op.kind == OperationKind.REPLACE:
                phases.add_edge((op.address, DESTROY), (op.address, APPLY))

        if (op.address, DESTROY) in phases:
            for dependent in op.destroy_dependencies:
                other = operations.get(dependent)
                if other is None:
                    continue
                if other.kind in (OperationKind.DESTROY, OperationKind.REPLACE):
                    phases.add_edge((dependent, DESTROY), (op.address, DESTROY))
                else:
                    prerequisite = final_phase(dependent)
                    if prerequisite is not None:
                        phases.add_edge(prerequisite, (op.address, DESTROY))
    return phases


class Executor:
    """
    Runs the phases of a plan on a thread pool.

    Provider calls happen on worker threads; scheduling, evaluation and
    bookkeeping stay on the calling thread. A phase starts only once every
    prerequisite phase succeeded. A failure marks the operation FAILED and
    every operation depending on it SKIPPED; independent operations continue.
    """

    def __init__(self, context: RunContext):
        self.context = context
        self._operations: Dict[Address, PlanOperation] = {}
        self._outcomes: Dict[Address, Dict[str, Any]] = {}
        self._known: Dict[Address, Dict[str, Any]] = {}
        self._evaluator: Optional[Evaluator] = None

    def execute(self, plan: Plan) -> ApplyResult:
        """
        Execute a plan.

        Args:
            plan: Plan computed against the current state

        Returns:
            ApplyResult with per-address outcomes and outputs
        """
        run_id = self.context.run_id
        phases = build_phase_graph(plan)
        if not nx.is_directed_acyclic_graph(phases):
            cycle = " -> ".join(f"{phase}({address})" for (address, phase), _ in nx.find_cycle(phases))
            return ApplyResult.aborted(run_id, f"Plan phases cannot be ordered: {cycle}")

        self._operations = {op.address: op for op in plan.operations}
        self._outcomes = {op.address: {"status": None, "error": None, "identity": op.identity} for op in plan.operations}
        self._known = self._initial_environment()
        self._evaluator = Evaluator(
            self.context.variables, instances_of=self.context.graph.instances_of, environment=self._known
        )

        for op in plan.operations:
            if op.kind == OperationKind.NO_OP:
                if op.refresh_record:
                    self._refresh_record(op.address)
                now = _now()
                self._outcomes[op.address].update(status=OperationStatus.SUCCESS, started_at=now, finished_at=now)

        self._schedule(plan, phases)

        status = self._run_status()
        outputs = {} if plan.destroy or status == RunStatus.ABORTED else self._final_outputs()
        if status != RunStatus.ABORTED:
            self.context.state_store.save_outputs(outputs)

        result = ApplyResult(
            run_id=run_id,
            status=status,
            outcomes=[self._outcome(op) for op in plan.operations],
            outputs=outputs,
            message="Run cancelled" if status == RunStatus.ABORTED else None,
        )
        logger.info(f"Apply {run_id} finished: {status.value}")
        return result

    def _schedule(self, plan: Plan, phases: nx.DiGraph) -> None:
        order = {op.address: position for position, op in enumerate(plan.operations)}
        pending: Set[PhaseKey] = set(phases.nodes)
        done: Set[PhaseKey] = set()
        running: Dict[Future, PhaseKey] = {}
        parallelism = self.context.settings.parallelism

        with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="converge-apply") as pool:
            while True:
                if not self.context.cancelled:
                    ready = sorted(
                        (key for key in pending if all(p in done for p in phases.predecessors(key))),
                        key=lambda key: (order[key[0]], key[1] != DESTROY),
                    )
                    for key in ready:
                        if self.context.cancelled or len(running) >= parallelism:
                            break
                        pending.discard(key)
                        try:
                            values = self._prepare(key)
                        except ConvergeError as e:
                            self._fail(key, e, phases, pending)
                            continue
                        self._start(key[0])
                        running[pool.submit(self._run_phase, key, values)] = key

                if not running:
                    break

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    key = running.pop(future)
                    try:
                        record = future.result()
                    except Exception as e:
                        self._fail(key, e, phases, pending)
                        continue
                    done.add(key)
                    self._complete(key, record, phases)

        for address, _ in pending:
            outcome = self._outcomes[address]
            if outcome["status"] is None:
                outcome["status"] = OperationStatus.CANCELED if self.context.cancelled else OperationStatus.SKIPPED

    def _initial_environment(self) -> Dict[Address, Dict[str, Any]]:
        environment = {}
        for address, record in self.context.state_store.load().items():
            attributes = dict(record.attributes)
            attributes.setdefault("id", record.identity)
            environment[address] = attributes
        return environment

    def _prepare(self, key: PhaseKey) -> Optional[Dict[str, Any]]:
        """Evaluate the instance against concrete upstream values before its apply phase."""
        address, phase = key
        if phase == DESTROY:
            return None

        instance = self.context.graph.get_instance(address)
        if instance is None:
            raise EvaluationError("Resource is no longer declared", address=str(address))
        values = self._evaluator.evaluate_instance(instance)
        if contains_unknown(values):
            unknown = sorted(name for name, value in values.items() if contains_unknown(value))
            raise EvaluationError(f"Values still unknown after dependencies were applied: {', '.join(unknown)}", address=str(address))
        self.context.providers.schema(address.type).check(address, values)
        return values

    def _run_phase(self, key: PhaseKey, values: Optional[Dict[str, Any]]) -> Optional[StateRecord]:
        """Provider call and state commit for one phase (runs on a worker thread)."""
        address, phase = key
        op = self._operations[address]
        store = self.context.state_store
        try:
            provider = self.context.providers.for_type(address.type)
            if phase == DESTROY:
                logger.info(f"{address}: destroying {op.identity}")
                provider.delete(address.type, op.identity)
                store.remove(address)
                return None

            if op.kind == OperationKind.UPDATE:
                logger.info(f"{address}: updating {op.identity}")
                attributes = provider.update(address.type, op.identity, values)
                identity = op.identity
            else:
                logger.info(f"{address}: creating")
                identity, attributes = provider.create(address.type, values)
        except ConvergeError:
            raise
        except Exception as e:
            raise ProviderError(str(e) or type(e).__name__, address=str(address)) from e

        previous = store.get(address) if op.kind == OperationKind.UPDATE else None
        record = StateRecord(
            address=address,
            identity=identity,
            attributes=attributes,
            dependencies=sorted(self.context.graph.dependencies_of(address), key=Address.sort_key),
        )
        if previous is not None:
            record.created_at = previous.created_at
        store.commit(address, record)
        return record

    def _refresh_record(self, address: Address) -> None:
        """Rewrite the recorded dependencies of an unchanged resource."""
        store = self.context.state_store
        record = store.get(address)
        if record is None:
            return
        dependencies = sorted(self.context.graph.dependencies_of(address), key=Address.sort_key)
        store.commit(address, record.model_copy(update={"dependencies": dependencies, "updated_at": _now()}))
        logger.info(f"{address}: recorded dependencies updated")

    def _start(self, address: Address) -> None:
        outcome = self._outcomes[address]
        outcome.setdefault("started_at", _now())

    def _complete(self, key: PhaseKey, record: Optional[StateRecord], phases: nx.DiGraph) -> None:
        address, phase = key
        op = self._operations[address]
        outcome = self._outcomes[address]

        if record is not None:
            attributes = dict(record.attributes)
            attributes.setdefault("id", record.identity)
            self._known[address] = attributes
            outcome["identity"] = record.identity
        elif op.kind == OperationKind.DESTROY:
            self._known.pop(address, None)
            outcome["identity"] = None

        last_phase = phase == APPLY or op.kind == OperationKind.DESTROY
        if last_phase:
            outcome.update(status=OperationStatus.SUCCESS, finished_at=_now())
            logger.info(f"{address}: {op.kind} complete")

    def _fail(self, key: PhaseKey, error: Exception, phases: nx.DiGraph, pending: Set[PhaseKey]) -> None:
        address, phase = key
        message = error.message if isinstance(error, ConvergeError) else str(error)
        logger.error(f"{address}: {phase} failed: {message}")
        self._outcomes[address].update(status=OperationStatus.FAILED, error=message, finished_at=_now())

        for dependent in nx.descendants(phases, key):
            pending.discard(dependent)
            skipped = self._outcomes[dependent[0]]
            if skipped["status"] is None and dependent[0] != address:
                skipped.update(status=OperationStatus.SKIPPED, error=f"Dependency {address} failed")
                logger.warning(f"{dependent[0]}: skipped because {address} failed")

    def _run_status(self) -> RunStatus:
        statuses = [outcome["status"] for outcome in self._outcomes.values()]
        if OperationStatus.CANCELED in statuses:
            return RunStatus.ABORTED
        if OperationStatus.FAILED in statuses or OperationStatus.SKIPPED in statuses:
            return RunStatus.PARTIAL_FAILURE
        return RunStatus.SUCCESS

    def _final_outputs(self) -> Dict[str, Any]:
        evaluator = Evaluator(
            self.context.variables, instances_of=self.context.graph.instances_of, environment=self._known
        )
        outputs = {}
        for output in self.context.module.outputs:
            try:
                outputs[output.name] = evaluator.evaluate(output.value, origin=f"output.{output.name}")
            except ConvergeError as e:
                logger.warning(f"Output '{output.name}' is not available: {e}")
        return outputs

    def _outcome(self, op: PlanOperation) -> OperationOutcome:
        outcome = self._outcomes[op.address]
        return OperationOutcome(
            address=op.address,
            kind=op.kind,
            status=outcome["status"] or OperationStatus.SKIPPED,
            error=outcome["error"],
            identity=outcome["identity"],
            started_at=outcome.get("started_at"),
            finished_at=outcome.get("finished_at"),
        )
