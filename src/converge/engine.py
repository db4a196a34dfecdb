"""Engine facade: binds variables, builds the graph, locks state, plans and applies."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union
from .config.settings import EngineSettings
from .contracts.module import Module
from .contracts.plan import Plan
from .contracts.results import ApplyResult
from .evaluation.variables import bind_variables
from .execution.context import RunContext
from .execution.executor import Executor
from .graph.resource_graph import ResourceGraph
from .planning.planner import Planner
from .providers.base import Provider
from .providers.registry import ProviderRegistry
from .state.file_store import FileStateStore
from .state.store import StateStore
from .utils.errors import StalePlanError
from .utils.logging import get_logger

logger = get_logger("engine")


class Run:
    """One locked plan+apply cycle. Obtained from ``Engine.run()``."""

    def __init__(self, context: RunContext):
        self.context = context

    @property
    def graph(self) -> ResourceGraph:
        return self.context.graph

    @property
    def variables(self) -> Dict[str, Any]:
        return self.context.variables

    def plan(self, destroy: bool = False, pin_state: bool = False) -> Plan:
        """
        Compute a plan. Side-effect free unless ``pin_state`` is set.

        Args:
            destroy: Plan the destruction of every recorded resource
            pin_state: Write the empty state document first when none exists,
                so a plan applied by a later run matches its lineage
        """
        if pin_state:
            self.context.state_store.initialize()
        return Planner(self.context).plan(destroy=destroy)

    def apply(self, plan: Optional[Plan] = None) -> ApplyResult:
        """
        Apply a plan, computing one first if none is given.

        Raises:
            StalePlanError: If the plan was computed against other state or configuration
        """
        if plan is None:
            plan = self.plan()
        else:
            self.check_fresh(plan)
        return Executor(self.context).execute(plan)

    def destroy(self) -> ApplyResult:
        return self.apply(self.plan(destroy=True))

    def outputs(self) -> Dict[str, Any]:
        """Outputs recorded by the last apply."""
        return self.context.state_store.snapshot().outputs

    def cancel(self) -> None:
        self.context.cancel()

    def check_fresh(self, plan: Plan) -> None:
        snapshot = self.context.state_store.snapshot()
        if plan.state_lineage != snapshot.lineage:
            raise StalePlanError(
                f"Plan was computed against state lineage {plan.state_lineage}, not {snapshot.lineage}"
            )
        if plan.state_serial != snapshot.serial:
            raise StalePlanError(
                f"State changed since the plan was computed (serial {plan.state_serial} -> {snapshot.serial})"
            )
        fingerprint = Planner(self.context).fingerprint()
        if plan.fingerprint != fingerprint:
            raise StalePlanError("Configuration or variables changed since the plan was computed")


class Engine:
    """
    Plans and applies a module against provider plugins and a state store.

    Every call runs in its own RunContext: variables are bound, then the
    graph is built, then the state lock is taken, so configuration defects
    fail before any lock or provider call.
    """

    def __init__(
        self,
        module: Module,
        providers: Union[ProviderRegistry, Dict[str, Provider]],
        state_store: Optional[StateStore] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.module = module
        self.providers = providers if isinstance(providers, ProviderRegistry) else ProviderRegistry(providers)
        self.settings = settings or EngineSettings()
        self.state_store = state_store if state_store is not None else FileStateStore(self.settings.state_path)

    def prepare(self, variables: Optional[Dict[str, Any]] = None, coerce_strings: bool = False) -> RunContext:
        """
        Bind variables and build the resource graph.

        Raises:
            ValidationError: If a variable is missing or rejected by a validation rule
            TypeMismatchError: If a value does not match its declared type
            GraphConstructionError: If the graph is invalid (cycles, unknown references)
        """
        bound = bind_variables(self.module.variables, variables, coerce_strings=coerce_strings)
        graph = ResourceGraph()
        graph.build(self.module, bound)
        return RunContext(
            module=self.module,
            variables=bound,
            graph=graph,
            providers=self.providers,
            state_store=self.state_store,
            settings=self.settings,
        )

    @contextmanager
    def run(
        self,
        variables: Optional[Dict[str, Any]] = None,
        operation: str = "apply",
        coerce_strings: bool = False,
    ) -> Iterator[Run]:
        """
        Open a locked run.

        Raises:
            LockedError: If another run holds the state lock
        """
        context = self.prepare(variables, coerce_strings=coerce_strings)
        with self.state_store.lock(timeout=self.settings.lock_timeout, operation=operation):
            logger.info(f"Run {context.run_id} started ({operation})")
            try:
                yield Run(context)
            finally:
                context.close()

    def validate(self, variables: Optional[Dict[str, Any]] = None, coerce_strings: bool = False) -> ResourceGraph:
        """Check variables and references without touching state or providers."""
        return self.prepare(variables, coerce_strings=coerce_strings).graph

    def plan(self, variables: Optional[Dict[str, Any]] = None, destroy: bool = False) -> Plan:
        with self.run(variables, operation="plan") as run:
            return run.plan(destroy=destroy)

    def apply(self, variables: Optional[Dict[str, Any]] = None, plan: Optional[Plan] = None) -> ApplyResult:
        """
        Plan (unless a plan is given) and apply in one locked run.

        Raises:
            LockedError: If another run holds the state lock
            StalePlanError: If the given plan no longer matches state or configuration
        """
        with self.run(variables, operation="apply") as run:
            return run.apply(plan)

    def destroy(self, variables: Optional[Dict[str, Any]] = None) -> ApplyResult:
        with self.run(variables, operation="destroy") as run:
            return run.destroy()

    def outputs(self) -> Dict[str, Any]:
        return self.state_store.snapshot().outputs
