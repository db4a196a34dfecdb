"""Per-run context threaded through planner and executor."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from ..config.settings import EngineSettings
from ..contracts.module import Module
from ..graph.resource_graph import ResourceGraph
from ..providers.registry import ProviderRegistry
from ..state.store import StateStore
from ..utils.logging import get_logger

logger = get_logger("execution.context")


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RunContext:
    """
    Everything one plan/apply run works with.

    Created per run and never shared between runs: provider and state
    handles are reached only through the context, and ``close()`` tears the
    run down.
    """

    module: Module
    variables: Dict[str, Any]
    graph: ResourceGraph
    providers: ProviderRegistry
    state_store: StateStore
    settings: EngineSettings
    run_id: str = field(default_factory=new_run_id)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        """Stop scheduling new operations; in-flight operations finish."""
        if not self._cancel_event.is_set():
            logger.warning(f"Run {self.run_id} cancelled")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def close(self) -> None:
        self.providers.close()
        logger.debug(f"Run {self.run_id} closed")
