from .context import RunContext
from .executor import Executor, build_phase_graph

__all__ = ["RunContext", "Executor", "build_phase_graph"]
