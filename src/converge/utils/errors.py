"""Custom exception classes for converge."""

from typing import List, Optional


class ConvergeError(Exception):
    """Base exception for all converge errors.

    Every error may carry the address of the resource it originated from;
    when present it prefixes the rendered message.
    """

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.address = address

    def __str__(self) -> str:
        if self.address:
            return f"{self.address}: {self.message}"
        return self.message


class ConfigError(ConvergeError):
    """Raised when engine configuration is invalid or missing."""
    pass


class ModuleLoadError(ConvergeError):
    """Raised when a module document cannot be loaded or is malformed."""
    pass


class GraphConstructionError(ConvergeError):
    """Raised when the resource graph cannot be built."""
    pass


class CycleError(GraphConstructionError):
    """Raised when resource references form a cycle."""

    def __init__(self, cycle: List[str]):
        path = " -> ".join(cycle + cycle[:1])
        super().__init__(f"Cycle detected between resources: {path}", address=cycle[0] if cycle else None)
        self.cycle = cycle


class UnknownReferenceError(GraphConstructionError):
    """Raised when an expression references an undeclared variable, resource or function."""
    pass


class EvaluationError(ConvergeError):
    """Raised when an expression cannot be evaluated."""
    pass


class ValidationError(EvaluationError):
    """Raised when a value is rejected by a validation rule."""
    pass


class TypeMismatchError(EvaluationError):
    """Raised when a value does not match its declared type."""
    pass


class PlanConflictError(ConvergeError):
    """Raised when the same address appears twice in the desired graph."""
    pass


class StalePlanError(ConvergeError):
    """Raised when a saved plan no longer matches state or configuration."""
    pass


class StateError(ConvergeError):
    """Raised when the state store cannot be read or written."""
    pass


class LockedError(StateError):
    """Raised when the state lock is held by another run."""

    def __init__(self, message: str, holder: Optional[dict] = None):
        super().__init__(message)
        self.holder = holder or {}


class ProviderError(ConvergeError):
    """Raised when a provider plugin call fails."""
    pass


class RunAborted(ConvergeError):
    """Raised when a run was cancelled or a precondition failed before any operation."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class PartialFailure(ConvergeError):
    """Raised when some operations of an apply run failed or were skipped."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
