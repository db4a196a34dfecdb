from .address import Address
from .expressions import (
    Expression,
    LiteralValue,
    VariableRef,
    InstanceRef,
    ResourceRef,
    Splat,
    Conditional,
    IndexOf,
    FunctionCall,
    ListExpr,
    MapExpr,
)
from .module import Module, Variable, ValidationRule, ResourceDeclaration, ResourceInstance, Output
from .state import StateRecord, StateSnapshot
from .plan import OperationKind, PlanOperation, Plan
from .results import OperationStatus, RunStatus, OperationOutcome, ApplyResult

__all__ = [
    "Address",
    "Expression",
    "LiteralValue",
    "VariableRef",
    "InstanceRef",
    "ResourceRef",
    "Splat",
    "Conditional",
    "IndexOf",
    "FunctionCall",
    "ListExpr",
    "MapExpr",
    "Module",
    "Variable",
    "ValidationRule",
    "ResourceDeclaration",
    "ResourceInstance",
    "Output",
    "StateRecord",
    "StateSnapshot",
    "OperationKind",
    "PlanOperation",
    "Plan",
    "OperationStatus",
    "RunStatus",
    "OperationOutcome",
    "ApplyResult",
]
