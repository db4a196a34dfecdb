"""Pydantic models for planned operations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from .address import Address


class OperationKind(str, Enum):
    """What the executor will do to one address."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    DESTROY = "DESTROY"
    NO_OP = "NO_OP"


class PlanOperation(BaseModel):
    """One planned operation. At most one per address per plan."""
    kind: OperationKind = Field(..., description="Operation kind")
    address: Address = Field(..., description="Target address")
    identity: Optional[str] = Field(None, description="Provider identity of the existing instance")
    before: Optional[Dict[str, Any]] = Field(None, description="Attributes currently recorded in state")
    after: Optional[Dict[str, Any]] = Field(None, description="Planned attributes (may contain unknowns)")
    dependencies: List[Address] = Field(default_factory=list, description="Addresses whose operations must finish first")
    destroy_dependencies: List[Address] = Field(
        default_factory=list, description="Addresses whose operations must finish before the old instance is deleted"
    )
    changed_attributes: List[str] = Field(default_factory=list, description="Attributes that differ from state")
    replace_reasons: List[str] = Field(default_factory=list, description="Identity-defining attributes forcing replacement")
    refresh_record: bool = Field(
        False, description="NO_OP whose recorded dependencies are rewritten without a provider call"
    )

    class Config:
        use_enum_values = True

    @property
    def is_change(self) -> bool:
        return self.kind != OperationKind.NO_OP


class Plan(BaseModel):
    """Ordered operations: every operation appears after its dependencies."""
    operations: List[PlanOperation] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Output values as known at plan time")
    destroy: bool = Field(False, description="Plan destroys every recorded resource")
    state_serial: int = Field(0, description="State serial the plan was computed against")
    state_lineage: Optional[str] = Field(None, description="State lineage the plan was computed against")
    fingerprint: str = Field("", description="Hash of configuration and variables")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changes(self) -> List[PlanOperation]:
        """Operations that will call a provider."""
        return [op for op in self.operations if op.is_change]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def get(self, address: Address) -> Optional[PlanOperation]:
        for op in self.operations:
            if op.address == address:
                return op
        return None

    def summary(self) -> Dict[str, int]:
        """Count of operations per kind."""
        counts = {kind.value: 0 for kind in OperationKind}
        for op in self.operations:
            counts[str(op.kind)] += 1
        return counts
