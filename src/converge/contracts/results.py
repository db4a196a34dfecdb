"""Pydantic models for apply outcomes (versioned, stable, explicit)."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from .address import Address
from .plan import OperationKind
from ..utils.errors import PartialFailure, RunAborted


class OperationStatus(str, Enum):
    """Per-address outcome of an apply run."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELED = "CANCELED"


class RunStatus(str, Enum):
    """Overall outcome of an apply run."""
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    ABORTED = "ABORTED"


class OperationOutcome(BaseModel):
    """Result of executing one planned operation."""
    address: Address = Field(..., description="Target address")
    kind: OperationKind = Field(..., description="Planned operation kind")
    status: OperationStatus = Field(..., description="Outcome status")
    error: Optional[str] = Field(None, description="Failure message, if any")
    identity: Optional[str] = Field(None, description="Provider identity after the operation")
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class ApplyResult(BaseModel):
    """Result contract of one apply run."""
    version: str = Field(default="1.0.0", description="Output contract version")
    run_id: str = Field(..., description="Run identifier")
    status: RunStatus = Field(..., description="Overall run status")
    outcomes: List[OperationOutcome] = Field(default_factory=list, description="Per-address outcomes, plan order")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Output values after apply")
    message: Optional[str] = Field(None, description="Reason for an aborted run")

    class Config:
        use_enum_values = True

    @classmethod
    def aborted(cls, run_id: str, message: str) -> "ApplyResult":
        """Result of a run that stopped before any operation ran."""
        return cls(run_id=run_id, status=RunStatus.ABORTED, message=message)

    @property
    def exit_code(self) -> int:
        return 0 if self.status == RunStatus.SUCCESS else 1

    def get(self, address: Address) -> Optional[OperationOutcome]:
        for outcome in self.outcomes:
            if outcome.address == address:
                return outcome
        return None

    def with_status(self, status: OperationStatus) -> List[OperationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    def raise_for_status(self) -> None:
        """
        Raise if the run did not fully succeed.

        Raises:
            RunAborted: If the run was aborted
            PartialFailure: If any operation failed or was skipped
        """
        if self.status == RunStatus.ABORTED:
            raise RunAborted(self.message or "Run aborted", result=self)
        if self.status == RunStatus.PARTIAL_FAILURE:
            failed = [str(o.address) for o in self.with_status(OperationStatus.FAILED)]
            raise PartialFailure(f"Apply finished with failures: {', '.join(failed)}", result=self)
