"""Pydantic models for persisted state."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from .address import Address


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """Last applied state of one resource instance."""
    address: Address = Field(..., description="Resource address")
    identity: str = Field(..., description="Provider-assigned identity")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Last-applied attributes")
    dependencies: List[Address] = Field(default_factory=list, description="Addresses this resource depended on")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def resource_type(self) -> str:
        return self.address.type


class StateSnapshot(BaseModel):
    """Serialized form of a whole state document."""
    version: int = Field(1, description="State format version")
    serial: int = Field(0, ge=0, description="Incremented on every commit/remove")
    lineage: str = Field(..., description="Identifier shared by all serials of one state")
    resources: List[StateRecord] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Outputs of the last apply")

    def records(self) -> Dict[Address, StateRecord]:
        return {record.address: record for record in self.resources}

    def get(self, address: Address) -> Optional[StateRecord]:
        for record in self.resources:
            if record.address == address:
                return record
        return None
