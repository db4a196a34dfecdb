"""Abstract base class for provider plugins."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field
from ..contracts.address import Address
from ..evaluation.types import check_type
from ..utils.errors import ValidationError


class AttributeSchema(BaseModel):
    """How a provider treats one attribute of a resource type."""
    type: str = Field("any", description="Type constraint of the attribute value")
    required: bool = Field(False, description="Attribute must be configured")
    force_new: bool = Field(False, description="Changing the value requires destroy+create")
    computed: bool = Field(False, description="Value is assigned by the provider")
    stable: bool = Field(False, description="Value survives replacement of the resource")


class ResourceSchema(BaseModel):
    """Attribute schemas of one resource type."""
    resource_type: str = Field(..., description="Resource type, e.g. aws_vpc")
    attributes: Dict[str, AttributeSchema] = Field(default_factory=dict)

    def get(self, name: str) -> Optional[AttributeSchema]:
        return self.attributes.get(name)

    @property
    def computed(self) -> List[str]:
        return sorted(name for name, attr in self.attributes.items() if attr.computed)

    @property
    def required(self) -> List[str]:
        return sorted(name for name, attr in self.attributes.items() if attr.required)

    def is_force_new(self, name: str) -> bool:
        attr = self.attributes.get(name)
        return attr is not None and attr.force_new

    def is_stable(self, name: str) -> bool:
        attr = self.attributes.get(name)
        return attr is not None and attr.stable

    def is_computed(self, name: str) -> bool:
        attr = self.attributes.get(name)
        return attr is not None and attr.computed

    def check(self, address: Address, values: Dict[str, Any]) -> None:
        """
        Check evaluated attributes of one instance against this schema.

        An empty schema accepts any attribute.

        Raises:
            ValidationError: If a required attribute is missing or an attribute is not supported
            TypeMismatchError: If a value does not match the attribute type
        """
        where = str(address)
        if self.attributes:
            for name in values:
                if name not in self.attributes:
                    raise ValidationError(f"Unsupported attribute '{name}' for {self.resource_type}", address=where)

        for name in self.required:
            if values.get(name) is None:
                raise ValidationError(f"Missing required attribute '{name}'", address=where)

        for name, value in values.items():
            attr = self.attributes.get(name)
            if attr is not None:
                check_type(value, attr.type, f"Attribute '{name}'", address=where)


class Provider(ABC):
    """
    Abstract interface to a remote resource API.

    Providers own no engine state. They are called by the planner (``read``
    during refresh, ``get_schema``) and by the executor (the mutating verbs).
    Any exception raised by a verb is reported as a failed operation for the
    address being applied.
    """

    name: str = "provider"

    @abstractmethod
    def get_schema(self, resource_type: str) -> ResourceSchema:
        """
        Describe the attributes of a resource type.

        Args:
            resource_type: Resource type, e.g. aws_subnet

        Returns:
            Schema declaring required, identity-defining, computed and stable attributes
        """
        pass

    @abstractmethod
    def create(self, resource_type: str, attributes: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """
        Create a resource.

        Returns:
            Tuple of (provider identity, full attribute set including computed values)
        """
        pass

    @abstractmethod
    def read(self, resource_type: str, identity: str) -> Optional[Dict[str, Any]]:
        """
        Read the current attributes of a resource.

        Returns:
            Attributes, or None if the resource no longer exists
        """
        pass

    @abstractmethod
    def update(self, resource_type: str, identity: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a resource in place and return its full attribute set."""
        pass

    @abstractmethod
    def delete(self, resource_type: str, identity: str) -> None:
        """Delete a resource."""
        pass

    def close(self) -> None:
        """Release any handles held by the provider (called when a run ends)."""
        pass
