"""Pydantic models for declared variables, resources and outputs."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from .address import Address
from .expressions import Expression, ExpressionNode, as_expression


class ValidationRule(BaseModel):
    """Predicate a variable value must satisfy."""
    condition: Expression = Field(..., description="Boolean expression over the variable")
    error_message: str = Field(..., description="Message reported when the condition is false")

    @field_validator("condition", mode="before")
    @classmethod
    def _wrap_condition(cls, value: Any) -> ExpressionNode:
        return as_expression(value)


class Variable(BaseModel):
    """Named input, bound once per run from the caller or its default."""
    name: str = Field(..., description="Variable name")
    type: Optional[str] = Field(None, description="Type constraint, e.g. 'string' or 'list(string)'")
    default: Any = Field(None, description="Default value; absent means the variable is required")
    description: str = Field("", description="Human-readable description")
    sensitive: bool = Field(False, description="Mask the value in human output")
    validation: List[ValidationRule] = Field(default_factory=list, description="Validation rules")

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class ResourceDeclaration(BaseModel):
    """A declared resource: type, name and attribute expressions."""
    type: str = Field(..., description="Resource type handled by a provider")
    name: str = Field(..., description="Resource name, unique per type")
    attributes: Dict[str, Expression] = Field(default_factory=dict, description="Attribute expressions")
    count: Optional[Expression] = Field(None, description="Number of instances to create")
    for_each: Optional[Expression] = Field(None, description="Map or set of keys, one instance each")
    depends_on: List[str] = Field(default_factory=list, description="Explicit dependency addresses")

    @field_validator("attributes", mode="before")
    @classmethod
    def _wrap_attributes(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): as_expression(v) for k, v in value.items()}
        return value

    @field_validator("count", "for_each", mode="before")
    @classmethod
    def _wrap_repetition(cls, value: Any) -> Any:
        if value is None:
            return None
        return as_expression(value)

    @model_validator(mode="after")
    def _check_repetition(self) -> "ResourceDeclaration":
        if self.count is not None and self.for_each is not None:
            raise ValueError(f"{self.base_address}: 'count' and 'for_each' are mutually exclusive")
        return self

    @property
    def base_address(self) -> str:
        return f"{self.type}.{self.name}"

    @property
    def is_repeated(self) -> bool:
        return self.count is not None or self.for_each is not None


class Output(BaseModel):
    """Named value projected from resolved resource attributes."""
    name: str = Field(..., description="Output name")
    value: Expression = Field(..., description="Expression producing the output value")
    description: str = Field("", description="Human-readable description")
    sensitive: bool = Field(False, description="Mask the value in human output")

    @field_validator("value", mode="before")
    @classmethod
    def _wrap_value(cls, value: Any) -> ExpressionNode:
        return as_expression(value)


class Module(BaseModel):
    """Already-parsed configuration: the unit the engine plans and applies."""
    variables: List[Variable] = Field(default_factory=list)
    resources: List[ResourceDeclaration] = Field(default_factory=list)
    outputs: List[Output] = Field(default_factory=list)

    def get_variable(self, name: str) -> Optional[Variable]:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def get_resource(self, resource_type: str, name: str) -> Optional[ResourceDeclaration]:
        for resource in self.resources:
            if resource.type == resource_type and resource.name == name:
                return resource
        return None


class ResourceInstance(BaseModel):
    """One expanded instance of a declaration (a node of the resource graph)."""
    address: Address = Field(..., description="Instance address")
    declaration: ResourceDeclaration = Field(..., description="Declaration the instance expands")
    count_index: Optional[int] = Field(None, description="Value of count.index")
    each_key: Optional[str] = Field(None, description="Value of each.key")
    each_value: Any = Field(None, description="Value of each.value")

    @property
    def type(self) -> str:
        return self.address.type
