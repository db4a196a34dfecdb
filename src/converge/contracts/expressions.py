"""Tagged expression variants used as resource attribute values.

Every attribute of a declared resource is an expression tree. References to
variables and other resources are explicit node types, so the graph builder
can discover edges without evaluating anything.
"""

from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union
from pydantic import BaseModel, Field

INSTANCE_KEYS = ("count.index", "each.key", "each.value")


class ExpressionNode(BaseModel):
    """Common behaviour of all expression variants."""

    def children(self) -> List["ExpressionNode"]:
        return []


class LiteralValue(ExpressionNode):
    """A constant value (string, number, bool, null, or a plain list/map)."""
    kind: Literal["literal"] = "literal"
    value: Any = None


class VariableRef(ExpressionNode):
    """Reference to an input variable: ``var.<name>``."""
    kind: Literal["variable"] = "variable"
    name: str


class InstanceRef(ExpressionNode):
    """Reference to the repetition key of the current instance."""
    kind: Literal["instance"] = "instance"
    name: Literal["count.index", "each.key", "each.value"]


class ResourceRef(ExpressionNode):
    """Reference to one attribute of another resource instance.

    ``index`` selects an instance of a repeated resource; ``attribute`` of
    ``None`` yields the whole attribute map.
    """
    kind: Literal["resource"] = "resource"
    type: str
    name: str
    index: Optional["Expression"] = None
    attribute: Optional[str] = None

    def children(self) -> List[ExpressionNode]:
        return [self.index] if self.index is not None else []


class Splat(ExpressionNode):
    """Projection of one attribute across every instance of a repeated resource."""
    kind: Literal["splat"] = "splat"
    type: str
    name: str
    attribute: str


class Conditional(ExpressionNode):
    """``condition ? when_true : when_false``."""
    kind: Literal["conditional"] = "conditional"
    condition: "Expression"
    when_true: "Expression"
    when_false: "Expression"

    def children(self) -> List[ExpressionNode]:
        return [self.condition, self.when_true, self.when_false]


class IndexOf(ExpressionNode):
    """Element of a list or map: ``collection[key]``."""
    kind: Literal["index"] = "index"
    collection: "Expression"
    key: "Expression"

    def children(self) -> List[ExpressionNode]:
        return [self.collection, self.key]


class FunctionCall(ExpressionNode):
    """Call of a built-in function."""
    kind: Literal["call"] = "call"
    function: str
    args: List["Expression"] = Field(default_factory=list)

    def children(self) -> List[ExpressionNode]:
        return list(self.args)


class ListExpr(ExpressionNode):
    """A list whose items are expressions."""
    kind: Literal["list"] = "list"
    items: List["Expression"] = Field(default_factory=list)

    def children(self) -> List[ExpressionNode]:
        return list(self.items)


class MapExpr(ExpressionNode):
    """A map whose values are expressions."""
    kind: Literal["map"] = "map"
    entries: Dict[str, "Expression"] = Field(default_factory=dict)

    def children(self) -> List[ExpressionNode]:
        return list(self.entries.values())


Expression = Annotated[
    Union[
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
    ],
    Field(discriminator="kind"),
]

for _model in (ResourceRef, Conditional, IndexOf, FunctionCall, ListExpr, MapExpr):
    _model.model_rebuild()


def walk(expr: ExpressionNode) -> Iterator[ExpressionNode]:
    """Yield the expression and all of its sub-expressions, depth first."""
    yield expr
    for child in expr.children():
        yield from walk(child)


def as_expression(value: Any) -> ExpressionNode:
    """
    Wrap a raw Python value as an expression.

    Lists and dicts that contain expression nodes become ``ListExpr``/``MapExpr``;
    anything else becomes a ``LiteralValue``.
    """
    if isinstance(value, ExpressionNode):
        return value
    if isinstance(value, list) and _contains_expression(value):
        return ListExpr(items=[as_expression(item) for item in value])
    if isinstance(value, dict) and _contains_expression(value):
        return MapExpr(entries={str(k): as_expression(v) for k, v in value.items()})
    return LiteralValue(value=value)


def _contains_expression(value: Any) -> bool:
    if isinstance(value, ExpressionNode):
        return True
    if isinstance(value, list):
        return any(_contains_expression(item) for item in value)
    if isinstance(value, dict):
        return any(_contains_expression(item) for item in value.values())
    return False


def lit(value: Any) -> LiteralValue:
    return LiteralValue(value=value)


def var(name: str) -> VariableRef:
    return VariableRef(name=name)


def ref(resource_type: str, name: str, attribute: Optional[str] = None, index: Any = None) -> ResourceRef:
    """Build a resource reference; a raw ``index`` is wrapped as a literal."""
    if index is not None and not isinstance(index, ExpressionNode):
        index = LiteralValue(value=index)
    return ResourceRef(type=resource_type, name=name, attribute=attribute, index=index)


def splat(resource_type: str, name: str, attribute: str) -> Splat:
    return Splat(type=resource_type, name=name, attribute=attribute)


def call(function: str, *args: Any) -> FunctionCall:
    return FunctionCall(function=function, args=[as_expression(arg) for arg in args])
