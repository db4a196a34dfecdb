"""Decode document values into expression trees.

Strings may embed references with ``${...}``::

    "${var.cidr_block}"                        variable
    "${aws_vpc.main.id}"                       resource attribute
    "${aws_subnet.public[count.index].id}"     instance of a repeated resource
    "${aws_subnet.private[*].id}"              splat
    "${var.azs[count.index]}"                  traversal
    "${var.name}-public-${count.index}"        interpolation (becomes join)

Single-key maps ``{"fn::<name>": [args]}`` are function calls and
``{"fn::if": [condition, when_true, when_false]}`` is a conditional.
``$${`` escapes a literal ``${``.
"""

import json
import re
from typing import Any, List, Optional
from ..contracts.expressions import (
    Conditional,
    ExpressionNode,
    FunctionCall,
    IndexOf,
    InstanceRef,
    LiteralValue,
    ResourceRef,
    Splat,
    VariableRef,
    as_expression,
)
from ..utils.errors import ModuleLoadError

FUNCTION_PREFIX = "fn::"

_INTERPOLATION = re.compile(r"(?<!\$)\$\{([^}]*)\}")
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_NUMBER = re.compile(r"-?\d+(\.\d+)?")
_STRING = re.compile(r'"(?:[^"\\]|\\.)*"')


class _ReferenceParser:
    """Recursive-descent parser for the text inside ``${...}``."""

    def __init__(self, text: str, where: Optional[str]):
        self.text = text
        self.where = where
        self.pos = 0

    def parse(self) -> ExpressionNode:
        expr = self._expression()
        self._skip_space()
        if self.pos != len(self.text):
            self._error(f"unexpected '{self.text[self.pos:]}'")
        return expr

    def _error(self, message: str) -> None:
        raise ModuleLoadError(f"Invalid reference '${{{self.text}}}': {message}", address=self.where)

    def _skip_space(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _peek(self, token: str) -> bool:
        self._skip_space()
        return self.text.startswith(token, self.pos)

    def _expect(self, token: str) -> None:
        if not self._peek(token):
            self._error(f"expected '{token}'")
        self.pos += len(token)

    def _match(self, pattern: re.Pattern) -> Optional[str]:
        self._skip_space()
        match = pattern.match(self.text, self.pos)
        if not match:
            return None
        self.pos = match.end()
        return match.group(0)

    def _identifier(self) -> str:
        name = self._match(_IDENT)
        if name is None:
            self._error("expected a name")
        return name

    def _expression(self) -> ExpressionNode:
        return self._traversals(self._primary())

    def _primary(self) -> ExpressionNode:
        literal = self._match(_STRING)
        if literal is not None:
            return LiteralValue(value=json.loads(literal))

        number = self._match(_NUMBER)
        if number is not None:
            return LiteralValue(value=float(number) if "." in number else int(number))

        head = self._identifier()
        if head in ("true", "false"):
            return LiteralValue(value=head == "true")
        if head == "null":
            return LiteralValue(value=None)

        self._expect(".")
        if head == "var":
            return VariableRef(name=self._identifier())
        if head == "count":
            if self._identifier() != "index":
                self._error("only 'count.index' is supported")
            return InstanceRef(name="count.index")
        if head == "each":
            key = self._identifier()
            if key not in ("key", "value"):
                self._error("expected 'each.key' or 'each.value'")
            return InstanceRef(name=f"each.{key}")

        return self._resource(head, self._identifier())

    def _resource(self, resource_type: str, name: str) -> ExpressionNode:
        index = None
        if self._peek("["):
            self.pos += 1
            if self._peek("*"):
                self.pos += 1
                self._expect("]")
                self._expect(".")
                return Splat(type=resource_type, name=name, attribute=self._identifier())
            index = self._expression()
            self._expect("]")

        attribute = None
        if self._peek("."):
            self.pos += 1
            attribute = self._identifier()
        return ResourceRef(type=resource_type, name=name, index=index, attribute=attribute)

    def _traversals(self, expr: ExpressionNode) -> ExpressionNode:
        while True:
            if self._peek("["):
                self.pos += 1
                key = self._expression()
                self._expect("]")
                expr = IndexOf(collection=expr, key=key)
            elif self._peek("."):
                self.pos += 1
                expr = IndexOf(collection=expr, key=LiteralValue(value=self._identifier()))
            else:
                return expr


def parse_reference(text: str, where: Optional[str] = None) -> ExpressionNode:
    """
    Parse the inside of one ``${...}``.

    Raises:
        ModuleLoadError: If the reference is malformed
    """
    return _ReferenceParser(text.strip(), where).parse()


def _decode_string(value: str, where: Optional[str]) -> Any:
    matches = list(_INTERPOLATION.finditer(value))
    if not matches:
        return value.replace("$${", "${")

    if len(matches) == 1 and matches[0].span() == (0, len(value)):
        return parse_reference(matches[0].group(1), where)

    parts: List[Any] = []
    position = 0
    for match in matches:
        if match.start() > position:
            parts.append(value[position:match.start()].replace("$${", "${"))
        parts.append(parse_reference(match.group(1), where))
        position = match.end()
    if position < len(value):
        parts.append(value[position:].replace("$${", "${"))
    return FunctionCall(function="join", args=[LiteralValue(value=""), as_expression(parts)])


def _decode_function(key: str, args: Any, where: Optional[str]) -> ExpressionNode:
    function = key[len(FUNCTION_PREFIX):]
    if not isinstance(args, list):
        args = [args]
    decoded = [as_expression(decode_value(arg, where)) for arg in args]

    if function == "if":
        if len(decoded) != 3:
            raise ModuleLoadError(f"fn::if takes [condition, when_true, when_false], got {len(decoded)} values", address=where)
        return Conditional(condition=decoded[0], when_true=decoded[1], when_false=decoded[2])
    return FunctionCall(function=function, args=decoded)


def decode_value(value: Any, where: Optional[str] = None) -> Any:
    """
    Decode one document value, recursively.

    Returns:
        The plain value if it holds no references, otherwise an expression node
        (or a list/map containing expression nodes)

    Raises:
        ModuleLoadError: If a reference or function call is malformed
    """
    if isinstance(value, str):
        return _decode_string(value, where)
    if isinstance(value, list):
        return [decode_value(item, where) for item in value]
    if isinstance(value, dict):
        if len(value) == 1:
            key = next(iter(value))
            if isinstance(key, str) and key.startswith(FUNCTION_PREFIX):
                return _decode_function(key, value[key], where)
        return {str(k): decode_value(v, where) for k, v in value.items()}
    return value


def decode_expression(value: Any, where: Optional[str] = None) -> ExpressionNode:
    """Decode a document value and wrap the result as an expression."""
    return as_expression(decode_value(value, where))
