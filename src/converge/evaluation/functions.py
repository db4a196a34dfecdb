"""Built-in functions available to expressions."""

import ipaddress
from typing import Any, Callable, Dict, List
from .types import describe_type
from ..utils.errors import EvaluationError, TypeMismatchError


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    raise TypeMismatchError(f"cannot convert {describe_type(value)} to string")


def _require(value: Any, kinds, function: str, position: int) -> Any:
    if isinstance(value, bool) and bool not in kinds:
        raise TypeMismatchError(f"{function}() argument {position} must not be bool")
    if not isinstance(value, kinds):
        raise TypeMismatchError(
            f"{function}() argument {position} has unexpected type {describe_type(value)}"
        )
    return value


def _same_value(left: Any, right: Any) -> bool:
    """Equality where bool never equals a number, also inside lists and maps."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(_same_value(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(_same_value(left[k], right[k]) for k in left)
    return left == right


def fn_length(value: Any) -> int:
    _require(value, (list, tuple, dict, str), "length", 1)
    return len(value)


def fn_concat(*lists: Any) -> List[Any]:
    result: List[Any] = []
    for position, item in enumerate(lists, start=1):
        result.extend(_require(item, (list, tuple), "concat", position))
    return result


def fn_join(separator: Any, items: Any) -> str:
    _require(separator, (str,), "join", 1)
    _require(items, (list, tuple), "join", 2)
    return separator.join(_to_string(item) for item in items)


def fn_element(items: Any, index: Any) -> Any:
    _require(items, (list, tuple), "element", 1)
    _require(index, (int,), "element", 2)
    if not items:
        raise EvaluationError("element() cannot index an empty list")
    return items[index % len(items)]


def fn_lookup(mapping: Any, key: Any, *default: Any) -> Any:
    _require(mapping, (dict,), "lookup", 1)
    _require(key, (str,), "lookup", 2)
    if key in mapping:
        return mapping[key]
    if default:
        return default[0]
    raise EvaluationError(f"lookup() key {key!r} not found and no default given")


def fn_contains(collection: Any, value: Any) -> bool:
    _require(collection, (list, tuple, dict), "contains", 1)
    if isinstance(collection, dict):
        return isinstance(value, str) and value in collection
    return any(_same_value(item, value) for item in collection)


def fn_keys(mapping: Any) -> List[str]:
    _require(mapping, (dict,), "keys", 1)
    return sorted(mapping)


def fn_values(mapping: Any) -> List[Any]:
    _require(mapping, (dict,), "values", 1)
    return [mapping[key] for key in sorted(mapping)]


def fn_merge(*maps: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for position, item in enumerate(maps, start=1):
        result.update(_require(item, (dict,), "merge", position))
    return result


def fn_format(template: Any, *args: Any) -> str:
    _require(template, (str,), "format", 1)
    try:
        return template % tuple(args)
    except (TypeError, ValueError) as e:
        raise TypeMismatchError(f"format() failed: {e}")


def fn_tostring(value: Any) -> str:
    return _to_string(value)


def fn_tonumber(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    _require(value, (str,), "tonumber", 1)
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            raise TypeMismatchError(f"tonumber() cannot convert {value!r}")


def fn_equals(left: Any, right: Any) -> bool:
    return _same_value(left, right)


def fn_not(value: Any) -> bool:
    return not _require(value, (bool,), "not", 1)


def fn_and(*values: Any) -> bool:
    return all(_require(v, (bool,), "and", i) for i, v in enumerate(values, start=1))


def fn_or(*values: Any) -> bool:
    return any(_require(v, (bool,), "or", i) for i, v in enumerate(values, start=1))


def fn_cidrsubnet(prefix: Any, newbits: Any, netnum: Any) -> str:
    """Calculate a subnet address within a CIDR prefix."""
    _require(prefix, (str,), "cidrsubnet", 1)
    _require(newbits, (int,), "cidrsubnet", 2)
    _require(netnum, (int,), "cidrsubnet", 3)
    try:
        network = ipaddress.ip_network(prefix, strict=False)
    except ValueError as e:
        raise TypeMismatchError(f"cidrsubnet() invalid prefix {prefix!r}: {e}")

    new_prefix = network.prefixlen + newbits
    if new_prefix > network.max_prefixlen:
        raise EvaluationError(f"cidrsubnet() cannot extend /{network.prefixlen} by {newbits} bits")
    if netnum < 0 or netnum >= 2 ** newbits:
        raise EvaluationError(f"cidrsubnet() netnum {netnum} does not fit in {newbits} bits")

    size = 2 ** (network.max_prefixlen - new_prefix)
    address = network.network_address + netnum * size
    return str(ipaddress.ip_network(f"{address}/{new_prefix}"))


def fn_is_cidr(value: Any) -> bool:
    if not isinstance(value, str) or "/" not in value:
        return False
    try:
        ipaddress.ip_network(value, strict=True)
        return True
    except ValueError:
        return False


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "length": fn_length,
    "concat": fn_concat,
    "join": fn_join,
    "element": fn_element,
    "lookup": fn_lookup,
    "contains": fn_contains,
    "keys": fn_keys,
    "values": fn_values,
    "merge": fn_merge,
    "format": fn_format,
    "tostring": fn_tostring,
    "tonumber": fn_tonumber,
    "equals": fn_equals,
    "not": fn_not,
    "and": fn_and,
    "or": fn_or,
    "cidrsubnet": fn_cidrsubnet,
    "is_cidr": fn_is_cidr,
}
