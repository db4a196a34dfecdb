"""Placeholder for values that are only known after apply."""

from typing import Any


class Unknown:
    """Singleton marking a value the provider assigns during apply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    __str__ = __repr__

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Unknown)

    def __hash__(self) -> int:
        return hash("converge.unknown")

    def __reduce__(self):
        return (Unknown, ())

    def __deepcopy__(self, memo):
        return self


UNKNOWN = Unknown()


def is_unknown(value: Any) -> bool:
    return isinstance(value, Unknown)


def contains_unknown(value: Any) -> bool:
    """True if the value, or anything nested in it, is unknown."""
    if isinstance(value, Unknown):
        return True
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(item) for item in value)
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    return False
