"""Expression evaluation: variables, functions, unknown values."""

from .evaluator import Evaluator
from .unknown import UNKNOWN, Unknown, is_unknown, contains_unknown
from .variables import bind_variables

__all__ = [
    "Evaluator",
    "UNKNOWN",
    "Unknown",
    "is_unknown",
    "contains_unknown",
    "bind_variables",
]
