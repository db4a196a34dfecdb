"""Module document loading."""

from .module_loader import load_module, parse_module, load_var_file, resolve_module_path
from .references import decode_value, decode_expression, parse_reference

__all__ = [
    "load_module",
    "parse_module",
    "load_var_file",
    "resolve_module_path",
    "decode_value",
    "decode_expression",
    "parse_reference",
]
