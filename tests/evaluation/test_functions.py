"""Tests for built-in expression functions."""

import pytest
from converge.evaluation.functions import BUILTIN_FUNCTIONS, fn_cidrsubnet, fn_element, fn_is_cidr, fn_lookup
from converge.utils.errors import EvaluationError, TypeMismatchError


class TestCidrFunctions:
    """Test network address helpers."""

    def test_cidrsubnet_splits_vpc_range(self):
        """Test carving /24 subnets out of a /16."""
        assert fn_cidrsubnet("10.0.0.0/16", 8, 0) == "10.0.0.0/24"
        assert fn_cidrsubnet("10.0.0.0/16", 8, 3) == "10.0.3.0/24"

    def test_cidrsubnet_nested(self):
        """Test subnets of the second half of a range."""
        upper = fn_cidrsubnet("10.0.0.0/16", 1, 1)
        assert upper == "10.0.128.0/17"
        assert fn_cidrsubnet(upper, 7, 1) == "10.0.129.0/24"

    def test_cidrsubnet_netnum_too_large(self):
        """Test that netnum must fit in newbits."""
        with pytest.raises(EvaluationError):
            fn_cidrsubnet("10.0.0.0/16", 2, 4)

    def test_cidrsubnet_invalid_prefix(self):
        """Test invalid prefixes are type errors."""
        with pytest.raises(TypeMismatchError):
            fn_cidrsubnet("not-a-cidr", 8, 0)

    def test_is_cidr(self):
        """Test CIDR validation helper."""
        assert fn_is_cidr("10.0.0.0/16") is True
        assert fn_is_cidr("10.0.0.1/16") is False
        assert fn_is_cidr("10.0.0.0") is False
        assert fn_is_cidr(42) is False


class TestCollectionFunctions:
    """Test list and map helpers."""

    def test_element_wraps_around(self):
        """Test element() indexes modulo the length."""
        assert fn_element(["a", "b"], 3) == "b"

    def test_lookup_with_default(self):
        """Test lookup() falls back to its default."""
        assert fn_lookup({"a": 1}, "b", 2) == 2
        with pytest.raises(EvaluationError):
            fn_lookup({"a": 1}, "b")

    def test_join_stringifies(self):
        """Test join() renders numbers and bools."""
        assert BUILTIN_FUNCTIONS["join"]("-", ["a", 1, True]) == "a-1-true"

    def test_merge_later_wins(self):
        """Test merge() gives precedence to later maps."""
        assert BUILTIN_FUNCTIONS["merge"]({"a": 1, "b": 1}, {"b": 2}) == {"a": 1, "b": 2}

    def test_bool_never_equals_number(self):
        """Test contains() and equals() keep bools and numbers apart."""
        assert BUILTIN_FUNCTIONS["contains"]([1, 2], True) is False
        assert BUILTIN_FUNCTIONS["contains"]([True, 2], True) is True
        assert BUILTIN_FUNCTIONS["contains"]({"a": 1}, "a") is True
        assert BUILTIN_FUNCTIONS["equals"](1, True) is False
        assert BUILTIN_FUNCTIONS["equals"]([0], [False]) is False
        assert BUILTIN_FUNCTIONS["equals"]({"a": [1]}, {"a": [1.0]}) is True

    def test_length_rejects_numbers(self):
        """Test argument type checking."""
        with pytest.raises(TypeMismatchError):
            BUILTIN_FUNCTIONS["length"](5)
