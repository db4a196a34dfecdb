"""Tests for the expression evaluator."""

import pytest
from converge.contracts.address import Address
from converge.contracts.expressions import Conditional, IndexOf, call, lit, ref, splat, var
from converge.evaluation.evaluator import Evaluator
from converge.evaluation.unknown import UNKNOWN, contains_unknown, is_unknown
from converge.utils.errors import EvaluationError, TypeMismatchError, UnknownReferenceError

VPC = Address(type="test_thing", name="vpc")
SUBNETS = [Address(type="test_thing", name="subnet", index=i) for i in range(2)]


@pytest.fixture
def evaluator():
    """Evaluator with two resolved subnets, one of which has an unknown id."""
    environment = {
        VPC: {"id": "vpc-1", "cidr": "10.0.0.0/16"},
        SUBNETS[0]: {"id": "subnet-0", "zone": "a"},
        SUBNETS[1]: {"id": UNKNOWN, "zone": "b"},
    }
    return Evaluator(
        {"env": "dev", "zones": ["a", "b"], "flag": True},
        instances_of=lambda t, n: SUBNETS if (t, n) == ("test_thing", "subnet") else [],
        environment=environment,
    )


class TestEvaluator:
    """Test evaluation of each expression variant."""

    def test_literal_and_variable(self, evaluator):
        """Test literal values and variable references."""
        assert evaluator.evaluate(lit(3)) == 3
        assert evaluator.evaluate(var("env")) == "dev"

    def test_resource_reference(self, evaluator):
        """Test reading an attribute of a resolved resource."""
        assert evaluator.evaluate(ref("test_thing", "vpc", "id")) == "vpc-1"
        assert evaluator.evaluate(ref("test_thing", "subnet", "zone", index=1)) == "b"

    def test_whole_resource_reference(self, evaluator):
        """Test a reference without attribute returns the attribute map."""
        assert evaluator.evaluate(ref("test_thing", "vpc")) == {"id": "vpc-1", "cidr": "10.0.0.0/16"}

    def test_splat_preserves_index_order(self, evaluator):
        """Test splat projection across instances."""
        assert evaluator.evaluate(splat("test_thing", "subnet", "zone")) == ["a", "b"]

    def test_unknown_propagates_through_functions(self, evaluator):
        """Test that functions of unknown values are unknown."""
        result = evaluator.evaluate(call("join", ",", splat("test_thing", "subnet", "id")))
        assert is_unknown(result)

    def test_unknown_inside_list_is_kept(self, evaluator):
        """Test that a splat keeps unknown elements."""
        result = evaluator.evaluate(splat("test_thing", "subnet", "id"))
        assert result[0] == "subnet-0"
        assert contains_unknown(result)

    def test_conditional(self, evaluator):
        """Test conditional branches."""
        expr = Conditional(condition=var("flag"), when_true=lit("yes"), when_false=lit("no"))
        assert evaluator.evaluate(expr) == "yes"

    def test_conditional_requires_bool(self, evaluator):
        """Test non-bool conditions are rejected."""
        expr = Conditional(condition=var("env"), when_true=lit(1), when_false=lit(2))
        with pytest.raises(TypeMismatchError):
            evaluator.evaluate(expr)

    def test_index_of(self, evaluator):
        """Test list indexing with a variable."""
        assert evaluator.evaluate(IndexOf(collection=var("zones"), key=lit(1))) == "b"
        with pytest.raises(EvaluationError):
            evaluator.evaluate(IndexOf(collection=var("zones"), key=lit(5)))

    def test_missing_attribute(self, evaluator):
        """Test reading an attribute the resource does not have."""
        with pytest.raises(UnknownReferenceError):
            evaluator.evaluate(ref("test_thing", "vpc", "nope"), origin="output.x")

    def test_unresolved_resource(self, evaluator):
        """Test reading a resource that was not resolved yet."""
        with pytest.raises(EvaluationError):
            evaluator.evaluate(ref("test_thing", "other", "id"))

    def test_function_error_carries_origin(self, evaluator):
        """Test that errors from functions are tagged with the origin."""
        with pytest.raises(TypeMismatchError) as excinfo:
            evaluator.evaluate(call("length", 5), origin="output.size")
        assert excinfo.value.address == "output.size"
