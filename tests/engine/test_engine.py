"""Tests for the engine facade: locking, staleness and validation order."""

import threading
import pytest
from converge.contracts.address import Address
from converge.graph.resource_graph import ResourceGraph
from converge.utils.errors import LockedError, PartialFailure, StalePlanError, ValidationError

A = Address(type="test_thing", name="a")

MODULE = {
    "variables": {
        "environment": {
            "type": "string",
            "validation": [{
                "condition": {"fn::contains": [["dev", "staging", "prod"], "${var.environment}"]},
                "error_message": "environment must be dev, staging or prod",
            }],
        },
    },
    "resources": {"test_thing": {"a": {"name": "${var.environment}"}}},
    "outputs": {"name": "${test_thing.a.name}"},
}


class TestEngine:
    """Test the plan/apply/destroy facade."""

    def test_round_trip(self, make_engine, store):
        """Test apply then plan converges with recorded outputs."""
        engine = make_engine(MODULE)

        result = engine.apply({"environment": "dev"})
        result.raise_for_status()

        assert not engine.plan({"environment": "dev"}).has_changes
        assert engine.outputs() == {"name": "dev"}
        assert store.get(A).attributes["name"] == "dev"

    def test_destroy(self, make_engine, provider, store):
        """Test destroy removes every recorded resource."""
        engine = make_engine(MODULE)
        engine.apply({"environment": "dev"}).raise_for_status()

        engine.destroy({"environment": "dev"}).raise_for_status()

        assert store.load() == {}
        assert provider.resources == {}

    def test_validation_fails_before_graph_and_providers(self, make_engine, provider, monkeypatch):
        """Test a rejected variable stops the run before graph construction or provider calls."""
        def fail_build(*_args, **_kwargs):
            raise AssertionError("graph should not be built")

        monkeypatch.setattr(ResourceGraph, "build", fail_build)

        with pytest.raises(ValidationError) as excinfo:
            make_engine(MODULE).apply({"environment": "qa"})

        assert excinfo.value.address == "var.environment"
        assert "dev, staging or prod" in str(excinfo.value)
        assert provider.calls == []

    def test_validate_returns_graph(self, make_engine):
        """Test validate builds the graph without touching state."""
        graph = make_engine(MODULE).validate({"environment": "prod"})
        assert list(graph.topological_order()) == [A]

    def test_partial_failure_raises(self, make_engine, provider):
        """Test raise_for_status reports partial failures with the result attached."""
        provider.fail("create", name="dev")

        result = make_engine(MODULE).apply({"environment": "dev"})

        with pytest.raises(PartialFailure) as excinfo:
            result.raise_for_status()
        assert excinfo.value.result is result


class TestLocking:
    """Test that concurrent runs against one state are serialized."""

    def test_second_apply_fails_while_locked(self, make_engine, provider):
        """Test an apply started while another holds the lock raises LockedError."""
        started = threading.Event()
        release = threading.Event()

        def block(operation, _type, _attrs):
            started.set()
            release.wait(5)

        provider.on_call(block)
        engine = make_engine(MODULE)
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.apply({"environment": "dev"})))
        worker.start()
        try:
            assert started.wait(5)
            with pytest.raises(LockedError):
                make_engine(MODULE).apply({"environment": "dev"})
        finally:
            release.set()
            worker.join(5)

        assert results[0].exit_code == 0

    def test_held_lock_blocks_plan(self, make_engine, store):
        """Test planning also needs the lock."""
        with store.lock(operation="state rm"):
            with pytest.raises(LockedError) as excinfo:
                make_engine(MODULE).plan({"environment": "dev"})
        assert excinfo.value.holder["operation"] == "state rm"
        assert "state rm" in str(excinfo.value)

    def test_lock_timeout_waits_for_release(self, make_engine, store):
        """Test lock_timeout lets a run wait for a lock released in time."""
        acquired = threading.Event()
        release = threading.Event()

        def hold():
            with store.lock():
                acquired.set()
                release.wait(5)

        holder = threading.Thread(target=hold)
        holder.start()
        acquired.wait(5)
        threading.Timer(0.1, release.set).start()

        plan = make_engine(MODULE, lock_timeout=5).plan({"environment": "dev"})
        holder.join(5)
        assert plan.has_changes


class TestStalePlans:
    """Test that saved plans are rejected once state or configuration moved on."""

    def test_plan_rejected_after_state_change(self, make_engine):
        """Test a plan computed before another apply is stale."""
        engine = make_engine(MODULE)
        plan = engine.plan({"environment": "dev"})
        engine.apply({"environment": "dev"}).raise_for_status()

        with pytest.raises(StalePlanError):
            engine.apply({"environment": "dev"}, plan=plan)

    def test_plan_rejected_after_variable_change(self, make_engine):
        """Test a plan computed with other variables is stale."""
        engine = make_engine(MODULE)
        plan = engine.plan({"environment": "dev"})

        with pytest.raises(StalePlanError) as excinfo:
            engine.apply({"environment": "prod"}, plan=plan)
        assert "changed" in str(excinfo.value)

    def test_fresh_plan_applies(self, make_engine, provider):
        """Test a saved plan applies unchanged when nothing moved."""
        engine = make_engine(MODULE)
        plan = engine.plan({"environment": "dev"})

        engine.apply({"environment": "dev"}, plan=plan).raise_for_status()
        assert [call[0] for call in provider.calls] == ["create"]
