"""Tests for plan execution: ordering, failures, cancellation and parallelism."""

import threading
import time
from converge.contracts.address import Address
from converge.contracts.results import OperationStatus, RunStatus
from converge.execution.executor import APPLY, DESTROY, Executor, build_phase_graph

A = Address(type="test_thing", name="a")
B = Address(type="test_link", name="b")
C = Address(type="test_thing", name="c")
D = Address(type="test_thing", name="d")
E = Address(type="test_link", name="e")


def independent(*names):
    return {"resources": {"test_thing": {name: {"name": name} for name in names}}}


class TestExecution:
    """Test executing plans against the fake provider."""

    def test_failure_is_isolated(self, make_engine, provider, store):
        """Test a failed create leaves independent operations applied and recorded."""
        provider.fail("create", name="c")

        result = make_engine(independent("c", "d")).apply()

        assert result.status == RunStatus.PARTIAL_FAILURE
        assert result.get(C).status == OperationStatus.FAILED
        assert "injected create failure" in result.get(C).error
        assert result.get(D).status == OperationStatus.SUCCESS
        assert list(store.load()) == [D]
        assert result.exit_code == 1

    def test_dependents_of_failure_are_skipped(self, make_engine, provider, store):
        """Test operations downstream of a failure are skipped, not attempted."""
        provider.fail("create", name="c")
        document = independent("c", "d")
        document["resources"]["test_link"] = {"e": {"target": "${test_thing.c.id}"}}

        result = make_engine(document).apply()

        assert result.get(E).status == OperationStatus.SKIPPED
        assert "test_thing.c" in result.get(E).error
        assert not any(call[1] == "test_link" for call in provider.calls)
        assert E not in store.load()

    def test_retry_after_failure_creates_only_missing(self, make_engine, provider):
        """Test state committed per operation lets a second run finish the work."""
        provider.fail("create", name="c")
        make_engine(independent("c", "d")).apply()
        provider.failures.clear()

        plan = make_engine(independent("c", "d")).plan()
        assert [(op.kind, op.address) for op in plan.changes] == [("CREATE", C)]
        make_engine(independent("c", "d")).apply().raise_for_status()

    def test_cancel_stops_scheduling(self, make_engine, provider, store):
        """Test cancellation lets in-flight work finish and cancels the rest."""
        engine = make_engine(independent("a", "b", "c"), parallelism=1)

        with engine.run() as run:
            provider.on_call(lambda operation, _type, attrs: run.cancel() if attrs.get("name") == "a" else None)
            result = run.apply()

        assert result.status == RunStatus.ABORTED
        assert result.get(A).status == OperationStatus.SUCCESS
        assert result.get(Address(type="test_thing", name="b")).status == OperationStatus.CANCELED
        assert result.get(C).status == OperationStatus.CANCELED
        assert list(store.load()) == [A]
        assert store.snapshot().outputs == {}

    def test_cancel_stops_the_current_batch(self, make_engine, provider, monkeypatch):
        """Test a cancel arriving while ready phases are submitted stops the rest of the batch."""
        start = Executor._start

        def start_then_cancel(self, address):
            start(self, address)
            self.context.cancel()

        monkeypatch.setattr(Executor, "_start", start_then_cancel)
        result = make_engine(independent("a", "b", "c"), parallelism=3).apply()

        assert result.status == RunStatus.ABORTED
        assert result.get(A).status == OperationStatus.SUCCESS
        assert result.get(C).status == OperationStatus.CANCELED
        assert [call[0] for call in provider.calls] == ["create"]

    def test_parallelism_bounds_in_flight_calls(self, make_engine, provider):
        """Test no more than `parallelism` provider calls run at once."""
        lock = threading.Lock()
        state = {"current": 0, "peak": 0}

        def slow(operation, _type, _attrs):
            with lock:
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
            time.sleep(0.05)
            with lock:
                state["current"] -= 1

        provider.on_call(slow)
        make_engine(independent("a", "b", "c", "d", "e"), parallelism=2).apply().raise_for_status()

        assert 1 <= state["peak"] <= 2

    def test_outputs_saved_after_apply(self, make_engine, store):
        """Test outputs are evaluated with applied values and recorded."""
        document = independent("a")
        document["outputs"] = {"a_id": "${test_thing.a.id}", "a_name": "${test_thing.a.name}"}

        result = make_engine(document).apply()

        assert result.outputs == {"a_id": "test_thing-1", "a_name": "a"}
        assert store.snapshot().outputs == result.outputs

    def test_records_keep_dependencies(self, make_engine, store):
        """Test committed records remember what they depend on."""
        document = independent("a")
        document["resources"]["test_link"] = {"b": {"target": "${test_thing.a.id}"}}

        make_engine(document).apply().raise_for_status()

        assert store.get(B).dependencies == [A]
        assert store.get(B).attributes["target"] == store.get(A).identity


class TestPhaseGraph:
    """Test how operations expand into ordered phases."""

    def test_replace_phases(self, make_engine):
        """Test a replace deletes before it creates and dependents wait for the create."""
        document = {
            "resources": {
                "test_thing": {"a": {"x": "one"}},
                "test_link": {"b": {"target": "static", "target_x": "${test_thing.a.x}"}},
            },
        }
        make_engine(document).apply().raise_for_status()
        document["resources"]["test_thing"]["a"]["x"] = "two"

        phases = build_phase_graph(make_engine(document).plan())

        assert set(phases.nodes) == {(A, DESTROY), (A, APPLY), (B, APPLY)}
        assert phases.has_edge((A, DESTROY), (A, APPLY))
        assert phases.has_edge((A, APPLY), (B, APPLY))

    def test_no_op_has_no_phase(self, make_engine):
        """Test unchanged resources are not scheduled."""
        engine = make_engine(independent("a"))
        engine.apply().raise_for_status()

        assert len(build_phase_graph(engine.plan())) == 0

    def test_destroy_phases_run_dependents_first(self, make_engine):
        """Test destroy phases point from dependent to dependency."""
        document = independent("a")
        document["resources"]["test_link"] = {"b": {"target": "${test_thing.a.id}"}}
        engine = make_engine(document)
        engine.apply().raise_for_status()

        phases = build_phase_graph(engine.plan(destroy=True))

        assert list(phases.edges) == [((B, DESTROY), (A, DESTROY))]

    def test_destroy_run_empties_state(self, make_engine, provider, store):
        """Test destroy deletes in reverse dependency order and clears state."""
        document = independent("a")
        document["resources"]["test_link"] = {"b": {"target": "${test_thing.a.id}"}}
        engine = make_engine(document)
        engine.apply().raise_for_status()

        engine.destroy().raise_for_status()

        deletes = [call[1] for call in provider.calls if call[0] == "delete"]
        assert deletes == ["test_link", "test_thing"]
        assert store.load() == {}
        assert provider.resources == {}
