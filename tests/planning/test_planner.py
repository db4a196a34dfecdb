"""Tests for the differ/planner."""

import pytest
from converge.contracts.address import Address
from converge.contracts.plan import OperationKind
from converge.evaluation.unknown import is_unknown
from converge.planning.planner import compute_fingerprint
from converge.utils.errors import TypeMismatchError, ValidationError

A = Address(type="test_thing", name="a")
B = Address(type="test_link", name="b")
C = Address(type="test_link", name="c")


def pair(x="one", name="web"):
    """Resource A with identity attribute x, and B reading A's x."""
    return {
        "resources": {
            "test_thing": {"a": {"x": x, "name": name}},
            "test_link": {"b": {"target": "static", "target_x": "${test_thing.a.x}"}},
        },
        "outputs": {"a_id": "${test_thing.a.id}"},
    }


def kinds(plan):
    return [(op.kind, str(op.address)) for op in plan.changes]


class TestPlanClassification:
    """Test how desired configuration is compared with state."""

    def test_first_plan_creates_everything(self, make_engine):
        """Test an empty state plans a create per instance, dependencies first."""
        plan = make_engine(pair()).plan()
        assert kinds(plan) == [("CREATE", "test_thing.a"), ("CREATE", "test_link.b")]
        assert plan.get(B).dependencies == [A]

    def test_created_ids_are_unknown(self, make_engine):
        """Test computed values are only known after apply."""
        plan = make_engine(pair()).plan()
        after = plan.get(A).after
        assert after["x"] == "one"
        assert is_unknown(after["id"])
        assert is_unknown(plan.outputs["a_id"])

    def test_plan_is_idempotent(self, make_engine):
        """Test that planning twice without apply changes nothing."""
        engine = make_engine(pair())
        first = engine.plan()
        second = engine.plan()
        assert kinds(first) == kinds(second)
        assert first.fingerprint == second.fingerprint

    def test_apply_then_plan_is_all_no_op(self, make_engine):
        """Test round trip: after apply, the same configuration plans no changes."""
        engine = make_engine(pair())
        engine.apply().raise_for_status()

        plan = engine.plan()
        assert not plan.has_changes
        assert {op.kind for op in plan.operations} == {"NO_OP"}
        assert plan.outputs["a_id"] == "test_thing-1"

    def test_updatable_change_is_update(self, make_engine):
        """Test changing a non identity attribute plans an in-place update."""
        make_engine(pair()).apply().raise_for_status()

        plan = make_engine(pair(name="api")).plan()
        op = plan.get(A)
        assert op.kind == OperationKind.UPDATE
        assert op.changed_attributes == ["name"]
        assert op.replace_reasons == []
        assert op.after["id"] == "test_thing-1"

    def test_removed_attribute_is_a_change(self, make_engine):
        """Test dropping a configured attribute is detected."""
        make_engine(pair()).apply().raise_for_status()
        document = pair()
        del document["resources"]["test_thing"]["a"]["name"]

        op = make_engine(document).plan().get(A)
        assert op.kind == OperationKind.UPDATE
        assert op.changed_attributes == ["name"]

    def test_unsupported_attribute_rejected(self, make_engine):
        """Test provider schemas reject attributes they do not know."""
        document = {"resources": {"test_thing": {"a": {"bogus": 1}}}}
        with pytest.raises(ValidationError) as excinfo:
            make_engine(document).plan()
        assert excinfo.value.address == "test_thing.a"

    def test_attribute_type_mismatch(self, make_engine):
        """Test evaluated attributes are checked against the schema type."""
        document = {"resources": {"test_thing": {"a": {"size": "big"}}}}
        with pytest.raises(TypeMismatchError) as excinfo:
            make_engine(document).plan()
        assert excinfo.value.address == "test_thing.a"
        assert "size" in str(excinfo.value)

    def test_referenced_value_type_mismatch(self, make_engine):
        """Test a reference resolving to the wrong type is a type mismatch."""
        document = {"resources": {"test_thing": {
            "a": {"name": "web"},
            "b": {"size": "${test_thing.a.name}"},
        }}}
        with pytest.raises(TypeMismatchError) as excinfo:
            make_engine(document).plan()
        assert excinfo.value.address == "test_thing.b"

    def test_missing_required_attribute(self, make_engine):
        """Test required schema attributes must be configured."""
        document = {"resources": {"test_link": {"b": {"owner": "x"}}}}
        with pytest.raises(ValidationError) as excinfo:
            make_engine(document).plan()
        assert excinfo.value.address == "test_link.b"
        assert "target" in str(excinfo.value)

    def test_fingerprint_depends_on_variables(self, make_engine):
        """Test the configuration fingerprint covers variable values."""
        module = make_engine(pair()).module
        assert compute_fingerprint(module, {"a": 1}) != compute_fingerprint(module, {"a": 2})
        assert compute_fingerprint(module, {"a": 1}) == compute_fingerprint(module, {"a": 1})


class TestReplacePlanning:
    """Test identity-defining changes."""

    def test_replace_then_update(self, make_engine, provider, store):
        """Test changing A's x plans [Replace(A), Update(B)] and B ends with the new value."""
        make_engine(pair("one")).apply().raise_for_status()
        old_identity = store.get(A).identity

        engine = make_engine(pair("two"))
        plan = engine.plan()
        assert kinds(plan) == [("REPLACE", "test_thing.a"), ("UPDATE", "test_link.b")]
        assert plan.get(A).replace_reasons == ["x"]
        assert plan.get(B).dependencies == [A]
        assert plan.get(B).after["target_x"] == "two"

        result = engine.apply(plan=plan)
        result.raise_for_status()

        assert store.get(A).identity != old_identity
        assert store.get(B).attributes["target_x"] == "two"
        operations = [call[0] for call in provider.calls[-3:]]
        assert operations == ["delete", "create", "update"]

    def test_stable_attribute_readers_do_not_wait(self, make_engine):
        """Test dependents reading only stable attributes are not sequenced after a replace."""
        document = {
            "resources": {
                "test_thing": {"a": {"x": "one"}},
                "test_link": {"c": {"target": "static", "owner": "${test_thing.a.owner}"}},
            },
        }
        make_engine(document).apply().raise_for_status()

        document["resources"]["test_thing"]["a"]["x"] = "two"
        plan = make_engine(document).plan()
        assert plan.get(A).kind == OperationKind.REPLACE
        assert plan.get(C).kind == OperationKind.NO_OP
        assert plan.get(C).dependencies == []
        assert plan.get(A).after["owner"] == "owner-stable"

    def test_replace_waits_for_replaced_dependents(self, make_engine):
        """Test the old instance is deleted only after replaced dependents are deleted."""
        document = {
            "resources": {
                "test_thing": {"a": {"x": "one"}},
                "test_link": {"b": {"target": "${test_thing.a.x}"}},
            },
        }
        make_engine(document).apply().raise_for_status()

        document["resources"]["test_thing"]["a"]["x"] = "two"
        plan = make_engine(document).plan()
        assert kinds(plan) == [("REPLACE", "test_thing.a"), ("REPLACE", "test_link.b")]
        assert plan.get(A).destroy_dependencies == [B]


class TestRefreshAndDestroy:
    """Test drift detection and destroy plans."""

    def test_drift_plans_update(self, make_engine, provider, store, caplog):
        """Test attributes changed outside converge are planned back."""
        make_engine(pair()).apply().raise_for_status()
        provider.drift(store.get(A).identity, name="changed")

        op = make_engine(pair()).plan().get(A)
        assert op.kind == OperationKind.UPDATE
        assert op.before["name"] == "changed"
        assert "drifted" in caplog.text

    def test_refresh_never_writes_state(self, make_engine, provider, store):
        """Test planning leaves the recorded attributes untouched."""
        make_engine(pair()).apply().raise_for_status()
        serial = store.serial
        provider.drift(store.get(A).identity, name="changed")

        make_engine(pair()).plan()
        assert store.serial == serial
        assert store.get(A).attributes["name"] == "web"

    def test_refresh_disabled_ignores_drift(self, make_engine, provider, store):
        """Test refresh=false plans against recorded state only."""
        make_engine(pair()).apply().raise_for_status()
        provider.drift(store.get(A).identity, name="changed")

        assert not make_engine(pair(), refresh=False).plan().has_changes

    def test_vanished_resource_is_recreated(self, make_engine, provider, store):
        """Test a resource deleted outside converge is created again."""
        make_engine(pair()).apply().raise_for_status()
        provider.vanish(store.get(A).identity)

        assert make_engine(pair()).plan().get(A).kind == OperationKind.CREATE

    def test_removed_declaration_is_destroyed(self, make_engine):
        """Test instances no longer declared are planned for destroy."""
        make_engine(pair()).apply().raise_for_status()
        document = {"resources": {"test_thing": {"a": {"x": "one", "name": "web"}}}}

        plan = make_engine(document).plan()
        assert kinds(plan) == [("DESTROY", "test_link.b")]

    def test_destroy_plan_orders_dependents_first(self, make_engine):
        """Test destroy plans delete dependents before what they depend on."""
        engine = make_engine(pair())
        engine.apply().raise_for_status()

        plan = engine.plan(destroy=True)
        assert plan.destroy is True
        assert kinds(plan) == [("DESTROY", "test_link.b"), ("DESTROY", "test_thing.a")]
        assert plan.get(A).dependencies == [B]
        assert plan.outputs == {}


class TestRecordedDependencies:
    """Test recorded dependencies follow the configuration of unchanged resources."""

    def test_added_depends_on_reaches_destroy_order(self, make_engine, provider, store):
        """Test a depends_on added to an applied resource orders its destroy."""
        document = {"resources": {"test_thing": {"a": {"name": "a"}, "b": {"name": "b"}}}}
        make_engine(document).apply().raise_for_status()
        b = Address(type="test_thing", name="b")

        document["resources"]["test_thing"]["b"]["depends_on"] = ["test_thing.a"]
        engine = make_engine(document)
        plan = engine.plan()
        assert not plan.has_changes
        assert plan.get(b).refresh_record is True
        assert plan.get(A).refresh_record is False

        calls_before = len(provider.calls)
        engine.apply().raise_for_status()
        assert len(provider.calls) == calls_before
        assert store.get(b).dependencies == [A]

        destroy = engine.plan(destroy=True)
        assert destroy.get(A).dependencies == [b]

    def test_removed_depends_on_is_forgotten(self, make_engine, store):
        """Test dropping depends_on clears the recorded dependency."""
        document = {"resources": {"test_thing": {
            "a": {"name": "a"},
            "b": {"name": "b", "depends_on": ["test_thing.a"]},
        }}}
        make_engine(document).apply().raise_for_status()
        b = Address(type="test_thing", name="b")
        assert store.get(b).dependencies == [A]

        del document["resources"]["test_thing"]["b"]["depends_on"]
        engine = make_engine(document)
        assert engine.plan().get(b).refresh_record is True
        engine.apply().raise_for_status()

        assert store.get(b).dependencies == []
        assert engine.plan(destroy=True).get(A).dependencies == []
        assert not any(op.refresh_record for op in engine.plan().operations)
