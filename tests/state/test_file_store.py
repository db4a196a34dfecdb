"""Tests for the JSON file state store and its lock file."""

import json
import tempfile
from pathlib import Path
import pytest
from converge.contracts.address import Address
from converge.contracts.state import StateRecord
from converge.state.file_store import FileStateStore
from converge.state.locking import LockFile
from converge.utils.errors import LockedError, StateError

VPC = Address(type="aws_vpc", name="main")
SUBNET = Address(type="aws_subnet", name="public", index=0)


@pytest.fixture
def state_dir():
    """Temporary directory holding a state document."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def record(address, identity, **attributes):
    return StateRecord(address=address, identity=identity, attributes=attributes)


class TestFileStateStore:
    """Test persistence of state records."""

    def test_missing_file_is_empty_state(self, state_dir):
        """Test a store without a document starts empty at serial 0."""
        store = FileStateStore(state_dir / "state.json")
        assert store.load() == {}
        assert store.serial == 0

    def test_commit_persists_across_instances(self, state_dir):
        """Test committed records are visible to a new store on the same file."""
        path = state_dir / "state.json"
        store = FileStateStore(path)
        store.commit(VPC, record(VPC, "vpc-1", cidr_block="10.0.0.0/16"))
        store.commit(SUBNET, record(SUBNET, "subnet-1"))

        reloaded = FileStateStore(path)
        assert reloaded.get(VPC).attributes == {"cidr_block": "10.0.0.0/16"}
        assert reloaded.get(SUBNET).identity == "subnet-1"
        assert reloaded.serial == 2
        assert reloaded.lineage == store.lineage

    def test_records_written_in_address_order(self, state_dir):
        """Test the document lists resources sorted by address."""
        path = state_dir / "state.json"
        store = FileStateStore(path)
        store.commit(VPC, record(VPC, "vpc-1"))
        store.commit(SUBNET, record(SUBNET, "subnet-1"))

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        assert [r["address"]["type"] for r in data["resources"]] == ["aws_subnet", "aws_vpc"]
        assert data["serial"] == 2

    def test_remove_increments_serial(self, state_dir):
        """Test removing a record bumps the serial; removing nothing does not."""
        store = FileStateStore(state_dir / "state.json")
        store.commit(VPC, record(VPC, "vpc-1"))
        store.remove(VPC)
        store.remove(VPC)

        assert store.load() == {}
        assert store.serial == 2

    def test_no_temporary_files_left(self, state_dir):
        """Test atomic writes clean up after themselves."""
        store = FileStateStore(state_dir / "state.json")
        store.commit(VPC, record(VPC, "vpc-1"))
        store.save_outputs({"vpc_id": "vpc-1"})

        assert sorted(p.name for p in state_dir.iterdir()) == ["state.json"]

    def test_outputs_persisted(self, state_dir):
        """Test outputs are stored in the same document."""
        path = state_dir / "state.json"
        FileStateStore(path).save_outputs({"vpc_id": "vpc-1"})
        assert FileStateStore(path).snapshot().outputs == {"vpc_id": "vpc-1"}

    def test_invalid_json_raises(self, state_dir):
        """Test an unreadable document is a StateError, not a silent reset."""
        path = state_dir / "state.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateError) as excinfo:
            FileStateStore(path).load()
        assert "not valid JSON" in str(excinfo.value)

    def test_malformed_document_raises(self, state_dir):
        """Test a document missing required fields is rejected."""
        path = state_dir / "state.json"
        path.write_text(json.dumps({"serial": 1, "resources": []}), encoding="utf-8")

        with pytest.raises(StateError):
            FileStateStore(path).load()

    def test_newer_version_rejected(self, state_dir):
        """Test documents written by a newer format are not read."""
        path = state_dir / "state.json"
        path.write_text(json.dumps({"version": 99, "lineage": "x"}), encoding="utf-8")

        with pytest.raises(StateError):
            FileStateStore(path).load()

    def test_lock_leaves_missing_document_alone(self, state_dir):
        """Test taking the lock on a missing document writes nothing."""
        path = state_dir / "state.json"
        with FileStateStore(path).lock():
            pass
        assert not path.exists()

    def test_initialize_persists_lineage(self, state_dir):
        """Test initialize writes the empty document so its lineage stays fixed."""
        path = state_dir / "state.json"
        store = FileStateStore(path)
        with store.lock():
            store.initialize()
            lineage = store.lineage

        assert path.exists()
        assert FileStateStore(path).lineage == lineage
        assert FileStateStore(path).serial == 0

    def test_lock_rereads_document(self, state_dir):
        """Test taking the lock picks up commits made by another store."""
        path = state_dir / "state.json"
        first = FileStateStore(path)
        second = FileStateStore(path)
        first.load()
        second.commit(VPC, record(VPC, "vpc-1"))

        with first.lock():
            assert first.get(VPC).identity == "vpc-1"


class TestLockFile:
    """Test the advisory lock file."""

    def test_second_holder_is_rejected(self, state_dir):
        """Test a held lock raises LockedError naming the holder."""
        store = FileStateStore(state_dir / "state.json")
        other = FileStateStore(state_dir / "state.json")

        with store.lock(operation="apply") as info:
            with pytest.raises(LockedError) as excinfo:
                with other.lock():
                    pass
            assert excinfo.value.holder["id"] == info["id"]
            assert "apply" in str(excinfo.value)

        with other.lock():
            pass

    def test_timeout_expires(self, state_dir):
        """Test a lock held past the timeout still fails."""
        path = state_dir / "state.json.lock"
        holder = LockFile(path)
        holder.acquire()

        with pytest.raises(LockedError):
            LockFile(path).acquire(timeout=0.2)
        holder.release()
        assert not path.exists()

    def test_force_unlock(self, state_dir):
        """Test force-unlock requires the recorded lock id."""
        path = state_dir / "state.json.lock"
        info = LockFile(path).acquire(operation="apply")

        with pytest.raises(StateError) as excinfo:
            LockFile(path).force_unlock("wrong-id")
        assert "mismatch" in str(excinfo.value)
        assert path.exists()

        LockFile(path).force_unlock(info["id"])
        assert not path.exists()

    def test_force_unlock_without_lock(self, state_dir):
        """Test force-unlock on an unlocked state fails."""
        with pytest.raises(StateError):
            LockFile(state_dir / "state.json.lock").force_unlock("anything")
