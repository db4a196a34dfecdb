"""JSON file state store with an advisory lock file."""

import copy
import json
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from pydantic import ValidationError as PydanticValidationError
from ..contracts.address import Address
from ..contracts.state import StateRecord, StateSnapshot
from ..utils.errors import StateError
from ..utils.logging import get_logger
from .locking import LockFile
from .store import StateStore

logger = get_logger("state.file_store")

STATE_VERSION = 1


class FileStateStore(StateStore):
    """
    State persisted as one JSON document.

    Every mutation rewrites the document to a temporary file in the same
    directory and renames it over the original, so readers only ever see a
    complete document and a crash keeps every earlier commit.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_file = LockFile(self.path.with_name(self.path.name + ".lock"))
        self._mutex = threading.Lock()
        self._snapshot: Optional[StateSnapshot] = None

    def _read(self) -> StateSnapshot:
        if not self.path.exists():
            return StateSnapshot(version=STATE_VERSION, lineage=str(uuid.uuid4()))
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"State file {self.path} is not valid JSON: {e}")
        except OSError as e:
            raise StateError(f"Cannot read state file {self.path}: {e}")

        try:
            snapshot = StateSnapshot.model_validate(data)
        except PydanticValidationError as e:
            raise StateError(f"State file {self.path} is malformed: {e}")
        if snapshot.version > STATE_VERSION:
            raise StateError(f"State file {self.path} has unsupported version {snapshot.version}")
        return snapshot

    def _document(self) -> StateSnapshot:
        if self._snapshot is None:
            self._snapshot = self._read()
        return self._snapshot

    def _write(self, snapshot: StateSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = snapshot.model_dump(mode="json")
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StateError(f"Failed to write state file {self.path}: {e}")

    def _mutate(self, address: Address, record: Optional[StateRecord]) -> None:
        with self._mutex:
            current = self._document()
            records = current.records()
            if record is None:
                if address not in records:
                    return
                del records[address]
            else:
                records[address] = record.model_copy(deep=True)

            updated = StateSnapshot(
                version=STATE_VERSION,
                serial=current.serial + 1,
                lineage=current.lineage,
                resources=[records[a] for a in sorted(records, key=Address.sort_key)],
                outputs=current.outputs,
            )
            self._write(updated)
            self._snapshot = updated
        logger.debug(f"{'Committed' if record else 'Removed'} {address} (serial {updated.serial})")

    def load(self) -> Dict[Address, StateRecord]:
        with self._mutex:
            return {address: record.model_copy(deep=True) for address, record in self._document().records().items()}

    def commit(self, address: Address, record: StateRecord) -> None:
        self._mutate(address, record)

    def remove(self, address: Address) -> None:
        self._mutate(address, None)

    def save_outputs(self, outputs: Dict[str, Any]) -> None:
        with self._mutex:
            current = self._document()
            if current.outputs == outputs and self.path.exists():
                return
            updated = current.model_copy(update={"outputs": copy.deepcopy(outputs)})
            self._write(updated)
            self._snapshot = updated

    def snapshot(self) -> StateSnapshot:
        with self._mutex:
            return self._document().model_copy(deep=True)

    def initialize(self) -> None:
        with self._mutex:
            if not self.path.exists():
                self._write(self._document())
                logger.debug(f"Initialized state file {self.path}")

    @contextmanager
    def lock(self, timeout: Optional[float] = None, operation: str = "apply") -> Iterator[Dict[str, Any]]:
        info = self.lock_file.acquire(timeout=timeout, operation=operation)
        try:
            # Another process may have written state since we last read it.
            with self._mutex:
                self._snapshot = self._read()
            yield info
        finally:
            self.lock_file.release()

    def force_unlock(self, lock_id: str) -> None:
        self.lock_file.force_unlock(lock_id)
