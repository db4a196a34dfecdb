"""State store interface and the in-process implementation."""

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from ..contracts.address import Address
from ..contracts.state import StateRecord, StateSnapshot
from ..utils.errors import LockedError
from ..utils.logging import get_logger

logger = get_logger("state.store")


class StateStore(ABC):
    """
    Durable record of applied resource instances.

    Each ``commit``/``remove`` is atomic for its address: a crash between two
    calls leaves every earlier call intact. A run holds ``lock()`` for its whole
    plan+apply cycle so that two runs never race on the same store.
    """

    @abstractmethod
    def load(self) -> Dict[Address, StateRecord]:
        """Return every record keyed by address."""
        pass

    @abstractmethod
    def commit(self, address: Address, record: StateRecord) -> None:
        """Create or replace the record of one address."""
        pass

    @abstractmethod
    def remove(self, address: Address) -> None:
        """Delete the record of one address (no-op if absent)."""
        pass

    @abstractmethod
    def save_outputs(self, outputs: Dict[str, Any]) -> None:
        """Persist the outputs of the last apply."""
        pass

    @abstractmethod
    def snapshot(self) -> StateSnapshot:
        """Copy of the whole state document."""
        pass

    def initialize(self) -> None:
        """Persist an empty document if none exists, fixing its lineage."""
        pass

    @abstractmethod
    def lock(self, timeout: Optional[float] = None, operation: str = "apply") -> Any:
        """
        Context manager holding the run-level advisory lock.

        Args:
            timeout: Seconds to wait for a held lock; None fails immediately
            operation: Label recorded with the lock

        Raises:
            LockedError: If the lock is held and could not be acquired in time
        """
        pass

    @property
    def serial(self) -> int:
        return self.snapshot().serial

    @property
    def lineage(self) -> str:
        return self.snapshot().lineage

    def get(self, address: Address) -> Optional[StateRecord]:
        return self.load().get(address)


class MemoryStateStore(StateStore):
    """State held in process memory (tests and embedding)."""

    def __init__(self, snapshot: Optional[StateSnapshot] = None):
        self._snapshot = snapshot or StateSnapshot(lineage=str(uuid.uuid4()))
        self._records: Dict[Address, StateRecord] = self._snapshot.records()
        self._mutex = threading.Lock()
        self._run_lock = threading.Lock()
        self._holder: Optional[Dict[str, Any]] = None

    def load(self) -> Dict[Address, StateRecord]:
        with self._mutex:
            return {address: record.model_copy(deep=True) for address, record in self._records.items()}

    def commit(self, address: Address, record: StateRecord) -> None:
        with self._mutex:
            self._records[address] = record.model_copy(deep=True)
            self._snapshot.serial += 1
        logger.debug(f"Committed {address} (serial {self._snapshot.serial})")

    def remove(self, address: Address) -> None:
        with self._mutex:
            if self._records.pop(address, None) is not None:
                self._snapshot.serial += 1
        logger.debug(f"Removed {address}")

    def save_outputs(self, outputs: Dict[str, Any]) -> None:
        with self._mutex:
            self._snapshot.outputs = copy.deepcopy(outputs)

    def snapshot(self) -> StateSnapshot:
        with self._mutex:
            return StateSnapshot(
                version=self._snapshot.version,
                serial=self._snapshot.serial,
                lineage=self._snapshot.lineage,
                resources=[self._records[a].model_copy(deep=True) for a in sorted(self._records, key=Address.sort_key)],
                outputs=copy.deepcopy(self._snapshot.outputs),
            )

    @contextmanager
    def lock(self, timeout: Optional[float] = None, operation: str = "apply") -> Iterator[Dict[str, Any]]:
        acquired = self._run_lock.acquire(blocking=False) if timeout is None else self._run_lock.acquire(timeout=timeout)
        if not acquired:
            raise LockedError(
                f"State is locked by another run ({(self._holder or {}).get('operation', 'unknown')})",
                holder=self._holder,
            )
        self._holder = {"id": str(uuid.uuid4()), "operation": operation}
        try:
            yield self._holder
        finally:
            self._holder = None
            self._run_lock.release()
