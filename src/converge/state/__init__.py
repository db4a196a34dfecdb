"""State storage: per-address atomic records and the run-level lock."""

from .store import StateStore, MemoryStateStore
from .file_store import FileStateStore
from .locking import LockFile

__all__ = ["StateStore", "MemoryStateStore", "FileStateStore", "LockFile"]
