"""Advisory lock file guarding a state document."""

import json
import os
import socket
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from ..utils.errors import LockedError, StateError
from ..utils.logging import get_logger

logger = get_logger("state.locking")

POLL_INTERVAL = 0.1


class LockFile:
    """
    Lock represented by the existence of ``<path>``.

    The file is created with O_CREAT|O_EXCL, so exactly one process wins, and
    holds a JSON description of the holder.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.info: Optional[Dict[str, Any]] = None

    def acquire(self, timeout: Optional[float] = None, operation: str = "apply") -> Dict[str, Any]:
        """
        Acquire the lock.

        Args:
            timeout: Seconds to keep polling a held lock; None fails immediately
            operation: Label recorded for other runs

        Returns:
            Lock info (id, pid, host, operation, created)

        Raises:
            LockedError: If the lock is still held when the timeout expires
        """
        info = {
            "id": str(uuid.uuid4()),
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "operation": operation,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        deadline = None if timeout is None else time.monotonic() + timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if deadline is None or time.monotonic() >= deadline:
                    holder = self.read()
                    raise LockedError(
                        f"State is locked by run {holder.get('id', 'unknown')} "
                        f"({holder.get('operation', 'unknown')}, pid {holder.get('pid', '?')})",
                        holder=holder,
                    )
                time.sleep(POLL_INTERVAL)
                continue

            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(info, f)
            self.info = info
            logger.debug(f"Acquired state lock {info['id']}")
            return info

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        if self.info is None:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            logger.warning(f"Lock file {self.path} disappeared before release")
        logger.debug(f"Released state lock {self.info['id']}")
        self.info = None

    def read(self) -> Dict[str, Any]:
        """Holder information of the current lock, or {} if unlocked."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable lock file {self.path}: {e}")
            return {"id": "unknown"}

    def force_unlock(self, lock_id: str) -> None:
        """
        Remove a lock left behind by a crashed run.

        Raises:
            StateError: If no lock is held or the id does not match
        """
        holder = self.read()
        if not holder:
            raise StateError(f"State is not locked ({self.path} does not exist)")
        if holder.get("id") != lock_id:
            raise StateError(f"Lock id mismatch: lock is held by {holder.get('id')}, not {lock_id}")
        os.remove(self.path)
        logger.info(f"Force-unlocked state lock {lock_id}")
