"""
Per-job mutex registry.

Recalculation, sync propagation and chain generation are read-modify-write
sequences on one job's documents.  Holding ``job_lock(job_id)`` for the whole
sequence serialises them within this process.  Locks are re-entrant so an
outer operation (e.g. a sync update) can call an inner one (recalculation)
for the same job.
"""
import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class JobLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, job_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.RLock()
            return lock

    @contextmanager
    def job_lock(self, job_id: Optional[str]) -> Iterator[None]:
        """Hold the job's lock.  Documents without a job need no lock."""
        if job_id is None:
            yield
            return
        with self._lock_for(job_id):
            yield

    def __len__(self) -> int:
        return len(self._locks)
