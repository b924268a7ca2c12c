"""
Job Registry
In-process mutual exclusion for named sync jobs.
"""

import threading
from typing import Dict


class JobRegistry:
    """
    Tracks which jobs are currently running.

    Injected into the runner and the admin router so tests get a fresh
    registry. Not persisted: a restart clears it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = set()

    def try_acquire(self, job: str) -> bool:
        """Mark job as running; False (without blocking) if it already is"""
        with self._lock:
            if job in self._running:
                return False
            self._running.add(job)
            return True

    def release(self, job: str) -> None:
        with self._lock:
            self._running.discard(job)

    def is_running(self, job: str) -> bool:
        with self._lock:
            return job in self._running

    def running(self) -> Dict[str, bool]:
        with self._lock:
            return {job: True for job in sorted(self._running)}
