"""Job status handle for in-flight operations.

A Job is the one object shared between concurrent workers and external
observers (CLI, UI). Writes are serialized with a lock; reads of single
attributes are always safe and snapshot() returns a consistent copy.
"""

import logging
import threading
import time
import uuid
from typing import Any, Optional

from errors import JobCancelled

logger = logging.getLogger(__name__)

PENDING = 'pending'
RUNNING = 'running'
SUCCESS = 'success'
FAILURE = 'failure'

TERMINAL_STATES = (SUCCESS, FAILURE)


class Job:
    """Mutable status channel for a bootstrap run or action run."""

    def __init__(self, job_type: str):
        self.id = uuid.uuid4().hex
        self.type = job_type
        self.state = PENDING
        self.status = ''
        self.result: Any = None
        self.status_history: list[tuple[float, str]] = []
        self.created_at = time.time()
        self.finished_at: Optional[float] = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    def set_status(self, message: str) -> None:
        """Publish a human-readable status line."""
        with self._lock:
            self.status = message
            self.status_history.append((time.time(), message))
        logger.info(f"[job {self.id[:8]}] {message}")

    def report_running(self, message: Optional[str] = None) -> None:
        with self._lock:
            if self.state in TERMINAL_STATES:
                return
            self.state = RUNNING
        if message:
            self.set_status(message)

    def report_success(self, result: Any = None) -> None:
        self._finish(SUCCESS, result)

    def report_failure(self, result: Any = None) -> None:
        self._finish(FAILURE, result)

    def _finish(self, state: str, result: Any) -> None:
        with self._lock:
            if self.state in TERMINAL_STATES:
                logger.debug(f"[job {self.id[:8]}] already {self.state}, ignoring {state}")
                return
            self.state = state
            self.result = result
            self.finished_at = time.time()
        logger.info(f"[job {self.id[:8]}] finished: {state}")

    def cancel(self) -> None:
        """Request cancellation. Running operations check this between steps."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelled(f"Job {self.id[:8]} was cancelled")

    @property
    def completed(self) -> bool:
        return self.state in TERMINAL_STATES

    def snapshot(self) -> dict:
        """Return a consistent copy of the job for observers."""
        with self._lock:
            return {
                'id': self.id,
                'type': self.type,
                'state': self.state,
                'status': self.status,
                'result': self.result,
                'created_at': self.created_at,
                'finished_at': self.finished_at,
            }

    def __repr__(self) -> str:
        return f"Job({self.id[:8]}, type={self.type}, state={self.state})"
