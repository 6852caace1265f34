"""Execution state for bootstrap runs.

Tracks per-operation status (pending, running, completed, failed, skipped,
cancelled) so partial failure is visible node by node, and persists it to
disk for later inspection.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

STATUSES = ('pending', 'running', 'completed', 'failed', 'skipped', 'cancelled')


@dataclass
class NodeState:
    """State of one (task, node) operation.

    Attributes:
        name: Operation key, '{component::group}@{node}'
        task: component::group id
        node: Planned node key
        phase: Phase index (1-based)
        status: Current status
        message: Worker message on success
        error: Error message on failure
    """
    name: str
    task: str = ''
    node: str = ''
    phase: int = 0
    status: str = 'pending'
    message: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def start(self) -> None:
        """Mark running. Only a pending operation can start."""
        with self._lock:
            if self.status != 'pending':
                logger.debug(f"{self.name} is {self.status}, not starting")
                return
            self.status = 'running'
            self.started_at = time.time()

    def complete(self, message: Optional[str] = None) -> None:
        with self._lock:
            self.status = 'completed'
            self.completed_at = time.time()
            if message:
                self.message = message

    def fail(self, error: str) -> None:
        with self._lock:
            self.status = 'failed'
            self.completed_at = time.time()
            self.error = error

    def skip(self, reason: str, status: str = 'skipped') -> None:
        self.status = status
        self.error = reason

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'task': self.task,
            'node': self.node,
            'phase': self.phase,
            'status': self.status,
        }
        for key in ('message', 'started_at', 'completed_at', 'error'):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'NodeState':
        return cls(
            name=data['name'],
            task=data.get('task', ''),
            node=data.get('node', ''),
            phase=data.get('phase', 0),
            status=data.get('status', 'pending'),
            message=data.get('message'),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
        )


class ExecutionState:
    """Plan-level execution state with save/load."""

    def __init__(self, plugin_id: str, environment: str):
        self.plugin_id = plugin_id
        self.environment = environment
        self._nodes: dict[str, NodeState] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_node(self, name: str, **kwargs: Any) -> NodeState:
        """Register an operation for tracking."""
        state = NodeState(name=name, **kwargs)
        self._nodes[name] = state
        return state

    def get_node(self, name: str) -> NodeState:
        """Get operation state by name.

        Raises:
            KeyError: If not registered
        """
        return self._nodes[name]

    @property
    def nodes(self) -> dict[str, NodeState]:
        return dict(self._nodes)

    def with_status(self, status: str) -> list[NodeState]:
        return [s for s in self._nodes.values() if s.status == status]

    @property
    def failed(self) -> list[NodeState]:
        return self.with_status('failed')

    @property
    def completed(self) -> list[NodeState]:
        return self.with_status('completed')

    def summary(self) -> dict[str, int]:
        counts = {status: 0 for status in STATUSES}
        for state in self._nodes.values():
            counts[state.status] += 1
        return counts

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def to_dict(self) -> dict:
        return {
            'plugin': self.plugin_id,
            'environment': self.environment,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'summary': self.summary(),
            'nodes': {name: state.to_dict() for name, state in self._nodes.items()},
        }

    def save(self, path: Path) -> Path:
        """Save state to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug(f"Saved execution state to {path}")
        return path

    @classmethod
    def load(cls, path: Path) -> 'ExecutionState':
        """Load state from a JSON file.

        Raises:
            FileNotFoundError: If the state file doesn't exist
        """
        with open(path, encoding='utf-8') as f:
            data = json.load(f)

        state = cls(data['plugin'], data['environment'])
        state.started_at = data.get('started_at')
        state.completed_at = data.get('completed_at')
        for name, node_data in data.get('nodes', {}).items():
            state._nodes[name] = NodeState.from_dict(node_data)

        logger.debug(f"Loaded execution state from {path}")
        return state
