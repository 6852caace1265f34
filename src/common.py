"""Common utilities and types for topology orchestration."""

import logging
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# component::group reference, as used by manifests and stack orders
NODE_GROUP_ID_REGEX = re.compile(r'^(.+)::(.+)$')


@dataclass
class NodeResult:
    """Outcome of one operation on one node."""
    name: str
    success: bool
    message: str = ''
    duration: float = 0.0


def parse_node_group_id(value: str) -> Optional[tuple[str, str]]:
    """Split 'component::group' into (component, group), or None if malformed."""
    if not isinstance(value, str):
        return None
    match = NODE_GROUP_ID_REGEX.match(value)
    if not match:
        return None
    return match.group(1), match.group(2)


def version_key(version: Any) -> tuple:
    """Sort key for dotted versions so that 1.9.0 < 1.10.0."""
    key = []
    for piece in re.split(r'[.\-+]', str(version)):
        if piece.isdigit():
            key.append((0, int(piece), ''))
        else:
            key.append((1, 0, piece))
    return tuple(key)


def get_dotted(data: dict, key: str, default: Any = None) -> Any:
    """Read a nested value using a dotted key ('a.b.c')."""
    current: Any = data
    for part in key.split('.'):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_dotted(data: dict, key: str, value: Any) -> None:
    """Write a nested value using a dotted key, creating intermediate dicts."""
    parts = key.split('.')
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def dotted_depth(data: dict, key: str) -> int:
    """Number of leading intermediate dicts of a dotted key that already exist."""
    depth = 0
    current = data
    for part in key.split('.')[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            break
        depth += 1
    return depth


def delete_dotted(data: dict, key: str, keep: int = 0) -> None:
    """Remove a nested value using a dotted key. Missing keys are ignored.

    Intermediate dicts left empty are removed too, except for the first
    ``keep`` levels.
    """
    parts = key.split('.')
    path = [data]
    for part in parts[:-1]:
        current = path[-1].get(part)
        if not isinstance(current, dict):
            return
        path.append(current)
    path[-1].pop(parts[-1], None)

    for depth in range(len(parts) - 1, keep, -1):
        parent = path[depth - 1]
        if parent[parts[depth - 1]]:
            break
        del parent[parts[depth - 1]]


def run_parallel(
    items: Sequence[Any],
    fn: Callable[[Any], Any],
    max_workers: int = 8,
    timeout: Optional[float] = None,
    abandon: bool = False,
) -> list[tuple[Any, Any, Optional[BaseException]]]:
    """Run fn(item) for every item on a bounded worker pool.

    The whole batch gets a deadline of ``timeout * ceil(len(items) / max_workers)``
    seconds so queued items still get their share. Items that have not finished
    by then are reported with a TimeoutError. Queued items are cancelled; items
    already running are waited for before returning, unless abandon is set, in
    which case their threads are left behind.

    Returns:
        (item, result, error) tuples in input order; error is None on success.
    """
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    deadline = None
    if timeout:
        deadline = timeout * math.ceil(len(items) / workers)

    pool = ThreadPoolExecutor(max_workers=workers)
    futures = {pool.submit(fn, item): i for i, item in enumerate(items)}
    start = time.time()
    try:
        _, not_done = wait(futures, timeout=deadline)
    except BaseException:
        pool.shutdown(wait=False, cancel_futures=True)
        raise

    for future in not_done:
        if not future.cancel():
            elapsed = time.time() - start
            action = 'abandoning' if abandon else 'waiting for it to finish'
            logger.warning(f"Operation on {items[futures[future]]!r} still running "
                           f"after {elapsed:.1f}s, {action}")
    pool.shutdown(wait=not abandon, cancel_futures=True)

    outcomes: list[tuple[Any, Any, Optional[BaseException]]] = [None] * len(items)  # type: ignore[list-item]
    for future, i in futures.items():
        if future in not_done:
            outcomes[i] = (items[i], None, TimeoutError(f"timed out after {deadline}s"))
            continue
        error = future.exception()
        outcomes[i] = (items[i], None if error else future.result(), error)
    return outcomes
