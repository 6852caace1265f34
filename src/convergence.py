"""Bulk convergence runs across sets of nodes.

Each node is converged on a bounded worker pool. Every node gets a result,
so a partially failed run is reported node by node rather than as a single
boolean.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from common import NodeResult, run_parallel
from config import ConvergenceSettings
from errors import ConvergenceFailed
from inventory import InventoryService, Node, get_inventory
from job import Job

logger = logging.getLogger(__name__)


@dataclass
class ConvergenceReport:
    """Per-node results of one bulk convergence run."""
    recipe: Optional[str] = None
    results: dict[str, NodeResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [name for name, r in self.results.items() if r.success]

    @property
    def failed(self) -> list[str]:
        return [name for name, r in self.results.items() if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed


def run_convergence(
    job: Job,
    nodes: list[Node],
    recipe: Optional[str] = None,
    inventory: Optional[InventoryService] = None,
    settings: Optional[ConvergenceSettings] = None,
) -> ConvergenceReport:
    """Converge every node, concurrently.

    Args:
        job: Job to publish progress on
        nodes: Target nodes
        recipe: Optional recipe overriding the node run list
        inventory: Inventory service (default: process-wide client)
        settings: Fan-out settings (default: ConvergenceSettings())

    Returns:
        ConvergenceReport with one entry per node

    Raises:
        ConvergenceFailed: If any node failed; the report is attached
    """
    inventory = inventory or get_inventory()
    settings = settings or ConvergenceSettings()
    report = ConvergenceReport(recipe=recipe)
    if not nodes:
        return report

    names = ', '.join(n.name for n in nodes)
    target = f" with '{recipe}'" if recipe else ''
    job.set_status(f"Running convergence{target} on {names}")

    def _converge(node: Node) -> NodeResult:
        start = time.time()
        message = inventory.converge_node(node, recipe)
        return NodeResult(name=node.name, success=True, message=message or '',
                          duration=time.time() - start)

    for node, result, error in run_parallel(
            nodes, _converge, max_workers=settings.max_workers,
            timeout=settings.node_timeout or None):
        if error is not None:
            logger.error(f"Convergence failed on '{node.name}': {error}")
            report.results[node.name] = NodeResult(name=node.name, success=False, message=str(error))
        else:
            logger.debug(f"Convergence finished on '{node.name}' in {result.duration:.1f}s")
            report.results[node.name] = result

    if not report.success:
        job.set_status(
            f"Convergence failed on {len(report.failed)} of {len(nodes)} node(s): "
            f"{', '.join(report.failed)}"
        )
        raise ConvergenceFailed(report)

    job.set_status(f"Convergence finished on {len(nodes)} node(s)")
    return report
