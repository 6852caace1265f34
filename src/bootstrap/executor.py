"""Bootstrap executor.

Runs a BootstrapPlan phase by phase. Phase k+1 starts only after every
operation of phase k has finished, failed, or timed out. Inside a phase,
all (task, node) operations go to a bounded worker pool with no ordering
between them.

Failed operations are recorded on the execution state and the job. What
happens next is controlled by BootstrapSettings.on_error:
- stop: remaining phases are skipped
- continue: remaining phases still run
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from bootstrap.plan import BootstrapPlan, PlanPhase, PlannedNode, PlanTask
from bootstrap.state import ExecutionState
from common import run_parallel, set_dotted
from config import BootstrapSettings
from inventory import InventoryService, get_inventory
from job import Job

logger = logging.getLogger(__name__)


@runtime_checkable
class NodeWorker(Protocol):
    """Protocol for the per-node bootstrap operation.

    Returns an optional message; raising marks the operation failed.
    """

    def __call__(self, job: Job, task: PlanTask, node: PlannedNode) -> Optional[str]:
        """Bootstrap one node into one group."""


@dataclass
class InventoryBootstrapWorker:
    """Bootstraps nodes through the inventory service.

    The node gets the group's run list, and the group's attribute filters
    as attributes so that it matches the group on later lookups.
    """
    environment: str
    inventory: Optional[InventoryService] = None

    def __call__(self, job: Job, task: PlanTask, node: PlannedNode) -> Optional[str]:
        inventory = self.inventory or get_inventory()
        attributes: dict = {}
        for key, value in task.group.attributes.items():
            set_dotted(attributes, key, value)

        logger.info(f"[{task.id}] Bootstrapping {node.key} ({node.instance_type})")
        registered = inventory.bootstrap_node(self.environment, node.key, task.group.run_list, attributes)
        return f"bootstrapped as '{registered.name}'"


def operation_key(task: PlanTask, node: PlannedNode) -> str:
    return f"{task.id}@{node.key}"


@dataclass
class BootstrapExecutor:
    """Executes a bootstrap plan against an environment.

    Attributes:
        plan: The resolved bootstrap plan
        worker: Per-node operation
        environment: Target environment name
        settings: Fan-out, timeout and on_error settings
        dry_run: If True, preview the plan without executing
    """
    plan: BootstrapPlan
    worker: NodeWorker
    environment: str
    settings: BootstrapSettings = field(default_factory=BootstrapSettings)
    dry_run: bool = False

    def run(self, job: Job) -> tuple[bool, ExecutionState]:
        """Execute every phase in order.

        Returns:
            (success, state); success is False if any operation failed or the
            job was cancelled
        """
        state = ExecutionState(self.plan.plugin.id, self.environment)
        state.start()
        for phase in self.plan.phases:
            for task, node in phase.operations:
                state.add_node(operation_key(task, node), task=task.id, node=node.key, phase=phase.index)

        if self.dry_run:
            self._preview()
            state.finish()
            return True, state

        total = len(self.plan.phases)
        job.report_running(
            f"Bootstrapping {self.plan.plugin} in '{self.environment}': "
            f"{total} phase(s), {self.plan.operation_count} node operation(s)"
        )

        success = True
        halted: Optional[tuple[str, str]] = None  # (status, reason) for unrun operations

        for phase in self.plan.phases:
            if halted is None and job.cancelled:
                halted = ('cancelled', 'job cancelled')
                success = False
                job.set_status(f"Bootstrap cancelled before phase {phase.index}/{total}")

            if halted is not None:
                status, reason = halted
                for task, node in phase.operations:
                    state.get_node(operation_key(task, node)).skip(reason, status=status)
                continue

            if not self._run_phase(job, phase, state):
                success = False
                if self.settings.on_error == 'stop':
                    halted = ('skipped', f"phase {phase.index} failed")
                    job.set_status(f"Phase {phase.index}/{total} failed, stopping")
                else:
                    job.set_status(f"Phase {phase.index}/{total} failed, continuing")

        state.finish()
        summary = state.summary()
        logger.info(f"Bootstrap of {self.plan.plugin} finished: {summary}")
        if success:
            job.report_success(summary)
        else:
            job.report_failure(summary)
        return success, state

    def _run_phase(self, job: Job, phase: PlanPhase, state: ExecutionState) -> bool:
        """Run all operations of one phase. Returns True if none failed."""
        operations = phase.operations
        task_ids = ', '.join(t.id for t in phase.tasks)
        job.set_status(
            f"Phase {phase.index}/{len(self.plan.phases)}: {task_ids} on {len(operations)} node(s)"
        )
        if not operations:
            return True

        def _execute(op: tuple[PlanTask, PlannedNode]) -> Optional[str]:
            task, node = op
            state.get_node(operation_key(task, node)).start()
            return self.worker(job, task, node)

        ok = True
        for (task, node), message, error in run_parallel(
                operations, _execute, max_workers=self.settings.max_workers,
                timeout=self.settings.node_timeout or None,
                abandon=self.settings.abandon_stragglers):
            node_state = state.get_node(operation_key(task, node))
            if error is not None:
                ok = False
                node_state.fail(str(error))
                logger.error(f"[{task.id}] Bootstrap failed for {node.key}: {error}")
                job.set_status(f"{task.id} failed on {node.key}: {error}")
            else:
                node_state.complete(message)
        return ok

    def _preview(self) -> None:
        """Print the plan without executing it."""
        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  DRY-RUN BOOTSTRAP: {self.plan.plugin}")
        print(f"  Environment: {self.environment}")
        print("═══════════════════════════════════════════════════════════════")
        print("")
        for line in self.plan.describe():
            print(f"  {line}")
        print("")
        print(f"  Summary: {len(self.plan.phases)} phase(s), "
              f"{self.plan.operation_count} node operation(s)")
        print(f"  Workers: {self.settings.max_workers}, on_error: {self.settings.on_error}")
        print("  Mode: DRY-RUN (no changes made)")
        print("")
