"""Bootstrap plan built from a plugin's stack order and a provision manifest.

Every stack-order task is resolved twice: against the plugin (the component
and group must exist) and against the manifest (at least one manifest entry
must request nodes for that component::group). The result is an ordered list
of phases, each holding the concrete node slots to bootstrap.
"""

import logging
from dataclasses import dataclass, field

from bootstrap.routine import Task
from errors import BootstrapPlanError
from manifest import NodeSpec, ProvisionManifest
from plugin import Component, Group, Plugin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedNode:
    """One instance requested by a manifest entry.

    Attributes:
        key: Stable node name, '{type}-{entry_index}-{ordinal}'
        instance_type: Requested instance type
        entry_index: Index of the manifest entry that requested it
        ordinal: Instance number within that entry
    """
    key: str
    instance_type: str
    entry_index: int
    ordinal: int

    def __str__(self) -> str:
        return self.key


@dataclass
class PlanTask:
    """A resolved stack-order task and the nodes it applies to."""
    task: Task
    component: Component
    group: Group
    nodes: list[PlannedNode] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id


@dataclass
class PlanPhase:
    """One phase: tasks run concurrently, phases run in order."""
    index: int
    tasks: list[PlanTask] = field(default_factory=list)

    @property
    def operations(self) -> list[tuple[PlanTask, PlannedNode]]:
        return [(t, n) for t in self.tasks for n in t.nodes]


def expand_nodes(specs: list[NodeSpec]) -> list[tuple[NodeSpec, list[PlannedNode]]]:
    """Expand each manifest entry into its planned instances."""
    expanded = []
    for i, spec in enumerate(specs):
        planned = [
            PlannedNode(key=f"{spec.type}-{i}-{n}", instance_type=spec.type, entry_index=i, ordinal=n)
            for n in range(spec.instances)
        ]
        expanded.append((spec, planned))
    return expanded


class BootstrapPlan:
    """Executable sequence of bootstrap phases."""

    def __init__(self, plugin: Plugin, manifest: ProvisionManifest, phases: list[PlanPhase]):
        self.plugin = plugin
        self.manifest = manifest
        self.phases = phases

    @classmethod
    def build(cls, plugin: Plugin, manifest: ProvisionManifest) -> 'BootstrapPlan':
        """Resolve the plugin's stack order against a manifest.

        Raises:
            InvalidProvisionManifest: If the manifest is invalid for the plugin
            BootstrapPlanError: If the plugin has no stack order, or a task has
                no matching manifest entry
            ComponentNotFound, GroupNotFound: If a task does not resolve
        """
        manifest.validate(plugin)

        routine = plugin.bootstrap_routine
        if routine is None or not routine.phases:
            raise BootstrapPlanError(f"Plugin {plugin} does not declare a stack order")

        expanded = expand_nodes(manifest.node_specs)

        phases = []
        for index, declared in enumerate(routine.phases, 1):
            phase = PlanPhase(index=index)
            for task in declared:
                component = plugin.require_component(task.component)
                group = component.require_group(task.group)

                matching = [spec for spec in expanded if task.id in spec[0].components]
                if not matching:
                    raise BootstrapPlanError(
                        f"stack_order phase {index} references '{task.id}' "
                        f"but the manifest requests no nodes for it"
                    )

                nodes = [node for _, planned in matching for node in planned]
                phase.tasks.append(PlanTask(task=task, component=component, group=group, nodes=nodes))
            phases.append(phase)

        plan = cls(plugin, manifest, phases)
        logger.debug(f"Built bootstrap plan for {plugin}: {len(phases)} phase(s), "
                     f"{plan.operation_count} node operation(s)")
        return plan

    @property
    def operation_count(self) -> int:
        return sum(len(p.operations) for p in self.phases)

    def describe(self) -> list[str]:
        """Human-readable plan lines, one per phase and task."""
        lines = []
        for phase in self.phases:
            lines.append(f"Phase {phase.index}:")
            for task in phase.tasks:
                nodes = ', '.join(n.key for n in task.nodes) or '(no instances)'
                lines.append(f"  {task.id} -> {nodes}")
        return lines
