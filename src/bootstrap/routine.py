"""Declared bootstrap stack order.

A routine is an explicit, ordered list of phases. Each phase names one or
more component::group tasks; phases run in list order.
"""

from dataclasses import dataclass, field

from common import parse_node_group_id
from errors import PluginSyntaxError


@dataclass(frozen=True)
class Task:
    """One component::group reference inside a phase."""
    component: str
    group: str

    @property
    def id(self) -> str:
        return f"{self.component}::{self.group}"

    @classmethod
    def parse(cls, value: str) -> 'Task':
        """Parse 'component::group'.

        Raises:
            PluginSyntaxError: If value is not in component::group form
        """
        parsed = parse_node_group_id(value)
        if parsed is None:
            raise PluginSyntaxError(
                f"stack_order entry '{value}' is not in the proper format. Expected: 'component::group'"
            )
        return cls(component=parsed[0], group=parsed[1])

    def __str__(self) -> str:
        return self.id


@dataclass
class BootstrapRoutine:
    """Ordered provisioning phases over component groups."""
    phases: list[list[Task]] = field(default_factory=list)

    def __post_init__(self) -> None:
        for i, phase in enumerate(self.phases, 1):
            if not phase:
                raise PluginSyntaxError(f"stack_order phase {i} is empty")

    @classmethod
    def from_ids(cls, phases: list) -> 'BootstrapRoutine':
        """Build from nested lists of 'component::group' strings.

        A bare string is accepted as a single-task phase.
        """
        if not isinstance(phases, list):
            raise PluginSyntaxError(f"stack_order must be a list of phases, got {type(phases).__name__}")
        parsed = []
        for phase in phases:
            entries = [phase] if isinstance(phase, str) else phase
            if not isinstance(entries, list):
                raise PluginSyntaxError(
                    f"stack_order phase must be a list of 'component::group' entries, got {phase!r}"
                )
            parsed.append([Task.parse(entry) for entry in entries])
        return cls(phases=parsed)

    @property
    def tasks(self) -> list[Task]:
        """Every task, in phase order."""
        return [task for phase in self.phases for task in phase]

    def to_ids(self) -> list[list[str]]:
        return [[task.id for task in phase] for phase in self.phases]
