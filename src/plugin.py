"""Topology model: plugins, components, groups and commands.

A Plugin is one versioned, declarative description of a deployable clustered
system. It is built once (see plugin_loader.PluginBuilder), validated, and then
treated as read-only so it can be shared across concurrent operations.

Lookups come in pairs: component(name) returns None on a miss while
require_component(name) raises ComponentNotFound. Commands, groups and actions
follow the same convention.
"""

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from actions.action import Action
from bootstrap.routine import BootstrapRoutine
from common import version_key
from config import ConvergenceSettings
from errors import (
    ActionNotFound,
    CommandNotFound,
    ComponentNotFound,
    DuplicateNameError,
    EnvironmentNotFound,
    GroupNotFound,
    PluginValidationError,
)
from inventory import InventoryService, Node, get_inventory
from job import Job

logger = logging.getLogger(__name__)

VERSION_REGEX = re.compile(r'^\d+(\.\d+){0,2}([-+][0-9A-Za-z.\-]+)?$')

# Characters with special meaning in inventory search queries
_SEARCH_SPECIAL = re.compile(r'([\[\]:(){}^"~*?\\/+\-!&|])')


def plugin_key(name: str, version: str) -> str:
    """Identifier for a plugin version: '{name}-{version}'."""
    return f"{name}-{version}"


def _escape(value: str) -> str:
    return _SEARCH_SPECIAL.sub(r'\\\1', value)


@dataclass
class Group:
    """A named role within a component, resolved against live nodes.

    Attributes:
        name: Group name, unique within its component
        recipes: Recipes a member node has in its run list
        roles: Roles a member node has in its run list
        attributes: Dotted attribute filters a member node must match
    """
    name: str
    recipes: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def run_list(self) -> list[str]:
        """Run list entries applied when bootstrapping a node into this group."""
        return [f"recipe[{r}]" for r in self.recipes] + [f"role[{r}]" for r in self.roles]

    def search_query(self, environment: str) -> str:
        """Inventory search query selecting this group's nodes."""
        items = [f"chef_environment:{_escape(environment)}"]
        for key, value in self.attributes.items():
            items.append(f"{key.replace('.', '_')}:{_escape(str(value))}")
        for entry in self.run_list:
            items.append(f"run_list:{_escape(entry)}")
        return ' AND '.join(items)

    def nodes(self, environment: str, inventory: Optional[InventoryService] = None) -> list[Node]:
        inventory = inventory or get_inventory()
        query = self.search_query(environment)
        logger.debug(f"Resolving group '{self.name}' in '{environment}': {query}")
        return inventory.resolve_nodes(environment, query)


@dataclass
class CommandStep:
    """One step of a command: run an action on the nodes of a group.

    component is optional for component-scoped commands (defaults to the owner).
    """
    group: str
    action: str
    component: Optional[str] = None


@dataclass(eq=False)
class Command:
    """An operator-invokable named procedure, scoped to a plugin or a component."""
    name: str
    owner: Any = None
    description: str = ''
    steps: list[CommandStep] = field(default_factory=list)

    @property
    def scope(self) -> str:
        return 'component' if isinstance(self.owner, Component) else 'plugin'

    def _component_for(self, step: CommandStep) -> 'Component':
        if isinstance(self.owner, Component):
            if not step.component:
                return self.owner
            return self.owner.plugin.require_component(step.component)
        return self.owner.require_component(step.component or '')

    def invoke(
        self,
        job: Job,
        environment: str,
        inventory: Optional[InventoryService] = None,
        run_convergence: bool = True,
        settings: Optional[ConvergenceSettings] = None,
    ) -> 'Command':
        """Run every step of this command, in order, against an environment.

        Raises:
            EnvironmentNotFound: If the environment does not exist
            ConvergenceFailed: If a convergence run fails on any node
        """
        inventory = inventory or get_inventory()
        job.report_running(f"Invoking {self.scope} command '{self.name}' on '{environment}'")
        try:
            if inventory.find_environment(environment) is None:
                raise EnvironmentNotFound(environment)

            for step in self.steps:
                component = self._component_for(step)
                action = component.require_action(step.action)
                nodes = component.require_group(step.group).nodes(environment, inventory)
                if not nodes:
                    job.set_status(
                        f"No nodes in {component.name}::{step.group}, skipping action '{step.action}'"
                    )
                    continue
                action.run(job, environment, nodes, run_convergence=run_convergence,
                           inventory=inventory, settings=settings)
        except Exception as e:
            job.report_failure(str(e))
            raise

        job.report_success(f"Command '{self.name}' finished on '{environment}'")
        return self

    def __str__(self) -> str:
        return f"{self.name} ({self.scope} command)"


@dataclass(eq=False)
class Component:
    """One tier of the deployed system, e.g. a database layer."""
    name: str
    plugin: Optional['Plugin'] = None
    description: str = ''
    _groups: dict[str, Group] = field(default_factory=dict, init=False, repr=False)
    _commands: dict[str, Command] = field(default_factory=dict, init=False, repr=False)
    _actions: dict[str, Action] = field(default_factory=dict, init=False, repr=False)

    @property
    def groups(self) -> list[Group]:
        return list(self._groups.values())

    @property
    def commands(self) -> list[Command]:
        return list(self._commands.values())

    @property
    def actions(self) -> list[Action]:
        return list(self._actions.values())

    def add_group(self, group: Group) -> Group:
        if group.name in self._groups:
            raise DuplicateNameError('Group', group.name, self)
        self._groups[group.name] = group
        return group

    def add_command(self, command: Command) -> Command:
        if command.name in self._commands:
            raise DuplicateNameError('Command', command.name, self)
        command.owner = self
        self._commands[command.name] = command
        return command

    def add_action(self, action: Action) -> Action:
        if action.name in self._actions:
            raise DuplicateNameError('Action', action.name, self)
        self._actions[action.name] = action
        return action

    def group(self, name: str) -> Optional[Group]:
        return self._groups.get(str(name))

    def require_group(self, name: str) -> Group:
        found = self.group(name)
        if found is None:
            raise GroupNotFound(name, self)
        return found

    def has_group(self, name: str) -> bool:
        return self.group(name) is not None

    def command(self, name: str) -> Optional[Command]:
        return self._commands.get(str(name))

    def require_command(self, name: str) -> Command:
        found = self.command(name)
        if found is None:
            raise CommandNotFound(name, self)
        return found

    def action(self, name: str) -> Optional[Action]:
        return self._actions.get(str(name))

    def require_action(self, name: str) -> Action:
        found = self.action(name)
        if found is None:
            raise ActionNotFound(name, self)
        return found

    def nodes(self, environment: str, inventory: Optional[InventoryService] = None) -> dict[str, list[Node]]:
        """Live nodes per group name."""
        inventory = inventory or get_inventory()
        return {group.name: group.nodes(environment, inventory) for group in self.groups}

    def __str__(self) -> str:
        return f"component '{self.name}'"


@functools.total_ordering
@dataclass(eq=False)
class Plugin:
    """A versioned, declarative description of a deployable clustered system.

    Plugins order by name, then by version, and compare equal when both
    match, so a set of plugins holds one entry per id.
    """
    name: str
    version: str
    maintainer: str = ''
    maintainer_email: str = ''
    license: str = ''
    description: str = ''
    bootstrap_routine: Optional[BootstrapRoutine] = None
    _components: dict[str, Component] = field(default_factory=dict, init=False, repr=False)
    _commands: dict[str, Command] = field(default_factory=dict, init=False, repr=False)

    @property
    def id(self) -> str:
        return plugin_key(self.name, self.version)

    @property
    def components(self) -> list[Component]:
        return list(self._components.values())

    @property
    def commands(self) -> list[Command]:
        return list(self._commands.values())

    def add_component(self, component: Component) -> Component:
        if component.name in self._components:
            raise DuplicateNameError('Component', component.name, self)
        component.plugin = self
        self._components[component.name] = component
        return component

    def add_command(self, command: Command) -> Command:
        if command.name in self._commands:
            raise DuplicateNameError('Command', command.name, self)
        command.owner = self
        self._commands[command.name] = command
        return command

    def component(self, name: str) -> Optional[Component]:
        return self._components.get(str(name))

    def require_component(self, name: str) -> Component:
        """Return the named component.

        Raises:
            ComponentNotFound: If the component is not part of this plugin
        """
        found = self.component(name)
        if found is None:
            raise ComponentNotFound(name, self)
        return found

    def has_component(self, name: str) -> bool:
        return self.component(name) is not None

    def command(self, name: str) -> Optional[Command]:
        return self._commands.get(str(name))

    def require_command(self, name: str) -> Command:
        """Return the named plugin-level command.

        Raises:
            CommandNotFound: If no command with that name exists on this plugin
        """
        found = self.command(name)
        if found is None:
            raise CommandNotFound(name, self)
        return found

    def nodes(self, environment: str,
              inventory: Optional[InventoryService] = None) -> dict[str, dict[str, list[Node]]]:
        """Live nodes for every component, grouped by component and group name.

        Example:
            {'activemq': {'master': [Node('amq-master1')], 'slave': [...]}}

        Raises:
            EnvironmentNotFound: If the environment does not exist
            InventoryConnectionError: If the inventory service is unreachable
        """
        inventory = inventory or get_inventory()
        if inventory.find_environment(environment) is None:
            raise EnvironmentNotFound(environment)

        return {c.name: c.nodes(environment, inventory) for c in self.components}

    def validate(self) -> 'Plugin':
        """Validate the fully built plugin, reporting every error at once.

        Raises:
            PluginValidationError: Carrying the list of all field errors
        """
        errors = self.validation_errors()
        if errors:
            raise PluginValidationError(self.name, self.version, errors)
        return self

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if not self.name:
            errors.append("name is required")
        if not self.version:
            errors.append("version is required")
        elif not VERSION_REGEX.match(str(self.version)):
            errors.append(f"version '{self.version}' is not a valid version (expected e.g. '1.2.3')")

        for component in self.components:
            for group in component.groups:
                if not (group.recipes or group.roles or group.attributes):
                    errors.append(
                        f"group '{component.name}::{group.name}' needs at least one recipe, role or attribute"
                    )
            for command in component.commands:
                errors.extend(self._step_errors(command, component))

        for command in self.commands:
            errors.extend(self._step_errors(command, None))

        if self.bootstrap_routine is not None:
            for i, phase in enumerate(self.bootstrap_routine.phases, 1):
                for task in phase:
                    component = self.component(task.component)
                    if component is None:
                        errors.append(f"stack_order phase {i}: unknown component '{task.component}'")
                    elif not component.has_group(task.group):
                        errors.append(
                            f"stack_order phase {i}: component '{task.component}' "
                            f"has no group '{task.group}'"
                        )
        return errors

    def _step_errors(self, command: Command, owner: Optional[Component]) -> list[str]:
        errors = []
        where = f"command '{command.name}'" + (f" on '{owner.name}'" if owner else '')
        for step in command.steps:
            component = self.component(step.component) if step.component else owner
            if component is None:
                errors.append(
                    f"{where}: unknown component '{step.component}'" if step.component
                    else f"{where}: step for group '{step.group}' does not name a component"
                )
                continue
            if not component.has_group(step.group):
                errors.append(f"{where}: component '{component.name}' has no group '{step.group}'")
            if component.action(step.action) is None:
                errors.append(f"{where}: component '{component.name}' has no action '{step.action}'")
        return errors

    def _sort_key(self) -> tuple:
        return (self.name, version_key(self.version))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Plugin):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Plugin):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._sort_key())

    def __str__(self) -> str:
        return f"{self.name} ({self.version})"

    def to_dict(self) -> dict[str, Union[str, list]]:
        return {
            'name': self.name,
            'version': self.version,
            'maintainer': self.maintainer,
            'maintainer_email': self.maintainer_email,
            'license': self.license,
            'description': self.description,
            'components': [c.name for c in self.components],
            'commands': [c.name for c in self.commands],
        }
