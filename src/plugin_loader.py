"""Topology loading: the plugin builder and the YAML topology source format.

Topology sources are parsed as data and applied through PluginBuilder, which
exposes only declarative operations. Nothing from a topology source is ever
executed as code.

Example topology.yaml:

    name: activemq
    version: 1.0.0
    maintainer: Platform Team
    components:
      - name: activemq
        groups:
          - name: master
            recipes: [activemq::master]
        actions:
          - name: stop
            service_recipe: activemq::service
            steps:
              - node_attribute: {key: activemq.service.state, value: stop, toggle: true}
        commands:
          - name: stop
            steps:
              - {group: master, action: stop}
    commands:
      - name: stop_all
        steps:
          - {component: activemq, group: master, action: stop}
    stack_order:
      - [activemq::master]
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml

from actions.action import Action
from actions.steps import build_procedure
from bootstrap.routine import BootstrapRoutine
from errors import DuplicateNameError, PluginLoadError, PluginSyntaxError, PluginValidationError
from plugin import Command, CommandStep, Component, Group, Plugin

logger = logging.getLogger(__name__)

PLUGIN_FILENAME = 'topology.yaml'

METADATA_FIELDS = ('maintainer', 'maintainer_email', 'license', 'description')


class PluginBuilder:
    """Builds a Plugin through declarative operations only."""

    def __init__(self, name: str, version: str, **metadata: str):
        unknown = set(metadata) - set(METADATA_FIELDS)
        if unknown:
            raise PluginSyntaxError(f"Unknown plugin metadata: {', '.join(sorted(unknown))}")
        self._plugin = Plugin(name=name, version=str(version), **metadata)

    @property
    def plugin(self) -> Plugin:
        return self._plugin

    def add_component(self, name: str, description: str = '') -> Component:
        return self._plugin.add_component(Component(name=name, description=description))

    def add_group(
        self,
        component: str,
        name: str,
        recipes: Optional[list[str]] = None,
        roles: Optional[list[str]] = None,
        attributes: Optional[dict[str, Any]] = None,
    ) -> Group:
        owner = self._plugin.require_component(component)
        return owner.add_group(Group(
            name=name,
            recipes=list(recipes or []),
            roles=list(roles or []),
            attributes=dict(attributes or {}),
        ))

    def add_action(
        self,
        component: str,
        name: str,
        procedure: Optional[Callable] = None,
        steps: Optional[list] = None,
        service_recipe: Optional[str] = None,
    ) -> Action:
        """Add a service action; give either a procedure callable or declarative steps."""
        owner = self._plugin.require_component(component)
        if procedure is None:
            procedure = build_procedure(steps, where=f"action '{name}' on '{component}'")
        return owner.add_action(Action(name=name, component=owner, procedure=procedure,
                                       service_recipe=service_recipe))

    def add_component_command(self, component: str, name: str, steps: list,
                              description: str = '') -> Command:
        owner = self._plugin.require_component(component)
        return owner.add_command(Command(name=name, description=description,
                                         steps=_command_steps(steps, f"command '{name}'")))

    def add_command(self, name: str, steps: list, description: str = '') -> Command:
        return self._plugin.add_command(Command(name=name, description=description,
                                                steps=_command_steps(steps, f"command '{name}'")))

    def set_bootstrap_order(self, phases: list) -> BootstrapRoutine:
        """Declare the stack order as a list of phases of 'component::group' ids."""
        routine = phases if isinstance(phases, BootstrapRoutine) else BootstrapRoutine.from_ids(phases)
        self._plugin.bootstrap_routine = routine
        return routine

    def build(self) -> Plugin:
        """Validate and return the plugin.

        Raises:
            PluginValidationError: With every field error found
        """
        return self._plugin.validate()


def _command_steps(steps: Any, where: str) -> list[CommandStep]:
    if not isinstance(steps, list) or not steps:
        raise PluginSyntaxError(f"{where}: steps must be a non-empty list")
    parsed = []
    for i, step in enumerate(steps, 1):
        if isinstance(step, CommandStep):
            parsed.append(step)
            continue
        if not isinstance(step, dict) or 'group' not in step or 'action' not in step:
            raise PluginSyntaxError(f"{where} step {i}: needs 'group' and 'action', got {step!r}")
        parsed.append(CommandStep(group=str(step['group']), action=str(step['action']),
                                  component=step.get('component')))
    return parsed


def _require(data: dict, key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise PluginSyntaxError(f"{where}: expected a mapping, got {type(data).__name__}")
    if key not in data or data[key] in (None, ''):
        raise PluginSyntaxError(f"{where}: missing required field '{key}'")
    return data[key]


def _list(data: dict, key: str, where: str) -> list:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise PluginSyntaxError(f"{where}: '{key}' must be a list, got {type(value).__name__}")
    return value


def build_plugin(data: dict) -> Plugin:
    """Build and validate a plugin from parsed topology data.

    Raises:
        PluginSyntaxError: If the data is malformed
        PluginValidationError: If the built plugin is invalid
    """
    if not isinstance(data, dict):
        raise PluginSyntaxError(f"topology must be a mapping, got {type(data).__name__}")

    metadata = {k: str(data[k]) for k in METADATA_FIELDS if data.get(k) is not None}
    builder = PluginBuilder(str(_require(data, 'name', 'plugin')),
                            str(_require(data, 'version', 'plugin')), **metadata)

    try:
        for c in _list(data, 'components', 'plugin'):
            cname = str(_require(c, 'name', 'component'))
            where = f"component '{cname}'"
            builder.add_component(cname, description=c.get('description', ''))

            for g in _list(c, 'groups', where):
                builder.add_group(
                    cname,
                    str(_require(g, 'name', f"{where} group")),
                    recipes=_list(g, 'recipes', f"{where} group"),
                    roles=_list(g, 'roles', f"{where} group"),
                    attributes=g.get('attributes') or {},
                )

            for a in _list(c, 'actions', where):
                builder.add_action(
                    cname,
                    str(_require(a, 'name', f"{where} action")),
                    steps=a.get('steps'),
                    service_recipe=a.get('service_recipe'),
                )

            for cmd in _list(c, 'commands', where):
                builder.add_component_command(
                    cname,
                    str(_require(cmd, 'name', f"{where} command")),
                    cmd.get('steps'),
                    description=cmd.get('description', ''),
                )

        for cmd in _list(data, 'commands', 'plugin'):
            builder.add_command(
                str(_require(cmd, 'name', 'plugin command')),
                cmd.get('steps'),
                description=cmd.get('description', ''),
            )

        if 'stack_order' in data:
            builder.set_bootstrap_order(data['stack_order'])
    except DuplicateNameError as e:
        raise PluginSyntaxError(str(e)) from e

    return builder.build()


def load_plugin(path: Union[str, Path]) -> Plugin:
    """Load a plugin from a topology file or a directory containing one.

    Raises:
        PluginLoadError: If no topology file exists at path
        PluginSyntaxError: If the file is malformed (with file/line context)
        PluginValidationError: If the built plugin is invalid
    """
    path = Path(path)
    plugin_file = path / PLUGIN_FILENAME if path.is_dir() else path
    if not plugin_file.is_file():
        raise PluginLoadError(f"Expected a {PLUGIN_FILENAME} file at: {path}")

    try:
        with open(plugin_file, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        mark = getattr(e, 'problem_mark', None)
        line = mark.line + 1 if mark is not None else None
        raise PluginSyntaxError(f"invalid YAML: {getattr(e, 'problem', None) or e}",
                                file_path=str(plugin_file), line=line)

    try:
        plugin = build_plugin(data)
    except PluginSyntaxError as e:
        if e.file_path:
            raise
        raise PluginSyntaxError(str(e), file_path=str(plugin_file)) from e

    logger.debug(f"Loaded plugin {plugin} from {plugin_file}")
    return plugin


def find_plugins(root: Union[str, Path]) -> list[Plugin]:
    """Load every plugin under root, sorted by name then version.

    Duplicate name/version pairs keep the first one found. Plugins that fail
    to load are logged and left out.
    """
    root = Path(root)
    if not root.exists():
        return []

    found: dict[str, Plugin] = {}
    for plugin_file in sorted(root.rglob(PLUGIN_FILENAME)):
        try:
            plugin = load_plugin(plugin_file)
        except (PluginLoadError, PluginSyntaxError, PluginValidationError) as e:
            logger.error(f"Skipping plugin at {plugin_file}: {e}")
            continue
        if plugin.id in found:
            logger.warning(f"Duplicate plugin {plugin.id} at {plugin_file}, keeping the first")
            continue
        found[plugin.id] = plugin
    return sorted(found.values())


def latest(plugins: list[Plugin], name: str) -> Optional[Plugin]:
    """Highest version of the named plugin, or None."""
    matching = [p for p in plugins if p.name == name]
    return max(matching) if matching else None
