"""Declarative action procedures.

Topology sources describe action procedures as a list of step mappings
rather than code:

    steps:
      - service_recipe: activemq::service
      - node_attribute: {key: activemq.service.state, value: stop, toggle: true}
      - environment_attribute: {key: activemq.maintenance, value: true}

build_procedure() validates the steps once and returns a callable that
replays them against an ActionRunner.
"""

from typing import Any, Callable, Optional

from actions.runner import ActionRunner
from errors import PluginSyntaxError

STEP_KINDS = ('service_recipe', 'node_attribute', 'environment_attribute')


def _attribute_args(kind: str, body: Any, where: str) -> tuple[str, Any, bool]:
    if not isinstance(body, dict) or 'key' not in body or 'value' not in body:
        raise PluginSyntaxError(f"{where}: '{kind}' needs a mapping with 'key' and 'value'")
    toggle = body.get('toggle', False)
    if not isinstance(toggle, bool):
        raise PluginSyntaxError(f"{where}: '{kind}' toggle must be true or false, got {toggle!r}")
    return str(body['key']), body['value'], toggle


def build_procedure(steps: Optional[list], where: str = 'action') -> Callable[[ActionRunner], None]:
    """Compile step mappings into a procedure callable.

    Raises:
        PluginSyntaxError: If a step is malformed or of an unknown kind
    """
    if steps is None:
        steps = []
    if not isinstance(steps, list):
        raise PluginSyntaxError(f"{where}: steps must be a list, got {type(steps).__name__}")

    compiled: list[Callable[[ActionRunner], None]] = []
    for i, step in enumerate(steps, 1):
        step_where = f"{where} step {i}"
        if not isinstance(step, dict) or len(step) != 1:
            raise PluginSyntaxError(f"{step_where}: expected a single-key mapping, got {step!r}")
        kind, body = next(iter(step.items()))

        if kind == 'service_recipe':
            if not isinstance(body, str) or not body:
                raise PluginSyntaxError(f"{step_where}: service_recipe must be a recipe name")
            compiled.append(lambda runner, recipe=body: runner.set_service_recipe(recipe))
        elif kind == 'node_attribute':
            key, value, toggle = _attribute_args(kind, body, step_where)
            compiled.append(
                lambda runner, k=key, v=value, t=toggle: runner.node_attribute(k, v, toggle=t)
            )
        elif kind == 'environment_attribute':
            key, value, toggle = _attribute_args(kind, body, step_where)
            compiled.append(
                lambda runner, k=key, v=value, t=toggle: runner.environment_attribute(k, v, toggle=t)
            )
        else:
            raise PluginSyntaxError(
                f"{step_where}: unknown step '{kind}'. Available: {', '.join(STEP_KINDS)}"
            )

    def procedure(runner: ActionRunner) -> None:
        for fn in compiled:
            fn(runner)

    return procedure
