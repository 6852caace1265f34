"""Action runner: the mutable side of one action invocation.

An ActionRunner is created for a single Action.run call and used as a
context manager. Procedures stage attribute changes through it; changes
made with toggle=True register a callback that restores the previous value.
Leaving the with-block always calls reset(), which replays those callbacks
in reverse order exactly once.
"""

import logging
from typing import Any, Callable, Optional

from common import delete_dotted, dotted_depth, get_dotted, set_dotted
from errors import EnvironmentNotFound
from inventory import Environment, InventoryService, Node, get_inventory
from job import Job

logger = logging.getLogger(__name__)

_MISSING = object()


class ActionRunner:
    """Stages node/environment changes for one action run and undoes toggles."""

    def __init__(
        self,
        job: Job,
        environment: str,
        nodes: list[Node],
        procedure: Optional[Callable[['ActionRunner'], Any]] = None,
        inventory: Optional[InventoryService] = None,
        service_recipe: Optional[str] = None,
    ):
        self.job = job
        self.environment = environment
        self.nodes = list(nodes)
        self.procedure = procedure
        self.inventory = inventory or get_inventory()
        self.service_recipe = service_recipe
        self.toggle_callbacks: list[Callable[[], None]] = []
        self._reset_done = False

    def __enter__(self) -> 'ActionRunner':
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self.reset()
            return False

        # the failure that ended the block wins over a failed restore
        try:
            self.reset()
        except Exception as e:
            logger.error(f"Reset after failed action also failed: {e}")
        return False

    def run(self) -> 'ActionRunner':
        """Evaluate the procedure against this runner."""
        if self.procedure is not None:
            self.procedure(self)
        return self

    def set_service_recipe(self, recipe: str) -> None:
        """Recipe used for the convergence run that follows the procedure."""
        self.service_recipe = recipe

    def node_attribute(self, key: str, value: Any, toggle: bool = False) -> None:
        """Set a dotted attribute on every target node.

        With toggle=True the previous value is restored on reset.
        """
        for node in self.nodes:
            if toggle:
                self.toggle_callbacks.append(self._node_restorer(node, key))
            logger.debug(f"Setting {key}={value!r} on node '{node.name}'")
            set_dotted(node.attributes, key, value)
            self.inventory.save_node(node)

    def environment_attribute(self, key: str, value: Any, toggle: bool = False) -> None:
        """Set a dotted default attribute on the target environment.

        Raises:
            EnvironmentNotFound: If the environment does not exist
        """
        environment = self.inventory.find_environment(self.environment)
        if environment is None:
            raise EnvironmentNotFound(self.environment)

        if toggle:
            self.toggle_callbacks.append(self._environment_restorer(environment, key))
        logger.debug(f"Setting {key}={value!r} on environment '{environment.name}'")
        set_dotted(environment.default_attributes, key, value)
        self.inventory.save_environment(environment)

    def _node_restorer(self, node: Node, key: str) -> Callable[[], None]:
        original = get_dotted(node.attributes, key, _MISSING)
        existing = dotted_depth(node.attributes, key)

        def restore() -> None:
            if original is _MISSING:
                delete_dotted(node.attributes, key, keep=existing)
            else:
                set_dotted(node.attributes, key, original)
            self.inventory.save_node(node)

        return restore

    def _environment_restorer(self, environment: Environment, key: str) -> Callable[[], None]:
        original = get_dotted(environment.default_attributes, key, _MISSING)
        existing = dotted_depth(environment.default_attributes, key)

        def restore() -> None:
            if original is _MISSING:
                delete_dotted(environment.default_attributes, key, keep=existing)
            else:
                set_dotted(environment.default_attributes, key, original)
            self.inventory.save_environment(environment)

        return restore

    def reset(self) -> None:
        """Restore every toggled value. Runs once; later calls are no-ops.

        All callbacks are attempted even if one fails; the first failure is
        raised afterwards.
        """
        if self._reset_done:
            return
        self._reset_done = True

        if not self.toggle_callbacks:
            return

        self.job.set_status(f"Resetting {len(self.toggle_callbacks)} toggled attribute(s)")
        first_error: Optional[Exception] = None
        for callback in reversed(self.toggle_callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Failed to restore toggled attribute: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
