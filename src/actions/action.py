"""Component service actions."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from actions.runner import ActionRunner
from config import ConvergenceSettings
from convergence import run_convergence as converge
from errors import JobCancelled, PluginSyntaxError
from inventory import InventoryService, Node, get_inventory
from job import Job

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Action:
    """An operator-defined procedure run against a set of nodes.

    Attributes:
        name: Action name, unique within its component
        component: Owning component
        procedure: Callable evaluated against an ActionRunner
        service_recipe: Default recipe for the convergence run
    """
    name: str
    component: Any
    procedure: Callable[[ActionRunner], Any]
    service_recipe: Optional[str] = None

    def __post_init__(self) -> None:
        if not callable(self.procedure):
            raise PluginSyntaxError(
                f"procedure required for action '{self.name}' on component '{self.component_name}'"
            )

    @property
    def component_name(self) -> str:
        return getattr(self.component, 'name', str(self.component))

    def run(
        self,
        job: Job,
        environment: str,
        nodes: list[Node],
        run_convergence: bool = True,
        inventory: Optional[InventoryService] = None,
        settings: Optional[ConvergenceSettings] = None,
    ) -> 'Action':
        """Run this action on the given nodes.

        Convergence runs when run_convergence is set or when the procedure
        staged at least one toggle. Toggles are reset on every exit path,
        after convergence and before any error propagates.

        Returns:
            self

        Raises:
            ConvergenceFailed: If convergence failed on any node
            JobCancelled: If the job was cancelled before convergence; the job
                is reported failed
        """
        inventory = inventory or get_inventory()
        job.set_status(
            f"Running component: {self.component_name} service action: {self.name} "
            f"on {', '.join(n.name for n in nodes)}"
        )

        try:
            with ActionRunner(job, environment, nodes, self.procedure,
                              inventory=inventory, service_recipe=self.service_recipe) as runner:
                runner.run()

                if run_convergence or runner.toggle_callbacks:
                    job.raise_if_cancelled()
                    converge(job, nodes, runner.service_recipe, inventory=inventory, settings=settings)
                else:
                    logger.debug(f"Skipping convergence for action '{self.name}'")
        except JobCancelled as e:
            job.report_failure(str(e))
            raise

        return self

    def __str__(self) -> str:
        return f"{self.component_name}:{self.name}"
