"""Component service actions and the runner that applies them to nodes."""

from actions.action import Action
from actions.runner import ActionRunner
from actions.steps import build_procedure

__all__ = [
    'Action',
    'ActionRunner',
    'build_procedure',
]
