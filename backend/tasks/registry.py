"""
Action Type Registry: maps action type strings to their implementations.
"""

from typing import Dict, Optional, Type

from tasks.base_task import BaseAction
from tasks.implementations.http_task import HTTP_TASK_TYPES
from tasks.implementations.script_task import SCRIPT_TASK_TYPES


class ActionRegistry:
    """Central registry for all action implementations."""

    def __init__(self):
        self._actions: Dict[str, Type[BaseAction]] = {}
        self._register_builtin_actions()

    def _register_builtin_actions(self):
        """Register all built-in action types."""
        for action_type, action_class in HTTP_TASK_TYPES.items():
            self.register(action_type, action_class)

        for action_type, action_class in SCRIPT_TASK_TYPES.items():
            self.register(action_type, action_class)

    def register(self, action_type: str, action_class: Type[BaseAction]):
        """Register a new action type."""
        self._actions[action_type] = action_class

    def get(self, action_type: str) -> Optional[Type[BaseAction]]:
        """Get an action class by type string."""
        return self._actions.get(action_type)


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or create the singleton action registry."""
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
