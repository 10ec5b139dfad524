"""
Action Registry: maps ``actionType`` strings to business action handlers.

Built-in actions are registered on construction; the host application can
register its own handlers (invoice reminders, ledger updates, ...) before
handing the registry to the workflow engine.
"""

from typing import Dict, Optional, Type

from tasks.base_action import BaseAction
from tasks.implementations.core_actions import CORE_ACTIONS


class ActionRegistry:
    """Central registry for action handler implementations."""

    def __init__(self, include_builtin: bool = True):
        self._actions: Dict[str, Type[BaseAction]] = {}
        if include_builtin:
            for action_type, action_class in CORE_ACTIONS.items():
                self.register(action_type, action_class)

    def register(self, action_type: str, action_class: Type[BaseAction]):
        """Register (or replace) the handler for an action type."""
        self._actions[action_type] = action_class

    def get(self, action_type: str) -> Optional[Type[BaseAction]]:
        return self._actions.get(action_type)

    def create_instance(self, action_type: str) -> Optional[BaseAction]:
        """Create a new handler instance for an action type."""
        action_class = self.get(action_type)
        if action_class:
            return action_class()
        return None

    def list_all(self) -> list:
        """List all registered actions with metadata."""
        return [
            {
                "action_type": action_type,
                "display_name": cls.display_name,
                "description": cls.description,
                "config_schema": cls.get_config_schema(),
            }
            for action_type, cls in self._actions.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._actions.keys())
