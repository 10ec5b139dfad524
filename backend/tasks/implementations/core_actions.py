"""Built-in business actions available to every workflow."""

from typing import Any, Dict, Mapping

import structlog

from core.exceptions import ValidationError
from tasks.base_action import BaseAction

logger = structlog.get_logger(__name__)

_LOG_LEVELS = ("debug", "info", "warning", "error")


class LogAction(BaseAction):
    """Write a message to the application log (handy when debugging a workflow)."""

    action_type = "log"
    display_name = "Log Message"
    description = "Write a message to the application log"

    async def execute(self, config: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
        message = config.get("message", "")
        level = str(config.get("level", "info")).lower()
        if level not in _LOG_LEVELS:
            raise ValidationError(f"Unsupported log level: {level}")
        getattr(logger, level)("Workflow log action", message=message)
        return {"type": "action", "action": self.action_type, "message": message, "level": level}

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "level": {"type": "string", "enum": list(_LOG_LEVELS)},
            },
            "required": ["message"],
        }


class SetVariablesAction(BaseAction):
    """Publish new variables to the steps that follow."""

    action_type = "set_variables"
    display_name = "Set Variables"
    description = "Assign workflow variables visible to later steps"

    async def execute(self, config: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
        variables = config.get("variables")
        if not isinstance(variables, Mapping) or not variables:
            raise ValidationError("set_variables requires a non-empty 'variables' mapping")
        return {
            "type": "action",
            "action": self.action_type,
            "variables": dict(variables),
        }

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {"variables": {"type": "object"}},
            "required": ["variables"],
        }


CORE_ACTIONS = {
    LogAction.action_type: LogAction,
    SetVariablesAction.action_type: SetVariablesAction,
}
