"""
Base interface for business actions run by ``action`` workflow steps.

An ``action`` step names its handler through ``configuration.actionType``.
Every handler inherits from BaseAction and implements execute().
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)


class BaseAction(ABC):
    """
    Abstract base class for all business action handlers.

    Subclasses must implement:
    - execute(config, context) -> dict
    - action_type (class property)
    - display_name (class property)

    Raise ``ValidationError`` for bad configuration and ``TransientError``
    for failures worth retrying; anything else is retried as well.
    """

    action_type: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract base action"

    @abstractmethod
    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Execute the action.

        Args:
            config: Interpolated step configuration (includes actionType)
            context: Read-only execution scope (variables, triggerData, step outputs)

        Returns:
            Output stored under the step id. A ``variables`` mapping in the
            output is merged into the scope seen by later steps.
        """
        pass

    async def run(
        self,
        config: Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run the action with timing and logging. Errors propagate."""
        start = time.monotonic()
        logger.info("Action starting", action_type=self.action_type)
        try:
            output = await self.execute(config, context or {})
        except Exception as e:
            logger.warning(
                "Action failed",
                action_type=self.action_type,
                error=str(e),
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise
        logger.info(
            "Action completed",
            action_type=self.action_type,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return output

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """
        Return JSON schema for the action configuration.

        Override in subclasses to define expected config shape.
        """
        return {"type": "object", "properties": {}}
