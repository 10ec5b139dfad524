"""Variable interpolation for step configuration.

Resolves ``{{ path.to.value }}`` placeholders against the execution
context scope:

- Workflow variables:      {{ team }}
- Trigger payload:         {{ triggerData.invoice.amount }}
- Earlier step outputs:    {{ send_receipt.message_id }}
- List items by index:     {{ triggerData.lines.0.sku }}

Unresolvable paths become an empty string so an optional field never
aborts a workflow. Only string leaves are scanned; numbers, booleans and
None pass through untouched.

Resolution is a single pass. Resolved text is inserted literally, so a
payload value such as "Hi {{secret}}" is never expanded against the
scope. Idempotence therefore holds for inputs whose resolved values carry
no placeholder text; the engine interpolates each step configuration once.
"""

import json
import re
from typing import Any, Mapping

import structlog

logger = structlog.get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_\-]+(?:\.[A-Za-z0-9_\-]+)*)\s*\}\}")

MISSING = object()


class VariableInterpolator:
    """Resolves placeholders recursively in strings, dicts and lists."""

    @staticmethod
    def resolve_path(path: str, scope: Mapping[str, Any]) -> Any:
        """Resolve a dot path against the scope.

        Returns the ``MISSING`` sentinel when any segment
        cannot be resolved.
        """
        current: Any = scope
        for part in path.split("."):
            if isinstance(current, Mapping):
                if part not in current:
                    return MISSING
                current = current[part]
            elif isinstance(current, (list, tuple)):
                try:
                    current = current[int(part)]
                except (ValueError, IndexError):
                    return MISSING
            else:
                return MISSING
        return current

    @staticmethod
    def _stringify(value: Any) -> str:
        if value is None or value is MISSING:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @classmethod
    def interpolate_string(cls, template: str, scope: Mapping[str, Any]) -> Any:
        """Substitute every placeholder in one string.

        A string that is exactly one placeholder keeps the resolved value's
        type (a dict stays a dict, a number stays a number).
        """
        if "{{" not in template:
            return template

        whole = PLACEHOLDER_RE.fullmatch(template.strip())
        if whole:
            value = cls.resolve_path(whole.group(1), scope)
            if value is MISSING:
                logger.debug("Unresolved placeholder", path=whole.group(1))
                return ""
            if value is None:
                return ""
            return value

        def _replace(match: re.Match) -> str:
            value = cls.resolve_path(match.group(1), scope)
            if value is MISSING:
                logger.debug("Unresolved placeholder", path=match.group(1))
            return cls._stringify(value)

        return PLACEHOLDER_RE.sub(_replace, template)

    @classmethod
    def interpolate(cls, value: Any, scope: Mapping[str, Any]) -> Any:
        """Recursively resolve placeholders in ``value``."""
        if isinstance(value, str):
            return cls.interpolate_string(value, scope)
        if isinstance(value, Mapping):
            return {key: cls.interpolate(item, scope) for key, item in value.items()}
        if isinstance(value, list):
            return [cls.interpolate(item, scope) for item in value]
        if isinstance(value, tuple):
            return tuple(cls.interpolate(item, scope) for item in value)
        return value


def interpolate(value: Any, scope: Mapping[str, Any]) -> Any:
    """Module-level shortcut for ``VariableInterpolator.interpolate``."""
    return VariableInterpolator.interpolate(value, scope)
