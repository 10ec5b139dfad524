"""Constants and enums for the business automation engine."""

from enum import Enum


class StepType(str, Enum):
    """Kinds of workflow steps the engine knows how to run."""

    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    WEBHOOK = "webhook"
    EMAIL = "email"
    NOTIFICATION = "notification"
    GPT = "gpt"


class StepStatus(str, Enum):
    """Terminal status of a single step within one run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunState(str, Enum):
    """Lifecycle of one workflow run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Persisted execution record status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATUSES = frozenset({
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.FAILED.value,
    ExecutionStatus.CANCELLED.value,
})


class ConditionOperator(str, Enum):
    """Operators accepted by the condition evaluator."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"


class RetryBackoff(str, Enum):
    """Delay growth between retry attempts of a step."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class LogLevel(str, Enum):
    """Log level for execution log entries."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


# Reserved context key holding the trigger / manual input payload
TRIGGER_DATA_KEY = "triggerData"
