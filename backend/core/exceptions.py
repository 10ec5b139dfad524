"""Custom exceptions for the business automation engine.

Errors raised inside a step attempt are classified by the retry
controller: ``TransientError`` (and unclassified exceptions) are retried,
everything marked ``retryable = False`` ends the step immediately.
"""


class AutomationError(Exception):
    """Base exception for the automation engine."""

    retryable: bool = False

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class ValidationError(AutomationError):
    """Bad input to a step or an API call. Never retried."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class ConfigurationError(AutomationError):
    """Malformed workflow, step or trigger definition. Never retried."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, 422)


class UnauthorizedError(AutomationError):
    """Request could not be authenticated (e.g. a bad event signature)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 401)


class TransientError(AutomationError):
    """Timeout or network failure, retried per the step's policy."""

    retryable = True

    def __init__(self, message: str = "Temporary failure"):
        super().__init__(message, 503)


class FatalError(AutomationError):
    """Unrecoverable step failure (e.g. unknown step type). Aborts the run."""

    def __init__(self, message: str = "Fatal error"):
        super().__init__(message, 500)


class CancellationError(AutomationError):
    """Run aborted by its caller."""

    def __init__(self, message: str = "Execution cancelled"):
        super().__init__(message, 409)


def is_retryable(error: BaseException) -> bool:
    """Whether a failed attempt that raised ``error`` may be retried."""
    if isinstance(error, AutomationError):
        return error.retryable
    return isinstance(error, Exception)


def error_for_http_status(status_code: int, url: str) -> AutomationError | None:
    """Classify an outbound HTTP response status.

    Returns None for 2xx. Client errors are not retried, except request
    timeout (408) and rate limiting (429), which behave like 5xx.
    """
    if 200 <= status_code < 300:
        return None
    message = f"HTTP {status_code} from {url}"
    if 400 <= status_code < 500 and status_code not in (408, 429):
        return ValidationError(message)
    return TransientError(message)
