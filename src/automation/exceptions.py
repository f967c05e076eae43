"""Error taxonomy for form automation."""


class AutofillError(Exception):
    """Base exception for form automation operations."""

    pass


class NavigationError(AutofillError):
    """Raised when a page fails to load."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"navigation to {url} failed: {message}")


class SelectorNotFoundError(AutofillError):
    """Raised when a selector matches no element on the page."""

    def __init__(self, selector: str, message: str = "element not found"):
        self.selector = selector
        super().__init__(f"{message}: {selector}")


class FieldFillError(AutofillError):
    """Raised when a located element rejects the value."""

    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        super().__init__(f"failed to fill field {field_name}: {message}")


class SubmissionError(AutofillError):
    """Raised when a form cannot be submitted."""

    pass


class ResourceExhaustionError(AutofillError):
    """Raised when no browser frees up within the lease timeout.

    Saturation delays work rather than failing it, so this is always
    treated as transient.
    """

    pass


class PoolFailureError(AutofillError):
    """Raised when the browser pool cannot provide a working browser."""

    pass


class FormNotFoundError(AutofillError):
    """Raised when no form is detected on a page."""

    pass


class TemplateNotFoundError(AutofillError):
    """Raised when a template lookup has no result."""

    pass


class InvalidURLError(AutofillError):
    """Raised when a URL has no scheme or host."""

    pass


class JobNotFoundError(AutofillError):
    """Raised when a job id is not among the active jobs."""

    pass


class InvalidStateTransitionError(AutofillError):
    """Raised when a session is moved to a state it cannot reach."""

    pass


class ValidationWarning(str):
    """Non-fatal problem found while validating a field mapping."""

    pass


# Error text that marks a failure as worth retrying
TRANSIENT_ERROR_PATTERNS = ["timeout", "network", "connection", "temporary"]


def is_transient_error(error: BaseException | str) -> bool:
    """Check whether an error is transient and the task may be retried."""
    if isinstance(error, ResourceExhaustionError):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in TRANSIENT_ERROR_PATTERNS)
