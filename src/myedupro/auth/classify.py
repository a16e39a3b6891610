"""Map failures onto user-facing messages and connection effects."""

from dataclasses import dataclass

from myedupro.backend.errors import AuthRequiredError, BackendError, ErrorKind

CONNECTION_TIMEOUT_MESSAGE = (
    "Connection Timeout\n\n"
    "Unable to reach the backend. Your project may be paused.\n\n"
    "Check the project dashboard, resume it if needed, then retry."
)
CANNOT_CONNECT_MESSAGE = (
    "Cannot Connect to Backend\n\n"
    "Your backend project appears to be unavailable.\n\n"
    "To fix this:\n"
    "1. Open the project dashboard\n"
    "2. Check if your project is paused and resume it\n"
    "3. Wait 2-3 minutes for full restart\n"
    "4. Retry the connection"
)
BACKEND_FAULT_MESSAGE = (
    "Backend Project Issue\n\n"
    "Your backend project appears to be paused or experiencing database issues.\n\n"
    "To fix this:\n"
    "1. Open the project dashboard\n"
    "2. Resume the project if it is paused\n"
    "3. Wait 2-3 minutes for full restart\n"
    "4. Try again"
)


@dataclass(frozen=True)
class ErrorClassification:
    kind: ErrorKind
    message: str
    disconnects: bool


def classify_error(error: BaseException, context: str) -> ErrorClassification:
    """Classify any failure raised by an orchestrator action.

    Args:
        error: The exception caught by the action.
        context: Action name, used when the error carries no message.
    """
    if isinstance(error, BackendError):
        kind = error.kind
        message = error.message or f"{context} failed"
    elif isinstance(error, TimeoutError):
        kind = ErrorKind.TIMEOUT
        message = ""
    elif isinstance(error, AuthRequiredError):
        kind = ErrorKind.INVALID
        message = str(error)
    else:
        kind = ErrorKind.UNKNOWN
        message = str(error) or f"{context} failed"

    match kind:
        case ErrorKind.TIMEOUT:
            return ErrorClassification(kind, CONNECTION_TIMEOUT_MESSAGE, True)
        case ErrorKind.NETWORK_UNAVAILABLE | ErrorKind.UNAVAILABLE:
            return ErrorClassification(kind, CANNOT_CONNECT_MESSAGE, True)
        case ErrorKind.BACKEND_FAULT:
            return ErrorClassification(kind, BACKEND_FAULT_MESSAGE, True)
        case ErrorKind.NOT_FOUND | ErrorKind.INVALID:
            return ErrorClassification(kind, message, False)
        case ErrorKind.UNKNOWN:
            return ErrorClassification(kind, message, False)
