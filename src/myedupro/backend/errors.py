"""Typed backend errors.

Every failure that crosses the gateway boundary carries an ``ErrorKind``
so callers classify by tag instead of inspecting message text.
"""

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    NETWORK_UNAVAILABLE = "network_unavailable"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"  # degraded gateway / provider-down
    BACKEND_FAULT = "backend_fault"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    UNKNOWN = "unknown"

    @property
    def is_network_class(self) -> bool:
        return self in NETWORK_CLASS_KINDS


NETWORK_CLASS_KINDS = frozenset({
    ErrorKind.NETWORK_UNAVAILABLE,
    ErrorKind.TIMEOUT,
    ErrorKind.UNAVAILABLE,
    ErrorKind.BACKEND_FAULT,
})

UNAVAILABLE_MESSAGE = "Backend connection unavailable. Please check your project status."
UNAVAILABLE_CODE = "BACKEND_UNAVAILABLE"


class BackendError(Exception):
    """A classified failure from the backend collaborator.

    Args:
        kind: Error classification tag.
        message: Human-readable message from the backend or transport.
        code: Optional backend-specific error code.
    """

    def __init__(self, kind: ErrorKind, message: str, code: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"BackendError(kind={self.kind.value!r}, message={self.message!r}, code={self.code!r})"

    @classmethod
    def unavailable(cls) -> "BackendError":
        return cls(ErrorKind.UNAVAILABLE, UNAVAILABLE_MESSAGE, UNAVAILABLE_CODE)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "code": self.code}


class AuthRequiredError(Exception):
    """Raised when an action needs a signed-in user and there is none."""

    def __init__(self, message: str = "No user logged in"):
        super().__init__(message)
