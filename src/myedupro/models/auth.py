"""Identity and session models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class AuthEvent(StrEnum):
    """Session-change notification kinds emitted by the identity provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class ConnectionStatus(StrEnum):
    CHECKING = "checking"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class AuthPhase(StrEnum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class DataReadiness(StrEnum):
    NONE = "none"
    PROFILE_LOADING = "profile_loading"
    READY = "ready"


class UserIdentity(BaseModel):
    """Authenticated user as reported by the identity provider."""

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    def metadata_value(self, key: str) -> str:
        value = self.user_metadata.get(key)
        return str(value) if value else ""


class Session(BaseModel):
    """Opaque session handle; replaced wholesale on every change."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    user: UserIdentity

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= datetime.now(timezone.utc)


class SignUpRequest(BaseModel):
    """Credentials plus the metadata stored with the new identity."""

    email: str
    password: str
    first_name: str = ""
    last_name: str = ""
    grade: str = ""

    @property
    def metadata(self) -> dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "grade": self.grade,
        }


class SignInRequest(BaseModel):
    email: str
    password: str
