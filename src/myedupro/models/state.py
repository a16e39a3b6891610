"""Read-only view of the orchestrator state handed to consumers."""

from pydantic import BaseModel, ConfigDict, Field, computed_field

from myedupro.models.auth import AuthPhase, ConnectionStatus, DataReadiness, Session, UserIdentity
from myedupro.models.profile import UserProfile
from myedupro.models.progress import ProgressStats, SubjectProgress


class AuthSnapshot(BaseModel):
    """Immutable snapshot of auth, profile and progress state."""

    model_config = ConfigDict(frozen=True)

    user: UserIdentity | None = None
    session: Session | None = None
    profile: UserProfile | None = None
    progress_stats: ProgressStats | None = None
    subject_progress: tuple[SubjectProgress, ...] = Field(default_factory=tuple)
    loading: bool = True
    error: str | None = None
    is_new_user: bool = False
    has_subject_group: bool = False
    connection_status: ConnectionStatus = ConnectionStatus.CHECKING
    auth_phase: AuthPhase = AuthPhase.INITIALIZING
    data_readiness: DataReadiness = DataReadiness.NONE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def requires_profile_completion(self) -> bool:
        """Signed-in users go to the completion form until grade is known."""
        if self.user is None or self.data_readiness != DataReadiness.READY:
            return False
        if self.is_new_user:
            return True
        return self.profile is None or not self.profile.is_complete

    @computed_field  # type: ignore[prop-decorator]
    @property
    def show_connection_alert(self) -> bool:
        return self.connection_status != ConnectionStatus.CONNECTED and bool(self.error)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_retry_connection(self) -> bool:
        return self.connection_status != ConnectionStatus.CHECKING
