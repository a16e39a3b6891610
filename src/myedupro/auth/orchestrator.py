"""Session orchestrator: the process-wide auth, profile and progress state machine."""

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import structlog

from myedupro.auth.classify import ErrorClassification, classify_error
from myedupro.backend.errors import AuthRequiredError
from myedupro.backend.gateway import BackendGateway, Subscription
from myedupro.models.auth import (
    AuthEvent,
    AuthPhase,
    ConnectionStatus,
    DataReadiness,
    Session,
    SignInRequest,
    SignUpRequest,
    UserIdentity,
)
from myedupro.models.profile import ProfilePicture, ProfileUpdate, UserProfile
from myedupro.models.progress import StudySession, StudySessionType
from myedupro.models.state import AuthSnapshot
from myedupro.services import profile as profile_service
from myedupro.services import progress as progress_service
from myedupro.services import subject_group as subject_group_service
from myedupro.storage.local_state import IS_NEW_USER, LocalStateStore

logger = structlog.get_logger()

SnapshotListener = Callable[[AuthSnapshot], None]

_SIGNED_OUT_STATE: dict[str, Any] = {
    "user": None,
    "session": None,
    "profile": None,
    "progress_stats": None,
    "subject_progress": (),
    "is_new_user": False,
    "has_subject_group": False,
    "auth_phase": AuthPhase.UNAUTHENTICATED,
    "data_readiness": DataReadiness.NONE,
}


class SessionOrchestrator:
    """Owns auth/profile/progress state and sequences the loads behind it.

    State is only changed through this class; consumers read immutable
    ``AuthSnapshot`` objects via ``snapshot`` or ``subscribe``.

    Every session change bumps an epoch counter. Background loads carry
    the epoch they were issued under and their results are dropped if a
    newer session has been applied since.

    Args:
        gateway: Backend gateway (real or degraded), chosen by the caller.
        state_store: Client-local flag store.
        session_check_timeout: Bound in seconds for the startup session check.
        default_subjects: Subjects seeded for a new user without a selection.
        picture_bucket: Object-storage bucket for profile pictures.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        state_store: LocalStateStore,
        *,
        session_check_timeout: float = 8.0,
        default_subjects: list[str] | None = None,
        picture_bucket: str = "profile-pictures",
    ):
        self.gateway = gateway
        self.session_check_timeout = session_check_timeout
        self.default_subjects = list(default_subjects or [])
        self.picture_bucket = picture_bucket
        self._store = state_store
        self._state = AuthSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._subscription: Subscription | None = None
        self._epoch = 0
        self._tasks: set[asyncio.Task] = set()

    # State container

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._state

    def subscribe(self, listener: SnapshotListener) -> Subscription:
        """Call ``listener`` with a fresh snapshot after every state change."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_remove)

    def _update(self, **changes: Any) -> None:
        if "subject_progress" in changes:
            changes["subject_progress"] = tuple(changes["subject_progress"])
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("snapshot_listener_error")

    def _is_current(self, epoch: int, user_id: str) -> bool:
        user = self._state.user
        return epoch == self._epoch and user is not None and user.id == user_id

    def _require_user(self) -> UserIdentity:
        if self._state.user is None:
            raise AuthRequiredError()
        return self._state.user

    def _handle_error(self, error: BaseException, context: str) -> ErrorClassification:
        """Surface a failure in state and return how it was classified."""
        classification = classify_error(error, context)
        logger.error(
            "action_failed",
            context=context,
            kind=classification.kind.value,
            error=str(error),
        )
        changes: dict[str, Any] = {"error": classification.message}
        if classification.disconnects:
            changes["connection_status"] = ConnectionStatus.DISCONNECTED
        elif self._state.connection_status == ConnectionStatus.CHECKING:
            # the backend answered, so the connection itself is fine
            changes["connection_status"] = ConnectionStatus.CONNECTED
        self._update(**changes)
        return classification

    # Lifecycle

    async def start(self) -> None:
        """Subscribe to session changes and run the bounded startup check."""
        if self._subscription is None:
            self._subscription = self.gateway.on_session_change(self._on_session_change)
        await self._check_session("Initial session")

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def settle(self) -> None:
        """Wait until all background loads issued so far have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _check_session(self, context: str) -> None:
        self._update(error=None, connection_status=ConnectionStatus.CHECKING)
        epoch = self._epoch
        logger.info("session_check_started", context=context)
        try:
            result = await asyncio.wait_for(
                self.gateway.get_current_session(), self.session_check_timeout
            )
            session = result.unwrap()
        except Exception as e:
            if epoch == self._epoch:
                self._update(**_SIGNED_OUT_STATE)
            self._handle_error(e, context)
            self._update(loading=False)
            return

        logger.info("session_check_finished", context=context, has_session=session is not None)
        if epoch == self._epoch:
            self._apply_session(session)
        else:
            # a session-change notification landed first and is newer
            logger.debug("session_check_superseded", context=context)
        self._update(connection_status=ConnectionStatus.CONNECTED, loading=False)

    async def _on_session_change(self, event: AuthEvent, session: Session | None) -> None:
        logger.info("auth_state_change", auth_event=event.value, has_session=session is not None)
        if session is not None:
            self._update(error=None)
        self._apply_session(session)
        self._update(loading=False)

    def _apply_session(self, session: Session | None) -> None:
        if session is None:
            self._epoch += 1
            self._update(**_SIGNED_OUT_STATE)
            return
        is_new_user = self._store.get_flag(IS_NEW_USER)
        self._epoch += 1
        changes: dict[str, Any] = {}
        previous = self._state.user
        if previous is None or previous.id != session.user.id:
            # dependent data belongs to the previous user
            changes.update(
                profile=None,
                progress_stats=None,
                subject_progress=(),
                has_subject_group=False,
            )
        self._update(
            **changes,
            session=session,
            user=session.user,
            auth_phase=AuthPhase.AUTHENTICATED,
            connection_status=ConnectionStatus.CONNECTED,
            is_new_user=is_new_user,
            data_readiness=DataReadiness.PROFILE_LOADING,
        )
        self._fan_out(session.user.id, self._epoch)

    def _fan_out(self, user_id: str, epoch: int) -> None:
        self._spawn(self._load_profile(user_id, epoch))
        self._spawn(self._load_progress(user_id, epoch))
        self._spawn(self._load_subject_group(user_id, epoch))

    # Loads

    async def _load_profile(self, user_id: str, epoch: int) -> None:
        logger.info("profile_loading", user_id=user_id)
        try:
            profile = await profile_service.load_profile(self.gateway, user_id)
        except Exception as e:
            if not self._is_current(epoch, user_id):
                logger.debug("stale_load_discarded", load="profile", user_id=user_id)
                return
            classification = self._handle_error(e, "Load user profile")
            readiness = DataReadiness.NONE if classification.disconnects else DataReadiness.READY
            self._update(profile=None, data_readiness=readiness)
            return

        if not self._is_current(epoch, user_id):
            logger.debug("stale_load_discarded", load="profile", user_id=user_id)
            return
        self._update(
            profile=profile,
            connection_status=ConnectionStatus.CONNECTED,
            data_readiness=DataReadiness.READY,
        )
        logger.info("profile_loaded", user_id=user_id)

    async def _load_progress(self, user_id: str, epoch: int) -> None:
        stats, subjects = await asyncio.gather(
            progress_service.load_progress_stats(self.gateway, user_id),
            progress_service.load_subject_progress(self.gateway, user_id),
            return_exceptions=True,
        )
        if not self._is_current(epoch, user_id):
            logger.debug("stale_load_discarded", load="progress", user_id=user_id)
            return

        changes: dict[str, Any] = {}
        if isinstance(stats, BaseException):
            logger.warning("progress_stats_load_failed", user_id=user_id, error=str(stats))
        else:
            changes["progress_stats"] = stats
        if isinstance(subjects, BaseException):
            logger.warning("subject_progress_load_failed", user_id=user_id, error=str(subjects))
        else:
            changes["subject_progress"] = subjects
        if changes:
            self._update(**changes)

    async def _load_subject_group(self, user_id: str, epoch: int) -> None:
        try:
            group = await subject_group_service.load_subject_group(self.gateway, user_id)
        except Exception as e:
            logger.warning("subject_group_load_failed", user_id=user_id, error=str(e))
            return
        if not self._is_current(epoch, user_id):
            logger.debug("stale_load_discarded", load="subject_group", user_id=user_id)
            return
        has_group = subject_group_service.has_subject_group(group)
        self._update(has_subject_group=has_group)
        logger.info("subject_group_checked", user_id=user_id, has_subject_group=has_group)

    # Actions

    async def sign_up(self, request: SignUpRequest) -> None:
        """Create an account; authentication arrives via the session-change event."""
        self._update(loading=True, error=None, connection_status=ConnectionStatus.CHECKING)
        self._store.set(IS_NEW_USER, "true")
        self._update(is_new_user=True)
        try:
            result = await self.gateway.sign_up(request.email, request.password, request.metadata)
            data = result.unwrap()
        except Exception as e:
            self._store.remove(IS_NEW_USER)
            self._update(loading=False, is_new_user=False)
            self._handle_error(e, "Sign up")
            raise
        changes: dict[str, Any] = {"connection_status": ConnectionStatus.CONNECTED}
        if not isinstance(data, Session):
            # confirmation pending, no session event will follow yet
            changes["loading"] = False
        self._update(**changes)
        logger.info("sign_up_succeeded", email=request.email)

    async def sign_in(self, request: SignInRequest) -> None:
        self._update(loading=True, error=None, connection_status=ConnectionStatus.CHECKING)
        self._store.remove(IS_NEW_USER)
        self._update(is_new_user=False)
        try:
            (await self.gateway.sign_in(request.email, request.password)).unwrap()
        except Exception as e:
            self._update(loading=False)
            self._handle_error(e, "Sign in")
            raise
        self._update(connection_status=ConnectionStatus.CONNECTED)
        logger.info("sign_in_succeeded", email=request.email)

    async def sign_out(self) -> None:
        """Drop the session and every dependent entity, whatever the connection state."""
        self._update(loading=True, error=None)
        self._store.remove(IS_NEW_USER)
        self._epoch += 1
        try:
            result = await self.gateway.sign_out()
            if result.error is not None:
                logger.warning("remote_sign_out_failed", kind=result.error.kind.value)
        finally:
            self._update(
                **_SIGNED_OUT_STATE,
                connection_status=ConnectionStatus.CONNECTED,
                loading=False,
            )
        logger.info("signed_out")

    async def update_profile(
        self,
        updates: ProfileUpdate | dict[str, Any],
        picture: ProfilePicture | None = None,
    ) -> UserProfile:
        """Merge and save profile changes, finishing onboarding for new users."""
        user = self._require_user()
        if isinstance(updates, dict):
            updates = ProfileUpdate.model_validate(updates)
        self._update(error=None)
        fields = profile_service.merge_profile_update(user, self._state.profile, updates)
        epoch = self._epoch

        try:
            profile = await profile_service.save_profile(
                self.gateway, user.id, fields, picture, bucket=self.picture_bucket
            )
            if not self._is_current(epoch, user.id):
                logger.debug("stale_load_discarded", load="profile_update", user_id=user.id)
                return profile
            self._update(
                profile=profile,
                connection_status=ConnectionStatus.CONNECTED,
                data_readiness=DataReadiness.READY,
            )
            logger.info("profile_updated", user_id=user.id)

            if self._state.is_new_user:
                await progress_service.initialize_user_progress(self.gateway, user.id)
                await progress_service.initialize_subjects(
                    self.gateway, user.id, profile.subjects or self.default_subjects
                )
                await self._load_progress(user.id, epoch)
                self.mark_profile_completed()

            await self._load_subject_group(user.id, epoch)
        except Exception as e:
            self._handle_error(e, "Profile update")
            raise
        return profile

    async def record_study_session(
        self,
        session_type: StudySessionType | str,
        subject: str,
        duration_minutes: int,
        score: int | None = None,
    ) -> StudySession:
        """Append a study session, fold it into the stats, then reload progress.

        Progress is reloaded whenever the record was appended, even if the
        stats update afterwards fails.
        """
        user = self._require_user()
        try:
            record = await progress_service.append_study_session(
                self.gateway, user.id, session_type, subject, duration_minutes, score
            )
        except Exception as e:
            self._handle_error(e, "Record study session")
            raise
        try:
            await progress_service.apply_session_to_stats(self.gateway, user.id, record)
        except Exception as e:
            self._handle_error(e, "Record study session")
            raise
        finally:
            await self.refresh_progress()
        return record

    async def refresh_progress(self) -> None:
        user = self._state.user
        if user is not None:
            await self._load_progress(user.id, self._epoch)

    async def retry_profile_load(self) -> None:
        user = self._state.user
        if user is None:
            return
        self._update(error=None, data_readiness=DataReadiness.PROFILE_LOADING)
        epoch = self._epoch
        await asyncio.gather(
            self._load_profile(user.id, epoch),
            self._load_progress(user.id, epoch),
            self._load_subject_group(user.id, epoch),
        )

    async def retry_connection(self) -> None:
        """Re-run the bounded session check from any phase."""
        await self._check_session("Connection retry")
        if self._state.connection_status == ConnectionStatus.CONNECTED:
            logger.info("connection_restored")

    def mark_profile_completed(self) -> None:
        self._store.remove(IS_NEW_USER)
        self._update(is_new_user=False)

    def dismiss_error(self) -> None:
        """Clear the message; the connection status is left as is."""
        self._update(error=None)
