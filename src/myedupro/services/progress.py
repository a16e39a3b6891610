"""Progress statistics, per-subject progress and study-session recording."""

from datetime import date, timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.backend.gateway import BackendGateway
from myedupro.models.progress import ProgressStats, StudySession, StudySessionType, SubjectProgress

logger = structlog.get_logger()

STATS_TABLE = "user_progress_stats"
SUBJECTS_TABLE = "subject_progress"
SESSIONS_TABLE = "study_sessions"

HISTORY_LIMIT = 500


async def load_progress_stats(gateway: BackendGateway, user_id: str) -> ProgressStats:
    data = (await gateway.select(STATS_TABLE, {"user_id": user_id}, single=True)).unwrap()
    if not data:
        raise BackendError(ErrorKind.NOT_FOUND, f"Progress stats not found for user {user_id}")
    return ProgressStats.model_validate(data)


async def load_subject_progress(gateway: BackendGateway, user_id: str) -> list[SubjectProgress]:
    rows = (await gateway.select(
        SUBJECTS_TABLE, {"user_id": user_id}, order="subject_name.asc"
    )).unwrap()
    return [SubjectProgress.model_validate(row) for row in rows or []]


async def initialize_user_progress(gateway: BackendGateway, user_id: str) -> None:
    """Create the stats row; a second call for the same user is a no-op."""
    (await gateway.insert(
        STATS_TABLE,
        {"user_id": user_id},
        on_conflict="user_id",
        ignore_duplicates=True,
    )).unwrap()
    logger.info("progress_initialized", user_id=user_id)


async def initialize_subjects(
    gateway: BackendGateway, user_id: str, subjects: list[str]
) -> None:
    """Create one progress row per subject, skipping existing ones."""
    if not subjects:
        return
    rows = [{"user_id": user_id, "subject_name": name} for name in dict.fromkeys(subjects)]
    (await gateway.insert(
        SUBJECTS_TABLE,
        rows,
        on_conflict="user_id,subject_name",
        ignore_duplicates=True,
    )).unwrap()
    logger.info("subjects_initialized", user_id=user_id, count=len(rows))


def accumulate_stats(
    stats: ProgressStats,
    record: StudySession,
    history: list[StudySession],
) -> dict[str, Any]:
    """Return the stats columns after applying one new study session.

    ``history`` must include ``record``; it supplies the rolling weekly and
    monthly minute totals and the scored tests behind the average.
    """
    today = record.session_date
    values: dict[str, Any] = {
        "total_study_time_minutes": stats.total_study_time_minutes + record.duration_minutes,
        "last_study_date": today.isoformat(),
    }

    last = stats.last_study_date
    if last == today:
        values["study_streak_days"] = max(stats.study_streak_days, 1)
    elif last == today - timedelta(days=1):
        values["study_streak_days"] = stats.study_streak_days + 1
    else:
        values["study_streak_days"] = 1

    if record.session_type == StudySessionType.LESSON:
        values["completed_lessons"] = stats.completed_lessons + 1
    elif record.session_type == StudySessionType.AI_TUTOR:
        values["ai_sessions_count"] = stats.ai_sessions_count + 1
    elif record.session_type == StudySessionType.TEST:
        values["total_tests_taken"] = stats.total_tests_taken + 1
        if record.score is not None:
            # unscored tests count as taken but never enter the average
            scores = [
                s.score for s in history
                if s.session_type == StudySessionType.TEST and s.score is not None
            ]
            values["average_test_score"] = round(sum(scores) / len(scores), 2)

    values["weekly_study_time"] = sum(
        s.duration_minutes for s in history if timedelta(0) <= today - s.session_date < timedelta(days=7)
    )
    values["monthly_study_time"] = sum(
        s.duration_minutes for s in history if timedelta(0) <= today - s.session_date < timedelta(days=30)
    )
    return values


async def append_study_session(
    gateway: BackendGateway,
    user_id: str,
    session_type: StudySessionType | str,
    subject: str,
    duration_minutes: int,
    score: int | None = None,
    session_date: date | None = None,
) -> StudySession:
    """Validate and insert one study session record."""
    try:
        record = StudySession(
            user_id=user_id,
            session_type=session_type,
            subject=subject,
            duration_minutes=duration_minutes,
            score=score,
            session_date=session_date or date.today(),
        )
    except ValidationError as e:
        raise BackendError(ErrorKind.INVALID, f"Invalid study session: {e.errors()[0]['msg']}") from e

    inserted = (await gateway.insert(SESSIONS_TABLE, record.to_row())).unwrap()
    if inserted:
        record = StudySession.model_validate(inserted[0] if isinstance(inserted, list) else inserted)
    logger.info(
        "study_session_recorded",
        user_id=user_id,
        session_type=record.session_type.value,
        subject=subject,
        minutes=duration_minutes,
    )
    return record


async def apply_session_to_stats(
    gateway: BackendGateway, user_id: str, record: StudySession
) -> None:
    """Fold an appended session into the user's stats row."""
    try:
        stats = await load_progress_stats(gateway, user_id)
    except BackendError as e:
        if e.kind != ErrorKind.NOT_FOUND:
            raise
        await initialize_user_progress(gateway, user_id)
        stats = ProgressStats(user_id=user_id)

    rows = (await gateway.select(
        SESSIONS_TABLE, {"user_id": user_id}, order="session_date.desc", limit=HISTORY_LIMIT
    )).unwrap()
    history = [StudySession.model_validate(row) for row in rows or []]
    if record.id is None or all(s.id != record.id for s in history):
        history.append(record)

    values = accumulate_stats(stats, record, history)
    (await gateway.update(STATS_TABLE, values, {"user_id": user_id})).unwrap()


async def record_study_session(
    gateway: BackendGateway,
    user_id: str,
    session_type: StudySessionType | str,
    subject: str,
    duration_minutes: int,
    score: int | None = None,
    session_date: date | None = None,
) -> StudySession:
    """Append a study session and fold it into the user's stats row."""
    record = await append_study_session(
        gateway, user_id, session_type, subject, duration_minutes, score, session_date
    )
    await apply_session_to_stats(gateway, user_id, record)
    return record
