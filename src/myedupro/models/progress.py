"""Progress tracking models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class StudySessionType(StrEnum):
    LESSON = "lesson"
    TEST = "test"
    AI_TUTOR = "ai_tutor"
    MATERIALS = "materials"


class ProgressStats(BaseModel):
    """Aggregate counters, one row per user."""

    id: str | None = None
    user_id: str
    study_streak_days: int = 0
    total_study_time_minutes: int = 0
    completed_lessons: int = 0
    total_tests_taken: int = 0
    average_test_score: float = 0.0
    ai_sessions_count: int = 0
    weekly_study_time: int = 0
    monthly_study_time: int = 0
    last_study_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubjectProgress(BaseModel):
    id: str | None = None
    user_id: str
    subject_name: str
    progress_percentage: int = Field(default=0, ge=0, le=100)
    completed_topics: int = 0
    total_topics: int = 20
    last_accessed: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _topics_within_total(self) -> "SubjectProgress":
        if self.completed_topics > self.total_topics:
            raise ValueError("completed_topics cannot exceed total_topics")
        return self


class StudySession(BaseModel):
    """Append-only activity record."""

    id: str | None = None
    user_id: str
    session_type: StudySessionType
    subject: str = Field(min_length=1)
    duration_minutes: int = Field(gt=0)
    score: int | None = Field(default=None, ge=0, le=100)
    session_date: date = Field(default_factory=date.today)
    created_at: datetime | None = None

    def to_row(self) -> dict:
        return self.model_dump(
            mode="json", exclude_none=True, exclude={"id", "created_at"}
        )


class SubjectGroup(BaseModel):
    """Per-user subject selection (the user_databases row)."""

    user_id: str
    database_name: str | None = None
    grade: str = ""
    board: str | None = None
    subject_group: str | None = None
    subjects: list[str] = Field(default_factory=list)

    @property
    def has_subjects(self) -> bool:
        return len(self.subjects) > 0
