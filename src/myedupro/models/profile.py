"""User profile models."""

from datetime import datetime

from pydantic import BaseModel, Field

REQUIRED_PROFILE_FIELDS = ("first_name", "last_name", "grade")


class UserProfile(BaseModel):
    id: str  # always the owning user's id
    first_name: str = ""
    last_name: str = ""
    grade: str = ""
    board: str | None = None
    area: str | None = None
    profile_picture_url: str | None = None
    subject_group: str | None = None
    subjects: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.first_name and self.grade)


class ProfileUpdate(BaseModel):
    """Partial profile changes; unset fields keep their stored value."""

    first_name: str | None = None
    last_name: str | None = None
    grade: str | None = None
    board: str | None = None
    area: str | None = None
    subject_group: str | None = None
    subjects: list[str] | None = None


class ProfilePicture(BaseModel):
    filename: str
    content: bytes
    content_type: str = "image/jpeg"

    @property
    def extension(self) -> str:
        if "." in self.filename:
            return self.filename.rsplit(".", 1)[1].lower()
        return "jpg"
