"""Profile loading and saving."""

from typing import Any

import structlog

from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.backend.gateway import BackendGateway
from myedupro.models.auth import UserIdentity
from myedupro.models.profile import REQUIRED_PROFILE_FIELDS, ProfilePicture, ProfileUpdate, UserProfile

logger = structlog.get_logger()

PROFILES_TABLE = "user_profiles"


async def load_profile(gateway: BackendGateway, user_id: str) -> UserProfile:
    """Fetch the profile row for a user.

    Raises:
        BackendError: NOT_FOUND if no row exists, or the transport's error kind.
    """
    data = (await gateway.select(PROFILES_TABLE, {"id": user_id}, single=True)).unwrap()
    if not data:
        raise BackendError(ErrorKind.NOT_FOUND, f"Profile not found for user {user_id}")
    return UserProfile.model_validate(data)


def merge_profile_update(
    user: UserIdentity,
    current: UserProfile | None,
    updates: ProfileUpdate,
) -> dict[str, Any]:
    """Overlay updates on the last-known profile.

    Required fields fall back to the stored value, then to the sign-up
    metadata, so a value that was ever known is never replaced by "".
    """
    base = current.model_dump(exclude={"created_at", "updated_at"}) if current else {}
    changes = updates.model_dump(exclude_unset=True, exclude_none=True)
    merged = {**base, **changes, "id": user.id}
    for field in REQUIRED_PROFILE_FIELDS:
        merged[field] = (
            changes.get(field)
            or (getattr(current, field) if current else "")
            or user.metadata_value(field)
        )
    return merged


async def save_profile(
    gateway: BackendGateway,
    user_id: str,
    fields: dict[str, Any],
    picture: ProfilePicture | None = None,
    bucket: str = "profile-pictures",
) -> UserProfile:
    """Upsert the profile row, uploading a new picture first if given."""
    row = dict(fields)
    row["id"] = user_id
    if picture is not None:
        path = f"{user_id}/avatar.{picture.extension}"
        (await gateway.upload(
            bucket, path, picture.content, content_type=picture.content_type, upsert=True
        )).unwrap()
        row["profile_picture_url"] = gateway.public_url(bucket, path)
        logger.info("profile_picture_uploaded", user_id=user_id, path=path)

    data = (await gateway.upsert(PROFILES_TABLE, row, on_conflict="id")).unwrap()
    if isinstance(data, list):
        data = data[0] if data else None
    if not data:
        raise BackendError(ErrorKind.UNKNOWN, "Profile update returned no data")
    return UserProfile.model_validate(data)
