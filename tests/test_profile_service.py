"""Tests for profile merge and save."""

import pytest

from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.models.auth import UserIdentity
from myedupro.models.profile import ProfilePicture, ProfileUpdate, UserProfile
from myedupro.services import profile as profile_service


@pytest.fixture
def user():
    return UserIdentity(
        id="u1",
        email="ann@example.com",
        user_metadata={"first_name": "Ann", "last_name": "Lee", "grade": "10"},
    )


class TestMergeProfileUpdate:
    def test_required_fields_keep_stored_values(self, user):
        current = UserProfile(id="u1", first_name="Annie", last_name="Lee", grade="11")
        merged = profile_service.merge_profile_update(
            user, current, ProfileUpdate(first_name="", board="CBSE")
        )
        assert merged["first_name"] == "Annie"
        assert merged["grade"] == "11"
        assert merged["board"] == "CBSE"

    def test_falls_back_to_signup_metadata(self, user):
        merged = profile_service.merge_profile_update(user, None, ProfileUpdate(area="Pune"))
        assert merged["first_name"] == "Ann"
        assert merged["last_name"] == "Lee"
        assert merged["grade"] == "10"
        assert merged["area"] == "Pune"
        assert merged["id"] == "u1"

    def test_explicit_values_win(self, user):
        current = UserProfile(id="u1", first_name="Ann", grade="10")
        merged = profile_service.merge_profile_update(
            user, current, ProfileUpdate(grade="12", subjects=["Physics"])
        )
        assert merged["grade"] == "12"
        assert merged["subjects"] == ["Physics"]

    def test_unset_optional_fields_are_preserved(self, user):
        current = UserProfile(id="u1", first_name="Ann", grade="10", board="ICSE")
        merged = profile_service.merge_profile_update(user, current, ProfileUpdate())
        assert merged["board"] == "ICSE"
        assert "created_at" not in merged


class TestLoadProfile:
    async def test_missing_row(self, gateway):
        with pytest.raises(BackendError) as exc_info:
            await profile_service.load_profile(gateway, "u1")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_loads_row(self, gateway):
        gateway.tables["user_profiles"].append({"id": "u1", "first_name": "Ann", "grade": "10"})
        profile = await profile_service.load_profile(gateway, "u1")
        assert profile.is_complete


class TestSaveProfile:
    async def test_creates_row_when_missing(self, gateway):
        profile = await profile_service.save_profile(gateway, "u1", {"first_name": "Ann", "grade": "9"})
        assert profile.id == "u1"
        assert len(gateway.tables["user_profiles"]) == 1

    async def test_id_is_always_owner(self, gateway):
        profile = await profile_service.save_profile(gateway, "u1", {"id": "someone-else", "grade": "9"})
        assert profile.id == "u1"

    async def test_picture_uploaded_before_row(self, gateway):
        picture = ProfilePicture(filename="Me.JPEG", content=b"img", content_type="image/jpeg")
        profile = await profile_service.save_profile(gateway, "u1", {"grade": "9"}, picture)

        assert gateway.uploads == {"profile-pictures/u1/avatar.jpeg": b"img"}
        assert profile.profile_picture_url.endswith("/profile-pictures/u1/avatar.jpeg")
        assert [key for key, _ in gateway.calls] == ["upload:profile-pictures", "upsert:user_profiles"]

    async def test_failed_upload_skips_row_write(self, gateway):
        gateway.failures["upload:profile-pictures"] = BackendError(ErrorKind.BACKEND_FAULT, "storage down")
        picture = ProfilePicture(filename="me.png", content=b"img", content_type="image/png")
        with pytest.raises(BackendError):
            await profile_service.save_profile(gateway, "u1", {"grade": "9"}, picture)
        assert gateway.tables["user_profiles"] == []
