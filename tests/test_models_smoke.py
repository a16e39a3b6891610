"""Smoke tests for snapshot and domain models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from myedupro.models.auth import ConnectionStatus, DataReadiness, Session, SignUpRequest, UserIdentity
from myedupro.models.profile import ProfilePicture, UserProfile
from myedupro.models.state import AuthSnapshot

USER = UserIdentity(id="u1", email="ann@example.com")


class TestAuthSnapshot:
    def test_initial_values(self):
        snap = AuthSnapshot()
        assert snap.loading is True
        assert snap.connection_status == ConnectionStatus.CHECKING
        assert snap.can_retry_connection is False

    def test_is_frozen(self):
        with pytest.raises(ValidationError):
            AuthSnapshot().loading = False

    def test_no_completion_while_profile_loading(self):
        snap = AuthSnapshot(user=USER, data_readiness=DataReadiness.PROFILE_LOADING)
        assert snap.requires_profile_completion is False

    def test_completion_for_missing_grade(self):
        snap = AuthSnapshot(
            user=USER,
            profile=UserProfile(id="u1", first_name="Ann"),
            data_readiness=DataReadiness.READY,
        )
        assert snap.requires_profile_completion is True

    def test_completion_for_new_user_with_complete_profile(self):
        snap = AuthSnapshot(
            user=USER,
            profile=UserProfile(id="u1", first_name="Ann", grade="10"),
            is_new_user=True,
            data_readiness=DataReadiness.READY,
        )
        assert snap.requires_profile_completion is True

    def test_complete_profile(self):
        snap = AuthSnapshot(
            user=USER,
            profile=UserProfile(id="u1", first_name="Ann", grade="10"),
            data_readiness=DataReadiness.READY,
        )
        assert snap.requires_profile_completion is False

    def test_connection_alert_needs_error(self):
        assert AuthSnapshot(connection_status=ConnectionStatus.DISCONNECTED).show_connection_alert is False
        snap = AuthSnapshot(connection_status=ConnectionStatus.DISCONNECTED, error="down")
        assert snap.show_connection_alert is True
        assert snap.can_retry_connection is True

    def test_json_dump_includes_derived_fields(self):
        data = AuthSnapshot().model_dump(mode="json")
        assert data["requires_profile_completion"] is False
        assert data["subject_progress"] == []


class TestSession:
    def test_expired(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        assert Session(access_token="t", expires_at=past, user=USER).is_expired is True

    def test_no_expiry_never_expires(self):
        assert Session(access_token="t", user=USER).is_expired is False


class TestMisc:
    def test_sign_up_metadata(self):
        request = SignUpRequest(email="a@example.com", password="pw", first_name="Ann", grade="10")
        assert request.metadata == {"first_name": "Ann", "last_name": "", "grade": "10"}

    def test_metadata_value_blank_for_missing(self):
        assert USER.metadata_value("grade") == ""

    def test_picture_extension_default(self):
        assert ProfilePicture(filename="avatar", content=b"").extension == "jpg"
