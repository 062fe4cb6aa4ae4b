"""
Tests for PatientService: notes, routine status and soft deletion.
"""

import pytest

from tests.factories import create_user, make_result
from vivebien_admin.db.models import OperatorNote
from vivebien_admin.exceptions import (
    InvalidRoutineStatusError,
    RoutineNotFoundError,
    UserNotFoundError,
)
from vivebien_admin.services.patients import ALLOWED_ROUTINE_STATUSES, PatientService


class TestAddNote:
    """Tests for add_note."""

    @pytest.mark.asyncio
    async def test_note_is_stored(self, db_session):
        note = await PatientService(db_session).add_note(
            "user-1", "Prefers calls after 6pm", "operator@vivebien.mx", ["contact"]
        )

        assert isinstance(note, OperatorNote)
        assert note.id
        assert note.user_id == "user-1"
        assert note.tags == ["contact"]
        assert note.created_at is not None
        db_session.add.assert_called_once_with(note)
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tags_default_empty(self, db_session):
        note = await PatientService(db_session).add_note("user-1", "Called", "op")
        assert note.tags == []


class TestUpdateRoutine:
    """Tests for update_routine_status."""

    def test_allowed_statuses(self):
        assert ALLOWED_ROUTINE_STATUSES == ("active", "paused", "completed")

    @pytest.mark.asyncio
    async def test_updates_status(self, db_session, routine):
        db_session.get.return_value = routine

        updated = await PatientService(db_session).update_routine_status("routine-1", "paused")

        assert updated is routine
        assert routine.status == "paused"
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_status_checked_before_lookup(self, db_session):
        with pytest.raises(InvalidRoutineStatusError) as exc_info:
            await PatientService(db_session).update_routine_status("routine-1", "archived")

        assert exc_info.value.message == "Invalid status. Must be one of: active, paused, completed"
        db_session.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_routine(self, db_session):
        db_session.get.return_value = None

        with pytest.raises(RoutineNotFoundError):
            await PatientService(db_session).update_routine_status("routine-9", "active")

        db_session.commit.assert_not_awaited()


class TestSoftDelete:
    """Tests for soft_delete_user."""

    @pytest.mark.asyncio
    async def test_sets_deleted_at(self, db_session):
        user = create_user()
        db_session.execute.return_value = make_result(scalar=user)

        await PatientService(db_session).soft_delete_user("user-1")

        assert user.deleted_at is not None
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_or_deleted_user(self, db_session):
        db_session.execute.return_value = make_result(scalar=None)

        with pytest.raises(UserNotFoundError) as exc_info:
            await PatientService(db_session).soft_delete_user("user-9")

        assert exc_info.value.status_code == 404
        db_session.commit.assert_not_awaited()
