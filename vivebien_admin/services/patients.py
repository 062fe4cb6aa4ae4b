"""
Patient Service - Operator notes, routine status and soft deletion.
"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vivebien_admin.db.models import HealthRoutine, OperatorNote, User, new_id
from vivebien_admin.exceptions import (
    InvalidRoutineStatusError,
    RoutineNotFoundError,
    UserNotFoundError,
)
from vivebien_admin.models.api import RoutineStatus
from vivebien_admin.observability.logging import get_logger

logger = get_logger(__name__)

ALLOWED_ROUTINE_STATUSES = tuple(status.value for status in RoutineStatus)


class PatientService:
    """Write operations operators perform on a patient record."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_note(
        self,
        user_id: str,
        note: str,
        created_by: str,
        tags: list[str] | None = None,
    ) -> OperatorNote:
        """Append an operator note. Notes are never edited."""
        entry = OperatorNote(
            id=new_id(),
            user_id=user_id,
            note=note,
            created_by=created_by,
            tags=list(tags or []),
            created_at=datetime.now(UTC),
        )
        self.session.add(entry)
        await self.session.flush()
        await self.session.commit()

        logger.info("operator_note_added", user_id=user_id, note_id=entry.id, created_by=created_by)
        return entry

    async def update_routine_status(self, routine_id: str, status: str) -> HealthRoutine:
        """
        Set a routine's status.

        Raises:
            InvalidRoutineStatusError: status is not active, paused or completed
            RoutineNotFoundError: No routine with that id
        """
        if status not in ALLOWED_ROUTINE_STATUSES:
            raise InvalidRoutineStatusError(status, ALLOWED_ROUTINE_STATUSES)

        routine = await self.session.get(HealthRoutine, routine_id)
        if routine is None:
            raise RoutineNotFoundError(routine_id)

        previous = routine.status
        routine.status = status
        routine.updated_at = datetime.now(UTC)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "routine_status_updated",
            routine_id=routine_id,
            user_id=routine.user_id,
            previous_status=previous,
            status=status,
        )
        return routine

    async def soft_delete_user(self, user_id: str) -> None:
        """
        Mark a user deleted. Their rows stay; rosters stop listing them.

        Raises:
            UserNotFoundError: Unknown or already deleted user
        """
        stmt = select(User).where(User.id == user_id, User.deleted_at.is_(None)).limit(1)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)

        now = datetime.now(UTC)
        user.deleted_at = now
        user.updated_at = now
        await self.session.flush()
        await self.session.commit()

        logger.info("user_soft_deleted", user_id=user_id)
