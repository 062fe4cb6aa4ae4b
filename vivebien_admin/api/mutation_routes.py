"""
Mutation API routes - Operator writes.

Validate body -> session from the Database -> domain operation -> commit.
Any failure rolls the transaction back; errors render as {success, error}.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vivebien_admin.db.session import get_db
from vivebien_admin.exceptions import DashboardError, DatabaseError, UserIdRequiredError
from vivebien_admin.models.api import (
    AddCreditsRequest,
    AddCreditsResponse,
    AddNoteRequest,
    AddNoteResponse,
    HealthRoutineResponse,
    OperatorNoteResponse,
    SubscriptionRequest,
    SubscriptionResponse,
    SubscriptionSnapshotResponse,
    SuccessResponse,
    UpdateRoutineRequest,
    UpdateRoutineResponse,
)
from vivebien_admin.observability.metrics import metrics
from vivebien_admin.services.credits import CreditService
from vivebien_admin.services.patients import PatientService
from vivebien_admin.services.subscription import SubscriptionService

logger = get_logger(__name__)
router = APIRouter(tags=["mutations"])


@asynccontextmanager
async def mutation(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back on any failure and record the outcome."""
    try:
        yield
    except DashboardError as exc:
        await db.rollback()
        metrics.record_mutation(operation, "rejected")
        logger.info(
            "mutation_rejected",
            operation=operation,
            error=exc.message,
            status_code=exc.status_code,
        )
        raise
    except (SQLAlchemyError, OSError) as exc:
        await db.rollback()
        metrics.record_mutation(operation, "error")
        metrics.record_error(type(exc).__name__, operation)
        logger.error("mutation_failed", operation=operation, error=str(exc), exc_info=True)
        raise DatabaseError(str(exc)) from exc
    else:
        metrics.record_mutation(operation, "success")


# ============================================================================
# Credits
# ============================================================================


@router.post("/credits", response_model=AddCreditsResponse)
async def add_credits(
    request: AddCreditsRequest,
    db: AsyncSession = Depends(get_db),
) -> AddCreditsResponse:
    """
    Adjust a user's credit balance.

    Positive amounts are grants (admin_add), zero or negative are deductions
    (admin_deduct). Both write exactly one ledger row.
    """
    service = CreditService(db)
    async with mutation(db, "add_credits"):
        new_balance = await service.adjust_credits(
            request.user_id, request.amount, request.description
        )
    return AddCreditsResponse(new_balance=new_balance)


# ============================================================================
# Notes
# ============================================================================


@router.post("/notes", response_model=AddNoteResponse)
async def add_note(
    request: AddNoteRequest,
    db: AsyncSession = Depends(get_db),
) -> AddNoteResponse:
    """Append an operator note to a patient."""
    service = PatientService(db)
    async with mutation(db, "add_note"):
        note = await service.add_note(
            request.user_id, request.note, request.created_by, request.tags
        )
    return AddNoteResponse(note=OperatorNoteResponse.model_validate(note))


# ============================================================================
# Routines
# ============================================================================


@router.patch("/routines", response_model=UpdateRoutineResponse)
async def update_routine(
    request: UpdateRoutineRequest,
    db: AsyncSession = Depends(get_db),
) -> UpdateRoutineResponse:
    """Set a routine's status to active, paused or completed."""
    service = PatientService(db)
    async with mutation(db, "update_routine"):
        routine = await service.update_routine_status(request.routine_id, request.status)
    return UpdateRoutineResponse(routine=HealthRoutineResponse.model_validate(routine))


# ============================================================================
# Users
# ============================================================================


@router.delete("/users/{user_id}", response_model=SuccessResponse)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    """Soft-delete a user."""
    service = PatientService(db)
    async with mutation(db, "delete_user"):
        await service.soft_delete_user(user_id)
    return SuccessResponse()


# ============================================================================
# Subscription
# ============================================================================


@router.post("/subscription", response_model=SubscriptionResponse)
async def update_subscription(
    request: SubscriptionRequest,
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    """Run activate, pause, resume, cancel or extend for a user."""
    service = SubscriptionService(db)
    async with mutation(db, "subscription"):
        message = await service.apply(
            request.user_id,
            request.action,
            cancel_reason=request.cancel_reason,
            extension_days=request.extension_days,
        )
    return SubscriptionResponse(message=message)


@router.get("/subscription", response_model=SubscriptionSnapshotResponse)
async def get_subscription(
    user_id: str | None = Query(None, alias="userId"),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionSnapshotResponse:
    """Current subscription snapshot for a user."""
    if not user_id:
        raise UserIdRequiredError()

    service = SubscriptionService(db)
    try:
        snapshot = await service.get_snapshot(user_id)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("subscription_fetch_failed", user_id=user_id, error=str(exc))
        raise DatabaseError(str(exc)) from exc

    return SubscriptionSnapshotResponse(data=snapshot)
