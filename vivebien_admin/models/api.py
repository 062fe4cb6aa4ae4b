"""
API Models - Pydantic models for request/response validation.

Mutation bodies use the dashboard's camelCase field names on the wire.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UserStatus(str, Enum):
    """User lifecycle status."""

    ACTIVE = "active"
    PAUSED = "paused"
    BLOCKED = "blocked"


class RoutineStatus(str, Enum):
    """Health routine status."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class LedgerChangeType(str, Enum):
    """Credit ledger change type."""

    SUBSCRIPTION = "subscription"
    ADMIN_ADD = "admin_add"
    ADMIN_DEDUCT = "admin_deduct"
    ADMIN = "admin"
    WORK_ACTION = "work_action"


class SubscriptionStatus(str, Enum):
    """Billing account subscription status."""

    NONE = "none"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class SubscriptionAction(str, Enum):
    """Operator subscription actions."""

    ACTIVATE = "activate"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    EXTEND = "extend"


class EmotionalState(str, Enum):
    """Emotional-state tags written by the conversation pipeline."""

    NEUTRAL = "neutral"
    ANXIOUS = "anxious"
    GRATEFUL = "grateful"
    FRUSTRATED = "frustrated"
    CALM = "calm"
    WORRIED = "worried"
    HOPEFUL = "hopeful"
    CONFUSED = "confused"
    SAD = "sad"
    URGENT = "urgent"


DISTRESS_STATES = frozenset(
    {EmotionalState.ANXIOUS.value, EmotionalState.FRUSTRATED.value, EmotionalState.WORRIED.value}
)


class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Credits
# ============================================================================


class AddCreditsRequest(CamelModel):
    """POST /credits request body."""

    user_id: str = Field(..., alias="userId", min_length=1)
    amount: int
    description: str = Field(..., min_length=1)


class AddCreditsResponse(CamelModel):
    """POST /credits response."""

    success: bool = True
    new_balance: int = Field(..., alias="newBalance")


# ============================================================================
# Notes
# ============================================================================


class AddNoteRequest(CamelModel):
    """POST /notes request body."""

    user_id: str = Field(..., alias="userId", min_length=1)
    note: str = Field(..., min_length=1)
    created_by: str = Field(..., alias="createdBy", min_length=1)
    tags: list[str] | None = None


class OperatorNoteResponse(CamelModel):
    """A stored operator note."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    session_id: str | None = None
    note: str
    tags: list[str] | None = None
    created_by: str
    created_at: datetime


class AddNoteResponse(CamelModel):
    """POST /notes response."""

    success: bool = True
    note: OperatorNoteResponse


# ============================================================================
# Routines
# ============================================================================


class UpdateRoutineRequest(CamelModel):
    """PATCH /routines request body; status is checked by the service."""

    routine_id: str = Field(..., alias="routineId", min_length=1)
    status: str = Field(..., min_length=1)


class HealthRoutineResponse(CamelModel):
    """A health routine row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: str
    status: str
    schedule: dict[str, Any] | None = None
    configuration: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class UpdateRoutineResponse(CamelModel):
    """PATCH /routines response."""

    success: bool = True
    routine: HealthRoutineResponse


# ============================================================================
# Users / Subscription
# ============================================================================


class SuccessResponse(CamelModel):
    """Bare success envelope."""

    success: bool = True


class SubscriptionRequest(CamelModel):
    """POST /subscription request body."""

    user_id: str = Field(..., alias="userId", min_length=1)
    action: str = Field(..., min_length=1)
    cancel_reason: str | None = Field(None, alias="cancelReason")
    extension_days: int | None = Field(None, alias="extensionDays")


class SubscriptionResponse(CamelModel):
    """POST /subscription response."""

    success: bool = True
    message: str


class SubscriptionSnapshot(BaseModel):
    """Billing snapshot joined with the user's contact fields."""

    model_config = ConfigDict(from_attributes=True)

    subscription_status: str = SubscriptionStatus.NONE.value
    credits_balance: int = 0
    id: str | None = None
    user_id: str | None = None
    subscription_plan: str | None = None
    credits_monthly_allowance: int | None = None
    credits_used_this_period: int | None = None
    credits_reset_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    phone: str | None = None
    preferred_name: str | None = None
    name: str | None = None


class SubscriptionSnapshotResponse(BaseModel):
    """GET /subscription response."""

    success: bool = True
    data: SubscriptionSnapshot


class ErrorResponse(BaseModel):
    """Failure envelope for every error response."""

    success: bool = False
    error: str
