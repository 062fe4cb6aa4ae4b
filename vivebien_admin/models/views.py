"""
View Models - Typed read records returned by reports and page endpoints.

NO DICTIONARIES - every report row is a Pydantic model built from a SQL row.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vivebien_admin.models.api import HealthRoutineResponse, OperatorNoteResponse


class RowModel(BaseModel):
    """Base for records read straight off SQLAlchemy rows."""

    model_config = ConfigDict(from_attributes=True)


class ActivityStatus(str, Enum):
    """Recency label for a user's last message."""

    ACTIVE = "active"
    RECENT = "recent"
    IDLE = "idle"
    INACTIVE = "inactive"


class CreditLevel(str, Enum):
    """Balance warning level."""

    OK = "ok"
    LOW = "low"
    CRITICAL = "critical"


class HealthStatus(str, Enum):
    """Per-metric system health status."""

    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


# ============================================================================
# Roster / patient detail
# ============================================================================


class UserSummary(RowModel):
    """Roster row: user joined with billing and conversation state."""

    id: str
    phone: str
    preferred_name: str | None = None
    name: str | None = None
    status: str
    created_at: datetime
    preferred_language: str | None = None
    credits_balance: int | None = None
    credits_used_this_period: int | None = None
    subscription_status: str | None = None
    current_topic: str | None = None
    emotional_state: str | None = None
    needs_human: bool | None = None
    last_message_at: datetime | None = None
    message_count: int = 0
    routine_count: int = 0


class PatientRow(UserSummary):
    """Roster row decorated for the dashboard."""

    activity_status: ActivityStatus = ActivityStatus.INACTIVE
    credit_level: CreditLevel = CreditLevel.OK


class UserDetail(RowModel):
    """Single user with billing and conversation details."""

    id: str
    phone: str
    phone_normalized: str | None = None
    name: str | None = None
    preferred_name: str | None = None
    preferred_language: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    zip_code: str | None = None
    medical_vault: dict[str, Any] | None = None
    notification_preferences: dict[str, Any] | None = None
    status: str
    chatwoot_conversation_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    billing_account_id: str | None = None
    credits_balance: int | None = None
    credits_used_this_period: int | None = None
    credits_monthly_allowance: int | None = None
    subscription_status: str | None = None
    subscription_plan: str | None = None
    subscription_started_at: datetime | None = None
    next_billing_date: datetime | None = None

    current_topic: str | None = None
    emotional_state: str | None = None
    needs_human: bool | None = None
    last_message_at: datetime | None = None
    handoff_reason: str | None = None


class MessageRecord(RowModel):
    id: str
    user_id: str
    role: str
    content: str
    channel: str | None = None
    created_at: datetime


class CreditLedgerRecord(RowModel):
    id: str
    billing_account_id: str
    user_id: str
    change_amount: int
    change_type: str
    balance_after: int
    description: str | None = None
    external_ref: str | None = None
    created_at: datetime


class VaultSummary(RowModel):
    """Counts of a user's health vault entries."""

    conditions_count: int = 0
    medications_count: int = 0
    allergies_count: int = 0
    has_profile: bool = False


class RoutineWithUser(HealthRoutineResponse):
    """Routine row with the owner's display name."""

    user_name: str = "Unknown"
    user_phone: str | None = None


# ============================================================================
# Dashboard
# ============================================================================


class DashboardStats(RowModel):
    total_users: int = 0
    active_users: int = 0
    total_credits: int = 0
    active_routines: int = 0
    needs_human: int = 0


class FollowupRecord(RowModel):
    """Follow-up with the user's display name."""

    id: str
    user_id: str
    type: str
    scheduled_for: datetime
    status: str
    priority: str
    notes: str | None = None
    created_at: datetime
    user_name: str = "Unknown"
    user_phone: str | None = None
    is_overdue: bool = False


class EngagementCandidate(RowModel):
    """Per-user activity facts the engagement ranking works from."""

    id: str
    preferred_name: str | None = None
    name: str | None = None
    phone: str
    last_message_at: datetime | None = None
    emotional_state: str | None = None
    days_inactive: int = 0
    message_count: int = 0


class EngagementOpportunity(EngagementCandidate):
    """A user who needs outreach and why."""

    reason: str


class ActivityItem(RowModel):
    """One entry of the 24h activity feed."""

    id: str
    type: str
    user_id: str
    user_name: str = "Unknown"
    description: str
    created_at: datetime


# ============================================================================
# System health
# ============================================================================


class SystemHealth(RowModel):
    """Last-24h pipeline health counters."""

    total_messages_24h: int = 0
    total_ai_calls_24h: int = 0
    avg_response_time_ms: int = 0
    error_count_24h: int = 0
    circuit_breaker_status: str = "closed"
    credits_used_24h: int = 0
    active_conversations: int = 0


class HealthEvaluation(BaseModel):
    """Per-metric statuses derived from a SystemHealth record."""

    messages: HealthStatus
    ai_calls: HealthStatus
    response_time: HealthStatus
    errors: HealthStatus
    circuit_breaker: HealthStatus
    overall: HealthStatus


class CircuitBreakerRecord(RowModel):
    service_name: str
    state: str
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: datetime | None = None
    opened_at: datetime | None = None
    updated_at: datetime | None = None


# ============================================================================
# Care network
# ============================================================================


class AppointmentRecord(RowModel):
    id: str
    user_email: str
    provider_id: str | None = None
    scheduled_at: datetime
    status: str
    type: str
    reason: str | None = None
    notes: str | None = None
    meeting_link: str | None = None
    created_at: datetime
    provider_name: str | None = None


class ProviderRecord(RowModel):
    id: str
    name: str
    specialty: str | None = None
    clinic: str | None = None
    phone: str | None = None
    email: str | None = None
    status: str
    appointment_count: int = 0


# ============================================================================
# Time series and distributions
# ============================================================================


class SeriesPoint(BaseModel):
    """One calendar day of a zero-filled series."""

    date: str = Field(..., description="ISO date, YYYY-MM-DD")
    label: str = Field(..., description="Chart label, e.g. 'Mar 04'")


class MessageVolumePoint(SeriesPoint):
    user_messages: int = 0
    assistant_messages: int = 0
    total: int = 0


class UserGrowthPoint(SeriesPoint):
    new_users: int = 0
    cumulative: int = 0


class CreditsUsagePoint(SeriesPoint):
    credits_used: int = 0
    credits_added: int = 0


class DailyActiveUsersPoint(SeriesPoint):
    active_users: int = 0


class ResponseTimePoint(SeriesPoint):
    avg_latency_ms: int = 0
    max_latency_ms: int = 0
    request_count: int = 0


class DistributionSlice(BaseModel):
    """A labelled count with its share of the total (1 dp)."""

    name: str
    count: int
    percentage: float


class EngagementMetrics(BaseModel):
    avg_messages_per_user: float = 0.0
    return_rate: float = 0.0
    active_user_rate: float = 0.0


# ============================================================================
# Costs
# ============================================================================


class UsageTotals(BaseModel):
    """Calls, cost and volume for one AI source (or both combined)."""

    calls: int = 0
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    audio_seconds: float = 0.0


class ModelUsage(BaseModel):
    model: str
    source: str
    calls: int = 0
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    audio_seconds: float = 0.0


class AIUsageSummary(BaseModel):
    """AI usage rollup over a trailing window."""

    days: int
    text_generation: UsageTotals = Field(default_factory=UsageTotals)
    transcription: UsageTotals = Field(default_factory=UsageTotals)
    total: UsageTotals = Field(default_factory=UsageTotals)
    by_model: list[ModelUsage] = Field(default_factory=list)


class FixedCostItem(BaseModel):
    name: str
    monthly_usd: float


class MonthlyCost(BaseModel):
    """Variable + fixed cost for one calendar month."""

    month: str = Field(..., description="YYYY-MM")
    label: str = Field(..., description="e.g. 'Mar 2026'")
    ai_cost_usd: float = 0.0
    fixed_cost_usd: float = 0.0
    total_cost_usd: float = 0.0
    change_percent: float | None = None


# ============================================================================
# Credits page
# ============================================================================


class BillingAccountRecord(RowModel):
    """Billing account with the owner's name and contact."""

    id: str
    user_id: str
    user_name: str = "Unknown"
    phone: str | None = None
    subscription_status: str
    subscription_plan: str | None = None
    credits_balance: int = 0
    credits_monthly_allowance: int = 0
    credits_used_this_period: int = 0
    credits_reset_at: datetime | None = None
    credit_level: CreditLevel = CreditLevel.OK


class CreditStats(RowModel):
    total_accounts: int = 0
    total_balance: int = 0
    low_balance_count: int = 0
    critical_count: int = 0


# ============================================================================
# Page views
# ============================================================================


class DashboardView(BaseModel):
    patients: list[PatientRow]
    stats: DashboardStats
    engagement_opportunities: list[EngagementOpportunity]
    pending_followups: list[FollowupRecord]
    system_health: SystemHealth
    recent_activity: list[ActivityItem]


class PatientView(BaseModel):
    user: UserDetail
    activity_status: ActivityStatus
    credit_level: CreditLevel | None = None
    routines: list[HealthRoutineResponse]
    messages: list[MessageRecord]
    notes: list[OperatorNoteResponse]
    credit_history: list[CreditLedgerRecord]
    vault: VaultSummary


class AnalyticsView(BaseModel):
    message_volume: list[MessageVolumePoint]
    emotional_states: list[DistributionSlice]
    topics: list[DistributionSlice]
    user_growth: list[UserGrowthPoint]
    credits_usage: list[CreditsUsagePoint]
    daily_active_users: list[DailyActiveUsersPoint]
    engagement: EngagementMetrics
    stats: DashboardStats


class FollowupsView(BaseModel):
    pending: list[FollowupRecord]
    overdue: list[FollowupRecord]
    upcoming: list[FollowupRecord]


class SystemHealthView(BaseModel):
    health: SystemHealth
    statuses: HealthEvaluation
    circuit_breakers: list[CircuitBreakerRecord]
    response_times: list[ResponseTimePoint]


class CostsView(BaseModel):
    ai_usage: AIUsageSummary
    monthly_costs: list[MonthlyCost]
    fixed_costs: list[FixedCostItem]


class CareView(BaseModel):
    appointments: list[AppointmentRecord]
    providers: list[ProviderRecord]


class CreditsView(BaseModel):
    accounts: list[BillingAccountRecord]
    stats: CreditStats


class RoutinesView(BaseModel):
    routines: list[RoutineWithUser]
