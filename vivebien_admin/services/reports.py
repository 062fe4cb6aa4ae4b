"""
Report Service - Read-only dashboard queries.

FAIL OPEN: a report never raises a storage error. An unconfigured database,
a SQLAlchemy error, a socket error or an upstream row that fails validation
yields the report's empty value, is logged as report_query_failed and
counted in Prometheus.

Every report opens its own session, so a page can run them concurrently.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import ValidationError
from sqlalchemy import Text, case, cast, func, literal, select, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vivebien_admin.config import settings
from vivebien_admin.db.models import (
    AIUsage,
    Appointment,
    BillingAccount,
    CircuitBreaker,
    ConversationState,
    CreditLedgerEntry,
    ExecutionLog,
    Followup,
    HealthRoutine,
    Message,
    OperatorNote,
    Provider,
    TranscriptionUsage,
    User,
    VaultAllergy,
    VaultCondition,
    VaultMedication,
    VaultProfile,
)
from vivebien_admin.db.session import Database
from vivebien_admin.models.api import (
    HealthRoutineResponse,
    LedgerChangeType,
    OperatorNoteResponse,
    RoutineStatus,
    UserStatus,
)
from vivebien_admin.models.views import (
    ActivityItem,
    AIUsageSummary,
    AppointmentRecord,
    BillingAccountRecord,
    CircuitBreakerRecord,
    CreditLedgerRecord,
    CreditStats,
    CreditsUsagePoint,
    DailyActiveUsersPoint,
    DashboardStats,
    DistributionSlice,
    EngagementCandidate,
    EngagementMetrics,
    EngagementOpportunity,
    FollowupRecord,
    MessageRecord,
    MessageVolumePoint,
    MonthlyCost,
    ProviderRecord,
    ResponseTimePoint,
    RoutineWithUser,
    SystemHealth,
    UserDetail,
    UserGrowthPoint,
    UserSummary,
    VaultSummary,
)
from vivebien_admin.observability.logging import get_logger
from vivebien_admin.observability.metrics import metrics
from vivebien_admin.observability.tracing import set_span_error, trace_operation
from vivebien_admin.services.costs import (
    ModelUsageRow,
    build_monthly_costs,
    month_starts,
    rollup_ai_usage,
)
from vivebien_admin.services.derived import (
    credit_level,
    day_label,
    days_inactive,
    distribution,
    rank_engagement_opportunities,
    series_dates,
    utc_now,
)

logger = get_logger(__name__)

T = TypeVar("T")

Query = Callable[[AsyncSession], Awaitable[T]]

CIRCUIT_BREAKER_SERVICE = "claude_api"
ACTIVITY_PREVIEW_CHARS = 50


def _display_name() -> Any:
    """COALESCE(preferred_name, name, 'Unknown')."""
    return func.coalesce(User.preferred_name, User.name, "Unknown")


def _utc_day(column: Any) -> Any:
    """Calendar day (UTC) of a timestamptz column."""
    return func.date(func.timezone("UTC", column))


def _utc_month(column: Any) -> Any:
    return func.date(func.date_trunc("month", func.timezone("UTC", column)))


def _window_start(days: int, today: date) -> datetime:
    """Midnight UTC of the first day of a `days`-long window ending today."""
    first = today - timedelta(days=days - 1)
    return datetime(first.year, first.month, first.day, tzinfo=UTC)


def _by_day(rows: list[Any]) -> dict[date, Any]:
    return {row.day: row for row in rows}


def _int(value: Any) -> int:
    return int(value or 0)


def _float(value: Any) -> float:
    if isinstance(value, Decimal):
        return float(value)
    return float(value or 0)


class ReportService:
    """Dashboard reports over a Database handle."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def _run(self, report: str, query: Query[T], empty: T) -> T:
        """Run one report in its own session, falling back to `empty`."""
        if not self.database.is_open:
            metrics.record_report_failure(report, "DatabaseNotConfigured")
            logger.debug("report_query_skipped", report=report, reason="database_not_configured")
            return empty

        with trace_operation(f"report.{report}", report=report) as span:
            start = time.perf_counter()
            try:
                async with self.database.session() as session:
                    result = await query(session)
            except (SQLAlchemyError, OSError, ValidationError) as e:
                duration = time.perf_counter() - start
                set_span_error(span, e)
                metrics.record_report_query(report, False, duration)
                metrics.record_report_failure(report, type(e).__name__)
                logger.warning(
                    "report_query_failed",
                    report=report,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_seconds=duration,
                )
                return empty

            metrics.record_report_query(report, True, time.perf_counter() - start)
            return result

    # ========================================================================
    # Roster and patient detail
    # ========================================================================

    async def fetch_users(self) -> list[UserSummary]:
        """Roster of non-deleted users, newest first."""
        message_count = (
            select(func.count(Message.id)).where(Message.user_id == User.id).scalar_subquery()
        )
        routine_count = (
            select(func.count(HealthRoutine.id))
            .where(HealthRoutine.user_id == User.id)
            .scalar_subquery()
        )
        stmt = (
            select(
                User.id,
                User.phone,
                User.preferred_name,
                User.name,
                User.status,
                User.created_at,
                User.preferred_language,
                BillingAccount.credits_balance,
                BillingAccount.credits_used_this_period,
                BillingAccount.subscription_status,
                ConversationState.current_topic,
                ConversationState.emotional_state,
                ConversationState.needs_human,
                ConversationState.last_message_at,
                message_count.label("message_count"),
                routine_count.label("routine_count"),
            )
            .select_from(User)
            .outerjoin(BillingAccount, BillingAccount.user_id == User.id)
            .outerjoin(ConversationState, ConversationState.user_id == User.id)
            .where(User.deleted_at.is_(None))
            .order_by(User.created_at.desc())
        )

        async def query(session: AsyncSession) -> list[UserSummary]:
            result = await session.execute(stmt)
            return [UserSummary.model_validate(row) for row in result.all()]

        return await self._run("users", query, [])

    async def fetch_user_by_id(self, user_id: str) -> UserDetail | None:
        """One user with billing and conversation details."""
        stmt = (
            select(
                *User.__table__.c,
                BillingAccount.id.label("billing_account_id"),
                BillingAccount.credits_balance,
                BillingAccount.credits_used_this_period,
                BillingAccount.credits_monthly_allowance,
                BillingAccount.subscription_status,
                BillingAccount.subscription_plan,
                BillingAccount.created_at.label("subscription_started_at"),
                BillingAccount.credits_reset_at.label("next_billing_date"),
                ConversationState.current_topic,
                ConversationState.emotional_state,
                ConversationState.needs_human,
                ConversationState.last_message_at,
                ConversationState.handoff_reason,
            )
            .select_from(User)
            .outerjoin(BillingAccount, BillingAccount.user_id == User.id)
            .outerjoin(ConversationState, ConversationState.user_id == User.id)
            .where(User.id == user_id)
            .limit(1)
        )

        async def query(session: AsyncSession) -> UserDetail | None:
            result = await session.execute(stmt)
            row = result.first()
            return UserDetail.model_validate(row) if row is not None else None

        return await self._run("user_by_id", query, None)

    async def fetch_user_routines(self, user_id: str) -> list[HealthRoutineResponse]:
        stmt = (
            select(HealthRoutine)
            .where(HealthRoutine.user_id == user_id)
            .order_by(HealthRoutine.created_at.desc())
        )

        async def query(session: AsyncSession) -> list[HealthRoutineResponse]:
            result = await session.execute(stmt)
            return [HealthRoutineResponse.model_validate(r) for r in result.scalars().all()]

        return await self._run("user_routines", query, [])

    async def fetch_user_messages(self, user_id: str, limit: int = 50) -> list[MessageRecord]:
        stmt = (
            select(Message)
            .where(Message.user_id == user_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[MessageRecord]:
            result = await session.execute(stmt)
            return [MessageRecord.model_validate(m) for m in result.scalars().all()]

        return await self._run("user_messages", query, [])

    async def fetch_user_notes(self, user_id: str) -> list[OperatorNoteResponse]:
        stmt = (
            select(OperatorNote)
            .where(OperatorNote.user_id == user_id)
            .order_by(OperatorNote.created_at.desc())
        )

        async def query(session: AsyncSession) -> list[OperatorNoteResponse]:
            result = await session.execute(stmt)
            return [OperatorNoteResponse.model_validate(n) for n in result.scalars().all()]

        return await self._run("user_notes", query, [])

    async def fetch_credit_history(self, user_id: str, limit: int = 50) -> list[CreditLedgerRecord]:
        """Ledger rows for the user's billing account, newest first."""
        stmt = (
            select(CreditLedgerEntry)
            .join(BillingAccount, CreditLedgerEntry.billing_account_id == BillingAccount.id)
            .where(BillingAccount.user_id == user_id)
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[CreditLedgerRecord]:
            result = await session.execute(stmt)
            return [CreditLedgerRecord.model_validate(e) for e in result.scalars().all()]

        return await self._run("credit_history", query, [])

    async def fetch_user_vault_summary(self, user_id: str) -> VaultSummary:
        def count_for(model: Any) -> Any:
            return (
                select(func.count()).select_from(model).where(model.user_id == user_id)
            ).scalar_subquery()

        stmt = select(
            count_for(VaultCondition).label("conditions_count"),
            count_for(VaultMedication).label("medications_count"),
            count_for(VaultAllergy).label("allergies_count"),
            select(VaultProfile.id)
            .where(VaultProfile.user_id == user_id)
            .exists()
            .label("has_profile"),
        )

        async def query(session: AsyncSession) -> VaultSummary:
            result = await session.execute(stmt)
            return VaultSummary.model_validate(result.one())

        return await self._run("user_vault_summary", query, VaultSummary())

    # ========================================================================
    # Dashboard
    # ========================================================================

    async def fetch_dashboard_stats(self) -> DashboardStats:
        """Five headline counters in one statement."""
        not_deleted = User.deleted_at.is_(None)
        stmt = select(
            select(func.count(User.id)).where(not_deleted).scalar_subquery().label("total_users"),
            select(func.count(User.id))
            .where(User.status == UserStatus.ACTIVE.value, not_deleted)
            .scalar_subquery()
            .label("active_users"),
            select(func.coalesce(func.sum(BillingAccount.credits_balance), 0))
            .scalar_subquery()
            .label("total_credits"),
            select(func.count(HealthRoutine.id))
            .where(HealthRoutine.status == RoutineStatus.ACTIVE.value)
            .scalar_subquery()
            .label("active_routines"),
            select(func.count(ConversationState.id))
            .where(ConversationState.needs_human.is_(True))
            .scalar_subquery()
            .label("needs_human"),
        )

        async def query(session: AsyncSession) -> DashboardStats:
            row = (await session.execute(stmt)).one()
            return DashboardStats(
                total_users=_int(row.total_users),
                active_users=_int(row.active_users),
                total_credits=_int(row.total_credits),
                active_routines=_int(row.active_routines),
                needs_human=_int(row.needs_human),
            )

        return await self._run("dashboard_stats", query, DashboardStats())

    def _followups_stmt(self) -> Any:
        return (
            select(
                *Followup.__table__.c,
                _display_name().label("user_name"),
                User.phone.label("user_phone"),
            )
            .select_from(Followup)
            .outerjoin(User, Followup.user_id == User.id)
            .order_by(Followup.scheduled_for.asc())
        )

    async def fetch_pending_followups(self, limit: int = 20) -> list[FollowupRecord]:
        """Pending or scheduled follow-ups, soonest first."""
        stmt = (
            self._followups_stmt()
            .where(Followup.status.in_(("pending", "scheduled")))
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[FollowupRecord]:
            result = await session.execute(stmt)
            return [FollowupRecord.model_validate(row) for row in result.all()]

        return await self._run("pending_followups", query, [])

    async def fetch_overdue_followups(self, limit: int = 20) -> list[FollowupRecord]:
        """Pending follow-ups whose scheduled time has passed."""
        stmt = (
            self._followups_stmt()
            .where(Followup.status == "pending", Followup.scheduled_for < utc_now())
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[FollowupRecord]:
            result = await session.execute(stmt)
            return [
                FollowupRecord.model_validate(row).model_copy(update={"is_overdue": True})
                for row in result.all()
            ]

        return await self._run("overdue_followups", query, [])

    async def fetch_engagement_opportunities(self, limit: int = 10) -> list[EngagementOpportunity]:
        """Users needing outreach: distress first, then longest inactive."""
        message_count = (
            select(func.count(Message.id)).where(Message.user_id == User.id).scalar_subquery()
        )
        stmt = (
            select(
                User.id,
                User.preferred_name,
                User.name,
                User.phone,
                User.created_at,
                ConversationState.last_message_at,
                ConversationState.emotional_state,
                message_count.label("message_count"),
            )
            .select_from(User)
            .outerjoin(ConversationState, ConversationState.user_id == User.id)
            .where(User.deleted_at.is_(None))
        )

        async def query(session: AsyncSession) -> list[EngagementOpportunity]:
            now = utc_now()
            result = await session.execute(stmt)
            candidates = [
                EngagementCandidate(
                    id=row.id,
                    preferred_name=row.preferred_name,
                    name=row.name,
                    phone=row.phone,
                    last_message_at=row.last_message_at,
                    emotional_state=row.emotional_state,
                    days_inactive=days_inactive(row.last_message_at or row.created_at, now),
                    message_count=_int(row.message_count),
                )
                for row in result.all()
            ]
            return rank_engagement_opportunities(candidates, limit)

        return await self._run("engagement_opportunities", query, [])

    async def fetch_recent_activity(self, limit: int = 15) -> list[ActivityItem]:
        """Messages and ledger changes from the last 24h, newest first."""
        since = utc_now() - timedelta(hours=24)
        preview = (
            Message.role
            + literal(": ")
            + func.left(Message.content, ACTIVITY_PREVIEW_CHARS)
            + case(
                (func.length(Message.content) > ACTIVITY_PREVIEW_CHARS, literal("...")),
                else_=literal(""),
            )
        )
        messages = select(
            cast(Message.id, Text).label("id"),
            literal("message").label("type"),
            Message.user_id.label("user_id"),
            preview.label("description"),
            Message.created_at.label("created_at"),
        ).where(Message.created_at > since)
        ledger = select(
            cast(CreditLedgerEntry.id, Text).label("id"),
            literal("credit").label("type"),
            CreditLedgerEntry.user_id.label("user_id"),
            (
                CreditLedgerEntry.change_type
                + literal(": ")
                + cast(CreditLedgerEntry.change_amount, Text)
                + literal(" credits")
            ).label("description"),
            CreditLedgerEntry.created_at.label("created_at"),
        ).where(CreditLedgerEntry.created_at > since)

        activity = union_all(messages, ledger).subquery("activity")
        stmt = (
            select(
                activity.c.id,
                activity.c.type,
                activity.c.user_id,
                _display_name().label("user_name"),
                activity.c.description,
                activity.c.created_at,
            )
            .select_from(activity)
            .outerjoin(User, activity.c.user_id == User.id)
            .order_by(activity.c.created_at.desc())
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[ActivityItem]:
            result = await session.execute(stmt)
            return [ActivityItem.model_validate(row) for row in result.all()]

        return await self._run("recent_activity", query, [])

    # ========================================================================
    # System health
    # ========================================================================

    async def fetch_system_health(self) -> SystemHealth:
        """Pipeline health counters for the last 24h, in one statement."""
        now = utc_now()
        day_ago = now - timedelta(hours=24)
        hour_ago = now - timedelta(hours=1)

        breaker_state = (
            select(CircuitBreaker.state)
            .where(CircuitBreaker.service_name == CIRCUIT_BREAKER_SERVICE)
            .limit(1)
            .scalar_subquery()
        )
        stmt = select(
            select(func.count(Message.id))
            .where(Message.created_at > day_ago)
            .scalar_subquery()
            .label("total_messages_24h"),
            select(func.count(AIUsage.id))
            .where(AIUsage.created_at > day_ago)
            .scalar_subquery()
            .label("total_ai_calls_24h"),
            select(func.coalesce(func.avg(AIUsage.latency_ms), 0))
            .where(AIUsage.created_at > day_ago)
            .scalar_subquery()
            .label("avg_response_time_ms"),
            select(func.count(ExecutionLog.id))
            .where(ExecutionLog.status == "error", ExecutionLog.created_at > day_ago)
            .scalar_subquery()
            .label("error_count_24h"),
            func.coalesce(breaker_state, "closed").label("circuit_breaker_status"),
            select(func.coalesce(func.sum(func.abs(CreditLedgerEntry.change_amount)), 0))
            .where(
                CreditLedgerEntry.change_type == LedgerChangeType.WORK_ACTION.value,
                CreditLedgerEntry.created_at > day_ago,
            )
            .scalar_subquery()
            .label("credits_used_24h"),
            select(func.count(ConversationState.id))
            .where(ConversationState.last_message_at > hour_ago)
            .scalar_subquery()
            .label("active_conversations"),
        )

        async def query(session: AsyncSession) -> SystemHealth:
            row = (await session.execute(stmt)).one()
            return SystemHealth(
                total_messages_24h=_int(row.total_messages_24h),
                total_ai_calls_24h=_int(row.total_ai_calls_24h),
                avg_response_time_ms=round(_float(row.avg_response_time_ms)),
                error_count_24h=_int(row.error_count_24h),
                circuit_breaker_status=row.circuit_breaker_status or "closed",
                credits_used_24h=_int(row.credits_used_24h),
                active_conversations=_int(row.active_conversations),
            )

        return await self._run("system_health", query, SystemHealth())

    async def fetch_circuit_breakers(self) -> list[CircuitBreakerRecord]:
        stmt = select(CircuitBreaker).order_by(CircuitBreaker.service_name)

        async def query(session: AsyncSession) -> list[CircuitBreakerRecord]:
            result = await session.execute(stmt)
            return [CircuitBreakerRecord.model_validate(b) for b in result.scalars().all()]

        return await self._run("circuit_breakers", query, [])

    # ========================================================================
    # Care network
    # ========================================================================

    async def fetch_upcoming_appointments(self, limit: int = 10) -> list[AppointmentRecord]:
        stmt = (
            select(*Appointment.__table__.c, Provider.name.label("provider_name"))
            .select_from(Appointment)
            .outerjoin(Provider, Appointment.provider_id == cast(Provider.id, Text))
            .where(Appointment.scheduled_at >= utc_now(), Appointment.status != "cancelled")
            .order_by(Appointment.scheduled_at.asc())
            .limit(limit)
        )

        async def query(session: AsyncSession) -> list[AppointmentRecord]:
            result = await session.execute(stmt)
            return [AppointmentRecord.model_validate(row) for row in result.all()]

        return await self._run("upcoming_appointments", query, [])

    async def fetch_providers(self) -> list[ProviderRecord]:
        """Active providers with their appointment counts."""
        appointment_count = (
            select(func.count(Appointment.id))
            .where(Appointment.provider_id == cast(Provider.id, Text))
            .scalar_subquery()
        )
        stmt = (
            select(*Provider.__table__.c, appointment_count.label("appointment_count"))
            .where(Provider.status == "active")
            .order_by(Provider.name)
        )

        async def query(session: AsyncSession) -> list[ProviderRecord]:
            result = await session.execute(stmt)
            return [ProviderRecord.model_validate(row) for row in result.all()]

        return await self._run("providers", query, [])

    # ========================================================================
    # Time series
    # ========================================================================

    async def fetch_message_volume_by_day(self, days: int = 14) -> list[MessageVolumePoint]:
        """User, assistant and total messages per day."""
        today = utc_now().date()
        day = _utc_day(Message.created_at)
        stmt = (
            select(
                day.label("day"),
                func.count().filter(Message.role == "user").label("user_messages"),
                func.count().filter(Message.role == "assistant").label("assistant_messages"),
                func.count().label("total"),
            )
            .where(Message.created_at >= _window_start(days, today))
            .group_by(day)
        )

        async def query(session: AsyncSession) -> list[Any]:
            return list((await session.execute(stmt)).all())

        rows = _by_day(await self._run("message_volume_by_day", query, []))

        series = []
        for current in series_dates(days, today):
            row = rows.get(current)
            series.append(
                MessageVolumePoint(
                    date=current.isoformat(),
                    label=day_label(current),
                    user_messages=_int(row.user_messages) if row else 0,
                    assistant_messages=_int(row.assistant_messages) if row else 0,
                    total=_int(row.total) if row else 0,
                )
            )
        return series

    async def fetch_user_growth(self, days: int = 30) -> list[UserGrowthPoint]:
        """New users per day and the running total, seeded with earlier signups."""
        today = utc_now().date()
        start = _window_start(days, today)
        day = _utc_day(User.created_at)
        base_stmt = select(func.count(User.id)).where(User.created_at < start)
        daily_stmt = (
            select(day.label("day"), func.count(User.id).label("new_users"))
            .where(User.created_at >= start)
            .group_by(day)
        )

        async def query(session: AsyncSession) -> tuple[int, list[Any]]:
            base = (await session.execute(base_stmt)).scalar_one()
            daily = (await session.execute(daily_stmt)).all()
            return _int(base), list(daily)

        base, daily = await self._run("user_growth", query, (0, []))
        rows = _by_day(daily)

        series = []
        cumulative = base
        for current in series_dates(days, today):
            row = rows.get(current)
            new_users = _int(row.new_users) if row else 0
            cumulative += new_users
            series.append(
                UserGrowthPoint(
                    date=current.isoformat(),
                    label=day_label(current),
                    new_users=new_users,
                    cumulative=cumulative,
                )
            )
        return series

    async def fetch_credits_usage(self, days: int = 14) -> list[CreditsUsagePoint]:
        """Credits spent (negative changes) and granted per day."""
        today = utc_now().date()
        day = _utc_day(CreditLedgerEntry.created_at)
        amount = CreditLedgerEntry.change_amount
        stmt = (
            select(
                day.label("day"),
                func.sum(case((amount < 0, -amount), else_=0)).label("credits_used"),
                func.sum(case((amount > 0, amount), else_=0)).label("credits_added"),
            )
            .where(CreditLedgerEntry.created_at >= _window_start(days, today))
            .group_by(day)
        )

        async def query(session: AsyncSession) -> list[Any]:
            return list((await session.execute(stmt)).all())

        rows = _by_day(await self._run("credits_usage", query, []))

        series = []
        for current in series_dates(days, today):
            row = rows.get(current)
            series.append(
                CreditsUsagePoint(
                    date=current.isoformat(),
                    label=day_label(current),
                    credits_used=_int(row.credits_used) if row else 0,
                    credits_added=_int(row.credits_added) if row else 0,
                )
            )
        return series

    async def fetch_daily_active_users(self, days: int = 14) -> list[DailyActiveUsersPoint]:
        """Distinct users who sent at least one message each day."""
        today = utc_now().date()
        day = _utc_day(Message.created_at)
        stmt = (
            select(day.label("day"), func.count(func.distinct(Message.user_id)).label("active_users"))
            .where(Message.role == "user", Message.created_at >= _window_start(days, today))
            .group_by(day)
        )

        async def query(session: AsyncSession) -> list[Any]:
            return list((await session.execute(stmt)).all())

        rows = _by_day(await self._run("daily_active_users", query, []))

        return [
            DailyActiveUsersPoint(
                date=current.isoformat(),
                label=day_label(current),
                active_users=_int(rows[current].active_users) if current in rows else 0,
            )
            for current in series_dates(days, today)
        ]

    async def fetch_response_time_trends(self, days: int = 7) -> list[ResponseTimePoint]:
        """Average and peak AI latency per day."""
        today = utc_now().date()
        day = _utc_day(AIUsage.created_at)
        stmt = (
            select(
                day.label("day"),
                func.avg(AIUsage.latency_ms).label("avg_latency_ms"),
                func.max(AIUsage.latency_ms).label("max_latency_ms"),
                func.count(AIUsage.id).label("request_count"),
            )
            .where(AIUsage.created_at >= _window_start(days, today))
            .group_by(day)
        )

        async def query(session: AsyncSession) -> list[Any]:
            return list((await session.execute(stmt)).all())

        rows = _by_day(await self._run("response_time_trends", query, []))

        series = []
        for current in series_dates(days, today):
            row = rows.get(current)
            series.append(
                ResponseTimePoint(
                    date=current.isoformat(),
                    label=day_label(current),
                    avg_latency_ms=round(_float(row.avg_latency_ms)) if row else 0,
                    max_latency_ms=_int(row.max_latency_ms) if row else 0,
                    request_count=_int(row.request_count) if row else 0,
                )
            )
        return series

    # ========================================================================
    # Distributions and engagement
    # ========================================================================

    async def fetch_emotional_state_distribution(self) -> list[DistributionSlice]:
        state = func.coalesce(ConversationState.emotional_state, "unknown")
        stmt = select(state.label("name"), func.count().label("count")).group_by(state)

        async def query(session: AsyncSession) -> list[DistributionSlice]:
            result = await session.execute(stmt)
            return distribution([(row.name, _int(row.count)) for row in result.all()])

        return await self._run("emotional_state_distribution", query, [])

    async def fetch_topic_distribution(self, limit: int = 10) -> list[DistributionSlice]:
        """Most common current topics; shares are of all conversations."""
        topic = func.coalesce(ConversationState.current_topic, "general")
        stmt = select(topic.label("name"), func.count().label("count")).group_by(topic)

        async def query(session: AsyncSession) -> list[DistributionSlice]:
            result = await session.execute(stmt)
            return distribution([(row.name, _int(row.count)) for row in result.all()])[:limit]

        return await self._run("topic_distribution", query, [])

    async def fetch_engagement_metrics(self) -> EngagementMetrics:
        now = utc_now()
        per_user = (
            select(func.count(Message.id).label("msg_count"))
            .group_by(Message.user_id)
            .subquery("per_user")
        )
        stmt = select(
            select(func.avg(per_user.c.msg_count)).scalar_subquery().label("avg_messages"),
            select(func.count(func.distinct(Message.user_id)))
            .where(Message.created_at > now - timedelta(days=7))
            .scalar_subquery()
            .label("returning_users"),
            select(func.count(ConversationState.id))
            .where(ConversationState.last_message_at > now - timedelta(hours=24))
            .scalar_subquery()
            .label("active_users"),
            select(func.count(User.id)).scalar_subquery().label("total_users"),
        )

        async def query(session: AsyncSession) -> EngagementMetrics:
            row = (await session.execute(stmt)).one()
            total = _int(row.total_users)
            if total == 0:
                return EngagementMetrics(avg_messages_per_user=round(_float(row.avg_messages), 1))
            return EngagementMetrics(
                avg_messages_per_user=round(_float(row.avg_messages), 1),
                return_rate=round(_int(row.returning_users) / total * 100, 1),
                active_user_rate=round(_int(row.active_users) / total * 100, 1),
            )

        return await self._run("engagement_metrics", query, EngagementMetrics())

    # ========================================================================
    # Costs
    # ========================================================================

    async def fetch_ai_usage(self, days: int = 30) -> AIUsageSummary:
        """Rollup of both AI usage sources over the trailing window."""
        since = utc_now() - timedelta(days=days)
        text_stmt = (
            select(
                AIUsage.model,
                func.count(AIUsage.id).label("calls"),
                func.coalesce(func.sum(AIUsage.cost_usd), 0).label("cost_usd"),
                func.coalesce(func.sum(AIUsage.input_tokens), 0).label("input_tokens"),
                func.coalesce(func.sum(AIUsage.output_tokens), 0).label("output_tokens"),
            )
            .where(AIUsage.created_at >= since)
            .group_by(AIUsage.model)
        )
        transcription_stmt = (
            select(
                TranscriptionUsage.model,
                func.count(TranscriptionUsage.id).label("calls"),
                func.coalesce(func.sum(TranscriptionUsage.cost_usd), 0).label("cost_usd"),
                func.coalesce(func.sum(TranscriptionUsage.audio_seconds), 0).label(
                    "audio_seconds"
                ),
            )
            .where(TranscriptionUsage.created_at >= since)
            .group_by(TranscriptionUsage.model)
        )

        async def text_query(session: AsyncSession) -> list[ModelUsageRow]:
            result = await session.execute(text_stmt)
            return [
                ModelUsageRow(
                    model=row.model,
                    calls=_int(row.calls),
                    cost_usd=row.cost_usd,
                    input_tokens=_int(row.input_tokens),
                    output_tokens=_int(row.output_tokens),
                )
                for row in result.all()
            ]

        async def transcription_query(session: AsyncSession) -> list[ModelUsageRow]:
            result = await session.execute(transcription_stmt)
            return [
                ModelUsageRow(
                    model=row.model,
                    calls=_int(row.calls),
                    cost_usd=row.cost_usd,
                    audio_seconds=row.audio_seconds,
                )
                for row in result.all()
            ]

        text_rows = await self._run("ai_usage_text", text_query, [])
        transcription_rows = await self._run("ai_usage_transcription", transcription_query, [])
        return rollup_ai_usage(days, text_rows, transcription_rows)

    async def fetch_monthly_costs(self, months: int = 6) -> list[MonthlyCost]:
        """AI plus fixed infrastructure cost per calendar month."""
        if months < 1:
            return []
        today = utc_now().date()
        first = month_starts(months, today)[0]
        since = datetime(first.year, first.month, 1, tzinfo=UTC)

        def monthly(model: Any) -> Any:
            month = _utc_month(model.created_at)
            return (
                select(month.label("month"), func.coalesce(func.sum(model.cost_usd), 0).label("cost"))
                .where(model.created_at >= since)
                .group_by(month)
            )

        async def query(session: AsyncSession) -> dict[date, float]:
            costs: dict[date, float] = {}
            for model in (AIUsage, TranscriptionUsage):
                for row in (await session.execute(monthly(model))).all():
                    costs[row.month] = costs.get(row.month, 0.0) + _float(row.cost)
            return costs

        ai_costs = await self._run("monthly_costs", query, {})
        return build_monthly_costs(months, today, ai_costs)

    # ========================================================================
    # Credits and routines pages
    # ========================================================================

    async def fetch_billing_accounts(self) -> list[BillingAccountRecord]:
        """Every billing account, lowest balance first."""
        stmt = (
            select(
                BillingAccount.id,
                BillingAccount.user_id,
                _display_name().label("user_name"),
                User.phone,
                BillingAccount.subscription_status,
                BillingAccount.subscription_plan,
                BillingAccount.credits_balance,
                BillingAccount.credits_monthly_allowance,
                BillingAccount.credits_used_this_period,
                BillingAccount.credits_reset_at,
            )
            .select_from(BillingAccount)
            .outerjoin(User, BillingAccount.user_id == User.id)
            .where(User.deleted_at.is_(None))
            .order_by(BillingAccount.credits_balance.asc())
        )

        async def query(session: AsyncSession) -> list[BillingAccountRecord]:
            result = await session.execute(stmt)
            accounts = []
            for row in result.all():
                account = BillingAccountRecord.model_validate(row)
                account.credit_level = credit_level(account.credits_balance)
                accounts.append(account)
            return accounts

        return await self._run("billing_accounts", query, [])

    async def fetch_credit_stats(self) -> CreditStats:
        """Totals over the accounts the credits page lists."""
        balance = BillingAccount.credits_balance
        stmt = (
            select(
                func.count(BillingAccount.id).label("total_accounts"),
                func.coalesce(func.sum(balance), 0).label("total_balance"),
                func.count(BillingAccount.id)
                .filter(balance < settings.credits_low_threshold)
                .label("low_balance_count"),
                func.count(BillingAccount.id)
                .filter(balance < settings.credits_critical_threshold)
                .label("critical_count"),
            )
            .select_from(BillingAccount)
            .outerjoin(User, BillingAccount.user_id == User.id)
            .where(User.deleted_at.is_(None))
        )

        async def query(session: AsyncSession) -> CreditStats:
            row = (await session.execute(stmt)).one()
            return CreditStats(
                total_accounts=_int(row.total_accounts),
                total_balance=_int(row.total_balance),
                low_balance_count=_int(row.low_balance_count),
                critical_count=_int(row.critical_count),
            )

        return await self._run("credit_stats", query, CreditStats())

    async def fetch_routines(self) -> list[RoutineWithUser]:
        """Every routine with its owner's display name, newest first."""
        stmt = (
            select(
                *HealthRoutine.__table__.c,
                _display_name().label("user_name"),
                User.phone.label("user_phone"),
            )
            .select_from(HealthRoutine)
            .outerjoin(User, HealthRoutine.user_id == User.id)
            .order_by(HealthRoutine.created_at.desc())
        )

        async def query(session: AsyncSession) -> list[RoutineWithUser]:
            result = await session.execute(stmt)
            return [RoutineWithUser.model_validate(row) for row in result.all()]

        return await self._run("routines", query, [])
