"""
Page API routes - One view record per dashboard page.

Each page runs its reports concurrently and merges the results. Reports fail
open, so a page always renders; a broken query shows up as an empty section.
"""

import asyncio

from fastapi import APIRouter, Depends, Query
from structlog import get_logger

from vivebien_admin.api.dependencies import get_report_service
from vivebien_admin.exceptions import UserNotFoundError
from vivebien_admin.models.views import (
    AnalyticsView,
    CareView,
    CostsView,
    CreditsView,
    DashboardView,
    FollowupRecord,
    FollowupsView,
    PatientRow,
    PatientView,
    RoutinesView,
    SystemHealthView,
)
from vivebien_admin.services.costs import FIXED_MONTHLY_COSTS
from vivebien_admin.services.derived import (
    activity_status,
    credit_level,
    evaluate_system_health,
    is_overdue,
    prioritize_patients,
    utc_now,
)
from vivebien_admin.services.reports import ReportService

logger = get_logger(__name__)
router = APIRouter(tags=["pages"])

PATIENT_MESSAGE_LIMIT = 100


def _flag_overdue(followups: list[FollowupRecord]) -> list[FollowupRecord]:
    now = utc_now()
    return [f.model_copy(update={"is_overdue": is_overdue(f, now)}) for f in followups]


# ============================================================================
# Dashboard
# ============================================================================


@router.get("/dashboard", response_model=DashboardView)
async def get_dashboard(
    reports: ReportService = Depends(get_report_service),
) -> DashboardView:
    """Triage roster with headline stats, outreach, follow-ups, health and activity."""
    users, stats, opportunities, pending, health, activity = await asyncio.gather(
        reports.fetch_users(),
        reports.fetch_dashboard_stats(),
        reports.fetch_engagement_opportunities(),
        reports.fetch_pending_followups(),
        reports.fetch_system_health(),
        reports.fetch_recent_activity(),
    )

    now = utc_now()
    patients = [
        PatientRow(
            **user.model_dump(),
            activity_status=activity_status(user.last_message_at, now),
            credit_level=credit_level(user.credits_balance),
        )
        for user in prioritize_patients(users)
    ]

    logger.info("page_dashboard", patients=len(patients), needs_human=stats.needs_human)

    return DashboardView(
        patients=patients,
        stats=stats,
        engagement_opportunities=opportunities,
        pending_followups=_flag_overdue(pending),
        system_health=health,
        recent_activity=activity,
    )


@router.get("/patients/{user_id}", response_model=PatientView)
async def get_patient(
    user_id: str,
    reports: ReportService = Depends(get_report_service),
) -> PatientView:
    """Full patient record."""
    user, routines, messages, notes, credit_history, vault = await asyncio.gather(
        reports.fetch_user_by_id(user_id),
        reports.fetch_user_routines(user_id),
        reports.fetch_user_messages(user_id, limit=PATIENT_MESSAGE_LIMIT),
        reports.fetch_user_notes(user_id),
        reports.fetch_credit_history(user_id),
        reports.fetch_user_vault_summary(user_id),
    )

    if user is None:
        raise UserNotFoundError(user_id)

    return PatientView(
        user=user,
        activity_status=activity_status(user.last_message_at, utc_now()),
        credit_level=(
            credit_level(user.credits_balance) if user.credits_balance is not None else None
        ),
        routines=routines,
        messages=messages,
        notes=notes,
        credit_history=credit_history,
        vault=vault,
    )


# ============================================================================
# Analytics
# ============================================================================


@router.get("/analytics", response_model=AnalyticsView)
async def get_analytics(
    reports: ReportService = Depends(get_report_service),
) -> AnalyticsView:
    """Charts: volume, sentiment, topics, growth, credits and engagement."""
    (
        message_volume,
        emotional_states,
        topics,
        user_growth,
        credits_usage,
        daily_active_users,
        engagement,
        stats,
    ) = await asyncio.gather(
        reports.fetch_message_volume_by_day(14),
        reports.fetch_emotional_state_distribution(),
        reports.fetch_topic_distribution(),
        reports.fetch_user_growth(30),
        reports.fetch_credits_usage(14),
        reports.fetch_daily_active_users(14),
        reports.fetch_engagement_metrics(),
        reports.fetch_dashboard_stats(),
    )

    return AnalyticsView(
        message_volume=message_volume,
        emotional_states=emotional_states,
        topics=topics,
        user_growth=user_growth,
        credits_usage=credits_usage,
        daily_active_users=daily_active_users,
        engagement=engagement,
        stats=stats,
    )


# ============================================================================
# Follow-ups
# ============================================================================


@router.get("/followups", response_model=FollowupsView)
async def get_followups(
    reports: ReportService = Depends(get_report_service),
) -> FollowupsView:
    """Pending follow-ups split into overdue and upcoming."""
    pending, overdue = await asyncio.gather(
        reports.fetch_pending_followups(),
        reports.fetch_overdue_followups(),
    )

    pending = _flag_overdue(pending)
    return FollowupsView(
        pending=pending,
        overdue=overdue,
        upcoming=[f for f in pending if not f.is_overdue],
    )


# ============================================================================
# System health
# ============================================================================


@router.get("/system-health", response_model=SystemHealthView)
async def get_system_health(
    reports: ReportService = Depends(get_report_service),
) -> SystemHealthView:
    """Pipeline health with evaluated statuses, breakers and latency trend."""
    health, breakers, response_times = await asyncio.gather(
        reports.fetch_system_health(),
        reports.fetch_circuit_breakers(),
        reports.fetch_response_time_trends(7),
    )

    statuses = evaluate_system_health(health)
    logger.info("page_system_health", overall=statuses.overall.value)

    return SystemHealthView(
        health=health,
        statuses=statuses,
        circuit_breakers=breakers,
        response_times=response_times,
    )


# ============================================================================
# Costs
# ============================================================================


@router.get("/costs", response_model=CostsView)
async def get_costs(
    days: int = Query(30, ge=1, le=365, description="AI usage window in days"),
    months: int = Query(6, ge=1, le=24, description="Months in the cost tracker"),
    reports: ReportService = Depends(get_report_service),
) -> CostsView:
    """AI usage rollup and monthly cost tracker."""
    ai_usage, monthly_costs = await asyncio.gather(
        reports.fetch_ai_usage(days),
        reports.fetch_monthly_costs(months),
    )

    return CostsView(
        ai_usage=ai_usage,
        monthly_costs=monthly_costs,
        fixed_costs=list(FIXED_MONTHLY_COSTS),
    )


# ============================================================================
# Care network, credits, routines
# ============================================================================


@router.get("/care", response_model=CareView)
async def get_care(
    reports: ReportService = Depends(get_report_service),
) -> CareView:
    """Upcoming appointments and the active provider directory."""
    appointments, providers = await asyncio.gather(
        reports.fetch_upcoming_appointments(),
        reports.fetch_providers(),
    )
    return CareView(appointments=appointments, providers=providers)


@router.get("/credits", response_model=CreditsView)
async def get_credits(
    reports: ReportService = Depends(get_report_service),
) -> CreditsView:
    accounts, stats = await asyncio.gather(
        reports.fetch_billing_accounts(),
        reports.fetch_credit_stats(),
    )
    return CreditsView(accounts=accounts, stats=stats)


@router.get("/routines", response_model=RoutinesView)
async def get_routines(
    reports: ReportService = Depends(get_report_service),
) -> RoutinesView:
    return RoutinesView(routines=await reports.fetch_routines())
