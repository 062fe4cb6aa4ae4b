"""
Derived State - Pure functions over report records.

No storage access here; every function is deterministic given `now`.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar

from vivebien_admin.config import settings
from vivebien_admin.models.api import DISTRESS_STATES
from vivebien_admin.models.views import (
    ActivityStatus,
    CreditLevel,
    DistributionSlice,
    EngagementCandidate,
    EngagementOpportunity,
    FollowupRecord,
    HealthEvaluation,
    HealthStatus,
    SystemHealth,
    UserSummary,
)

# Engagement thresholds
INACTIVE_QUALIFY_DAYS = 3
INACTIVE_REASON_DAYS = 7
LOW_ENGAGEMENT_MESSAGES = 5

# System health thresholds
LATENCY_HEALTHY_MS = 2000
LATENCY_WARNING_MS = 5000
ERRORS_WARNING_MAX = 5

_EPOCH = datetime.min.replace(tzinfo=UTC)

UserT = TypeVar("UserT", bound=UserSummary)


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def is_distress(emotional_state: str | None) -> bool:
    """Whether an emotional state asks for priority attention."""
    return emotional_state in DISTRESS_STATES


def activity_status(last_message_at: datetime | None, now: datetime) -> ActivityStatus:
    """Label how recently a user last messaged."""
    if last_message_at is None:
        return ActivityStatus.INACTIVE

    hours = (now - _aware(last_message_at)).total_seconds() / 3600
    if hours < 1:
        return ActivityStatus.ACTIVE
    if hours < 24:
        return ActivityStatus.RECENT
    if hours < 72:
        return ActivityStatus.IDLE
    return ActivityStatus.INACTIVE


def is_overdue(followup: FollowupRecord, now: datetime) -> bool:
    """A follow-up is overdue while pending past its scheduled time."""
    return followup.status == "pending" and _aware(followup.scheduled_for) < now


def credit_level(
    balance: int | None,
    low: int | None = None,
    critical: int | None = None,
) -> CreditLevel:
    """Classify a credit balance against the warning thresholds."""
    low = settings.credits_low_threshold if low is None else low
    critical = settings.credits_critical_threshold if critical is None else critical
    value = balance or 0
    if value < critical:
        return CreditLevel.CRITICAL
    if value < low:
        return CreditLevel.LOW
    return CreditLevel.OK


def prioritize_patients(users: Iterable[UserT]) -> list[UserT]:
    """
    Order the roster for triage.

    Needs-human first, then distress states, then most recent message first.
    Users who never messaged sort last within their group. The sort is stable.
    """

    def key(user: UserSummary) -> tuple[int, int, float]:
        last = _aware(user.last_message_at) if user.last_message_at else _EPOCH
        return (
            0 if user.needs_human else 1,
            0 if is_distress(user.emotional_state) else 1,
            -(last - _EPOCH).total_seconds(),
        )

    return sorted(users, key=key)


def engagement_reason(candidate: EngagementCandidate) -> str | None:
    """Why a user needs outreach, or None when they don't qualify."""
    distress = is_distress(candidate.emotional_state)
    qualifies = (
        candidate.days_inactive > INACTIVE_QUALIFY_DAYS
        or candidate.message_count < LOW_ENGAGEMENT_MESSAGES
        or distress
    )
    if not qualifies:
        return None
    if candidate.days_inactive > INACTIVE_REASON_DAYS:
        return f"Inactive for {candidate.days_inactive} days"
    if candidate.message_count < LOW_ENGAGEMENT_MESSAGES:
        return f"Low engagement ({candidate.message_count} messages)"
    if distress:
        return "Needs emotional support"
    return "Check-in recommended"


def rank_engagement_opportunities(
    candidates: Iterable[EngagementCandidate], limit: int
) -> list[EngagementOpportunity]:
    """Keep qualifying users, distress first then longest inactive, capped at limit."""
    opportunities = []
    for candidate in candidates:
        reason = engagement_reason(candidate)
        if reason is None:
            continue
        opportunities.append(
            EngagementOpportunity(**candidate.model_dump(), reason=reason)
        )

    opportunities.sort(
        key=lambda o: (0 if is_distress(o.emotional_state) else 1, -o.days_inactive)
    )
    return opportunities[:limit]


def days_inactive(last_activity: datetime, now: datetime) -> int:
    """Whole days elapsed since last activity."""
    return max((now - _aware(last_activity)).days, 0)


def evaluate_system_health(health: SystemHealth) -> HealthEvaluation:
    """Map raw 24h counters to healthy / warning / error statuses."""
    messages = HealthStatus.HEALTHY if health.total_messages_24h > 0 else HealthStatus.WARNING
    ai_calls = HealthStatus.HEALTHY if health.total_ai_calls_24h > 0 else HealthStatus.WARNING

    if health.avg_response_time_ms < LATENCY_HEALTHY_MS:
        response_time = HealthStatus.HEALTHY
    elif health.avg_response_time_ms < LATENCY_WARNING_MS:
        response_time = HealthStatus.WARNING
    else:
        response_time = HealthStatus.ERROR

    if health.error_count_24h == 0:
        errors = HealthStatus.HEALTHY
    elif health.error_count_24h < ERRORS_WARNING_MAX:
        errors = HealthStatus.WARNING
    else:
        errors = HealthStatus.ERROR

    if health.circuit_breaker_status == "closed":
        breaker = HealthStatus.HEALTHY
    elif health.circuit_breaker_status == "half-open":
        breaker = HealthStatus.WARNING
    else:
        breaker = HealthStatus.ERROR

    # Overall tracks errors, the breaker and latency; traffic counters only inform.
    if HealthStatus.ERROR in (errors, breaker):
        overall = HealthStatus.ERROR
    elif HealthStatus.WARNING in (errors, breaker, response_time):
        overall = HealthStatus.WARNING
    else:
        overall = HealthStatus.HEALTHY

    return HealthEvaluation(
        messages=messages,
        ai_calls=ai_calls,
        response_time=response_time,
        errors=errors,
        circuit_breaker=breaker,
        overall=overall,
    )


# ============================================================================
# Series helpers
# ============================================================================


def series_dates(days: int, today: date) -> list[date]:
    """The `days` calendar days ending today, ascending."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def day_label(day: date) -> str:
    """Chart label for a day, e.g. 'Mar 04'."""
    return day.strftime("%b %d")


def month_label(day: date) -> str:
    return day.strftime("%b %Y")


def distribution(counts: Sequence[tuple[str, int]]) -> list[DistributionSlice]:
    """Attach 1-dp percentages to labelled counts, largest first."""
    total = sum(count for _, count in counts)
    if total == 0:
        return []
    ordered = sorted(counts, key=lambda item: item[1], reverse=True)
    return [
        DistributionSlice(name=name, count=count, percentage=round(count / total * 100, 1))
        for name, count in ordered
    ]


def percent_change(current: float, previous: float | None) -> float | None:
    """Relative change in percent; None when there is no non-zero baseline."""
    if not previous:
        return None
    return round((current - previous) / previous * 100, 1)
