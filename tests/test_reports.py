"""
Tests for ReportService.

Reports FAIL OPEN: an unconfigured database or a failing query yields the
report's empty value. Time series are zero-filled to their full length.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from tests.factories import FIXED_NOW, FakeDatabase, create_routine, make_result, row
from vivebien_admin.models.api import EmotionalState
from vivebien_admin.models.views import CreditLevel, CreditStats, DashboardStats, SystemHealth
from vivebien_admin.services.costs import fixed_monthly_total
from vivebien_admin.services.reports import ReportService


@pytest.fixture(autouse=True)
def frozen_clock():
    with patch("vivebien_admin.services.reports.utc_now", return_value=FIXED_NOW):
        yield


def failing(db_session: AsyncMock) -> None:
    db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))


def compiled(db_session: AsyncMock, call: int = -1):
    """The statement a report executed, compiled for PostgreSQL."""
    stmt = db_session.execute.call_args_list[call].args[0]
    return stmt.compile(dialect=postgresql.dialect())


class TestFailOpen:
    """Storage problems never escape a report."""

    @pytest.fixture
    def closed_reports(self, closed_database: FakeDatabase) -> ReportService:
        return ReportService(closed_database)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_unconfigured_returns_empty(self, closed_reports):
        assert await closed_reports.fetch_users() == []
        assert await closed_reports.fetch_user_by_id("user-1") is None
        assert await closed_reports.fetch_dashboard_stats() == DashboardStats()
        assert await closed_reports.fetch_system_health() == SystemHealth()

    @pytest.mark.asyncio
    async def test_unconfigured_series_keeps_length(self, closed_reports):
        series = await closed_reports.fetch_message_volume_by_day(14)
        assert len(series) == 14
        assert all(point.total == 0 for point in series)

    @pytest.mark.asyncio
    async def test_query_error_returns_empty(self, report_service, db_session):
        failing(db_session)

        assert await report_service.fetch_users() == []
        assert await report_service.fetch_routines() == []
        assert await report_service.fetch_credit_stats() == CreditStats()
        assert await report_service.fetch_emotional_state_distribution() == []

    @pytest.mark.asyncio
    async def test_query_error_series_zero_filled(self, report_service, db_session):
        failing(db_session)

        growth = await report_service.fetch_user_growth(30)

        assert len(growth) == 30
        assert growth[-1].cumulative == 0

    @pytest.mark.asyncio
    async def test_socket_error_is_fail_open(self, report_service, db_session):
        db_session.execute.side_effect = ConnectionRefusedError("refused")
        assert await report_service.fetch_providers() == []

    @pytest.mark.asyncio
    async def test_failure_is_counted(self, report_service, db_session):
        failing(db_session)
        with patch("vivebien_admin.services.reports.metrics") as metrics:
            await report_service.fetch_routines()

        metrics.record_report_failure.assert_called_once_with("routines", "OperationalError")
        assert metrics.record_report_query.call_args.args[:2] == ("routines", False)

    @pytest.mark.asyncio
    async def test_malformed_row_is_fail_open(self, report_service, db_session):
        routine = create_routine()
        routine.schedule = ["08:00", "20:00"]
        db_session.execute.return_value = make_result(scalars=[routine])

        assert await report_service.fetch_user_routines("user-1") == []

    @pytest.mark.asyncio
    async def test_no_months_is_empty(self, report_service, db_session, closed_reports):
        assert await report_service.fetch_monthly_costs(0) == []
        assert await closed_reports.fetch_monthly_costs(0) == []
        assert await closed_reports.fetch_monthly_costs(-2) == []
        db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_programming_errors_propagate(self, report_service, db_session):
        db_session.execute.side_effect = KeyError("bug")
        with pytest.raises(KeyError):
            await report_service.fetch_users()


class TestTimeSeries:
    """Time series: one point per day ending today, gaps zero-filled."""

    @pytest.mark.asyncio
    async def test_message_volume(self, report_service, db_session):
        today = FIXED_NOW.date()
        db_session.execute.return_value = make_result(
            rows=[
                row(day=today, user_messages=3, assistant_messages=2, total=5),
                row(day=today - timedelta(days=2), user_messages=1, assistant_messages=1, total=2),
            ]
        )

        series = await report_service.fetch_message_volume_by_day(14)

        assert len(series) == 14
        assert series[-1].date == today.isoformat()
        assert series[-1].label == "Mar 15"
        assert series[-1].total == 5
        assert series[-2].total == 0
        assert series[-3].user_messages == 1
        assert series[0].date == (today - timedelta(days=13)).isoformat()

    @pytest.mark.asyncio
    async def test_user_growth_cumulative(self, report_service, db_session):
        today = FIXED_NOW.date()
        db_session.execute.side_effect = [
            make_result(scalar=10),
            make_result(
                rows=[
                    row(day=today - timedelta(days=1), new_users=2),
                    row(day=today, new_users=3),
                ]
            ),
        ]

        series = await report_service.fetch_user_growth(30)

        assert len(series) == 30
        assert series[0].cumulative == 10
        assert series[-2].new_users == 2
        assert series[-2].cumulative == 12
        assert series[-1].cumulative == 15

    @pytest.mark.asyncio
    async def test_credits_usage(self, report_service, db_session):
        today = FIXED_NOW.date()
        db_session.execute.return_value = make_result(
            rows=[row(day=today, credits_used=Decimal("7"), credits_added=Decimal("50"))]
        )

        series = await report_service.fetch_credits_usage(14)

        assert series[-1].credits_used == 7
        assert series[-1].credits_added == 50
        assert sum(p.credits_used for p in series) == 7

    @pytest.mark.asyncio
    async def test_response_times_rounded(self, report_service, db_session):
        today = FIXED_NOW.date()
        db_session.execute.return_value = make_result(
            rows=[
                row(
                    day=today,
                    avg_latency_ms=Decimal("1234.6"),
                    max_latency_ms=4000,
                    request_count=12,
                )
            ]
        )

        series = await report_service.fetch_response_time_trends(7)

        assert len(series) == 7
        assert series[-1].avg_latency_ms == 1235
        assert series[-1].request_count == 12

    @pytest.mark.asyncio
    async def test_daily_active_users(self, report_service, db_session):
        today = FIXED_NOW.date()
        db_session.execute.return_value = make_result(rows=[row(day=today, active_users=4)])

        series = await report_service.fetch_daily_active_users(14)

        assert [p.active_users for p in series[-2:]] == [0, 4]


class TestDistributions:
    """Tests for distribution reports."""

    @pytest.mark.asyncio
    async def test_emotional_states(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            rows=[row(name="calm", count=1), row(name="anxious", count=2), row(name="unknown", count=1)]
        )

        slices = await report_service.fetch_emotional_state_distribution()

        assert slices[0].name == "anxious"
        assert slices[0].percentage == 50.0
        assert {s.name for s in slices} == {"calm", "anxious", "unknown"}

    @pytest.mark.asyncio
    async def test_topics_share_of_all_conversations(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            rows=[row(name=f"topic-{i}", count=i + 1) for i in range(4)]
        )

        slices = await report_service.fetch_topic_distribution(limit=2)

        assert [s.name for s in slices] == ["topic-3", "topic-2"]
        assert slices[0].percentage == 40.0

    @pytest.mark.asyncio
    async def test_engagement_rates(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            one=row(avg_messages=Decimal("12.345"), returning_users=3, active_users=1, total_users=8)
        )

        metrics = await report_service.fetch_engagement_metrics()

        assert metrics.avg_messages_per_user == 12.3
        assert metrics.return_rate == 37.5
        assert metrics.active_user_rate == 12.5

    @pytest.mark.asyncio
    async def test_engagement_without_users(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            one=row(avg_messages=None, returning_users=0, active_users=0, total_users=0)
        )

        metrics = await report_service.fetch_engagement_metrics()

        assert metrics.return_rate == 0.0
        assert metrics.active_user_rate == 0.0


class TestSystemHealth:
    @pytest.mark.asyncio
    async def test_counters(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            one=row(
                total_messages_24h=40,
                total_ai_calls_24h=20,
                avg_response_time_ms=Decimal("1500.4"),
                error_count_24h=1,
                circuit_breaker_status=None,
                credits_used_24h=9,
                active_conversations=2,
            )
        )

        health = await report_service.fetch_system_health()

        assert health.avg_response_time_ms == 1500
        assert health.circuit_breaker_status == "closed"
        assert health.credits_used_24h == 9


class TestCosts:
    """Tests for AI usage and monthly cost reports."""

    @pytest.mark.asyncio
    async def test_ai_usage_sources_fail_independently(self, report_service, db_session):
        db_session.execute.side_effect = [
            make_result(
                rows=[
                    row(
                        model="claude-sonnet",
                        calls=10,
                        cost_usd=Decimal("0.5"),
                        input_tokens=1000,
                        output_tokens=500,
                    )
                ]
            ),
            OperationalError("SELECT 1", {}, Exception("missing table")),
        ]

        summary = await report_service.fetch_ai_usage(30)

        assert summary.days == 30
        assert summary.text_generation.calls == 10
        assert summary.transcription.calls == 0
        assert summary.total.cost_usd == 0.5
        assert [m.model for m in summary.by_model] == ["claude-sonnet"]

    @pytest.mark.asyncio
    async def test_monthly_costs_merge_sources(self, report_service, db_session):
        march = FIXED_NOW.date().replace(day=1)
        db_session.execute.side_effect = [
            make_result(rows=[row(month=march, cost=Decimal("12.5"))]),
            make_result(rows=[row(month=march, cost=Decimal("2.5"))]),
        ]

        months = await report_service.fetch_monthly_costs(6)

        assert len(months) == 6
        assert months[-1].month == "2026-03"
        assert months[-1].ai_cost_usd == 15.0
        assert months[-1].total_cost_usd == 15.0 + fixed_monthly_total()
        assert months[0].change_percent is None


class TestCreditsPage:
    @pytest.mark.asyncio
    async def test_accounts_carry_credit_level(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            rows=[
                row(
                    id="acct-1",
                    user_id="user-1",
                    user_name="Mari",
                    phone="+5215550001111",
                    subscription_status="active",
                    subscription_plan="premium_monthly",
                    credits_balance=2,
                    credits_monthly_allowance=50,
                    credits_used_this_period=48,
                    credits_reset_at=None,
                )
            ]
        )

        accounts = await report_service.fetch_billing_accounts()

        assert accounts[0].credit_level == CreditLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_credit_stats(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            one=row(total_accounts=3, total_balance=Decimal("64"), low_balance_count=2, critical_count=1)
        )

        stats = await report_service.fetch_credit_stats()

        assert stats == CreditStats(
            total_accounts=3, total_balance=64, low_balance_count=2, critical_count=1
        )


class TestPatientReports:
    @pytest.mark.asyncio
    async def test_user_not_found(self, report_service, db_session):
        db_session.execute.return_value = make_result(first=None)
        assert await report_service.fetch_user_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_each_report_uses_its_own_session(self, report_service, fake_database):
        await report_service.fetch_users()
        await report_service.fetch_routines()
        assert fake_database.sessions_opened == 2


class TestEngagementOpportunities:
    """Candidates are read from the roster and ranked in Python."""

    @pytest.mark.asyncio
    async def test_inactivity_falls_back_to_signup(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            rows=[
                row(
                    id="never-wrote",
                    preferred_name=None,
                    name="Ana",
                    phone="+5215550000001",
                    created_at=FIXED_NOW - timedelta(days=10),
                    last_message_at=None,
                    emotional_state=None,
                    message_count=12,
                ),
                row(
                    id="recent",
                    preferred_name="Beto",
                    name="Alberto",
                    phone="+5215550000002",
                    created_at=FIXED_NOW - timedelta(days=60),
                    last_message_at=FIXED_NOW - timedelta(days=1),
                    emotional_state=None,
                    message_count=20,
                ),
                row(
                    id="anxious",
                    preferred_name=None,
                    name="Carla",
                    phone="+5215550000003",
                    created_at=FIXED_NOW - timedelta(days=90),
                    last_message_at=FIXED_NOW - timedelta(days=2),
                    emotional_state=EmotionalState.ANXIOUS.value,
                    message_count=None,
                ),
            ]
        )

        opportunities = await report_service.fetch_engagement_opportunities()

        assert [o.id for o in opportunities] == ["anxious", "never-wrote"]
        assert opportunities[0].message_count == 0
        assert opportunities[0].days_inactive == 2
        assert opportunities[1].days_inactive == 10
        assert opportunities[1].reason == "Inactive for 10 days"
        assert opportunities[1].last_message_at is None

    @pytest.mark.asyncio
    async def test_limit_applied_after_ranking(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            rows=[
                row(
                    id=f"user-{n}",
                    preferred_name=None,
                    name=None,
                    phone="+5215550000000",
                    created_at=FIXED_NOW - timedelta(days=30),
                    last_message_at=FIXED_NOW - timedelta(days=n + 4),
                    emotional_state=None,
                    message_count=10,
                )
                for n in range(5)
            ]
        )

        opportunities = await report_service.fetch_engagement_opportunities(limit=2)

        assert [o.id for o in opportunities] == ["user-4", "user-3"]


class TestReportStatements:
    """Filters that only show up in the SQL a report sends."""

    @pytest.mark.asyncio
    async def test_roster_excludes_soft_deleted(self, report_service, db_session):
        await report_service.fetch_users()

        sql = str(compiled(db_session))
        assert "users.deleted_at IS NULL" in sql
        assert "ORDER BY users.created_at DESC" in sql

    @pytest.mark.asyncio
    async def test_engagement_candidates_exclude_soft_deleted(self, report_service, db_session):
        await report_service.fetch_engagement_opportunities()

        assert "users.deleted_at IS NULL" in str(compiled(db_session))

    @pytest.mark.asyncio
    async def test_overdue_followups_are_pending_and_past(self, report_service, db_session):
        await report_service.fetch_overdue_followups()

        statement = compiled(db_session)
        sql = str(statement)
        assert "followups.status = " in sql
        assert "followups.scheduled_for < " in sql
        assert "ORDER BY followups.scheduled_for ASC" in sql
        assert "pending" in statement.params.values()
        assert "scheduled" not in statement.params.values()
        assert FIXED_NOW in statement.params.values()

    @pytest.mark.asyncio
    async def test_pending_followups_include_scheduled(self, report_service, db_session):
        await report_service.fetch_pending_followups()

        statement = compiled(db_session)
        assert "followups.status IN" in str(statement)
        statuses = next(v for v in statement.params.values() if isinstance(v, (list, tuple)))
        assert set(statuses) == {"pending", "scheduled"}

    @pytest.mark.asyncio
    async def test_recent_activity_previews_messages(self, report_service, db_session):
        await report_service.fetch_recent_activity()

        statement = compiled(db_session)
        sql = str(statement)
        assert "left(messages.content, " in sql
        assert "length(messages.content) > " in sql
        assert "UNION ALL" in sql
        assert 50 in statement.params.values()
        assert "..." in statement.params.values()
        assert " credits" in statement.params.values()
        assert FIXED_NOW - timedelta(hours=24) in statement.params.values()

    @pytest.mark.asyncio
    async def test_credit_stats_match_listed_accounts(self, report_service, db_session):
        db_session.execute.return_value = make_result(
            one=row(total_accounts=0, total_balance=0, low_balance_count=0, critical_count=0)
        )

        await report_service.fetch_credit_stats()
        stats_sql = str(compiled(db_session))
        await report_service.fetch_billing_accounts()
        accounts_sql = str(compiled(db_session))

        for sql in (stats_sql, accounts_sql):
            assert "LEFT OUTER JOIN users ON billing_accounts.user_id = users.id" in sql
            assert "users.deleted_at IS NULL" in sql
