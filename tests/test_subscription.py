"""
Tests for SubscriptionService.

Covers each lifecycle action, the ledger rows they write, and the optional
strict state checks.
"""

from datetime import UTC, datetime, timedelta

import pytest

from tests.factories import FIXED_NOW, create_billing_account, make_result, row
from vivebien_admin.config import Settings
from vivebien_admin.db.models import BillingAccount, CreditLedgerEntry
from vivebien_admin.exceptions import (
    BillingAccountNotFoundError,
    InvalidSubscriptionActionError,
    SubscriptionConflictError,
)
from vivebien_admin.services.subscription import (
    SubscriptionService,
    add_one_month,
    parse_action,
)


def added(db_session, kind):
    return [c.args[0] for c in db_session.add.call_args_list if isinstance(c.args[0], kind)]


@pytest.fixture
def strict_config() -> Settings:
    return Settings(database_url="", subscription_strict_transitions=True, _env_file=None)


class TestHelpers:
    def test_add_one_month_clamps_day(self):
        assert add_one_month(datetime(2026, 1, 31, tzinfo=UTC)) == datetime(2026, 2, 28, tzinfo=UTC)

    def test_add_one_month_rolls_year(self):
        assert add_one_month(datetime(2025, 12, 15, tzinfo=UTC)) == datetime(2026, 1, 15, tzinfo=UTC)

    def test_parse_action(self):
        assert parse_action("extend").value == "extend"
        with pytest.raises(InvalidSubscriptionActionError):
            parse_action("upgrade")


class TestActivate:
    """Tests for the activate action."""

    @pytest.mark.asyncio
    async def test_creates_account_with_initial_credits(self, db_session):
        db_session.execute.return_value = make_result(scalar=None)

        message = await SubscriptionService(db_session).apply("user-1", "activate")

        assert message == "Subscription activated successfully! Monthly plan started."
        [account] = added(db_session, BillingAccount)
        assert account.subscription_status == "active"
        assert account.subscription_plan == "premium_monthly"
        assert account.credits_balance == 50
        assert account.credits_monthly_allowance == 50
        [entry] = added(db_session, CreditLedgerEntry)
        assert entry.change_type == "subscription"
        assert entry.change_amount == 50
        assert entry.balance_after == 50
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_account_gets_allowance(self, db_session):
        account = create_billing_account(balance=12, status="cancelled")
        db_session.execute.side_effect = [
            make_result(scalar=account),  # account lookup
            make_result(),  # balance increment
            make_result(scalar=62),  # balance read back
        ]

        await SubscriptionService(db_session).apply("user-1", "activate")

        assert account.subscription_status == "active"
        [entry] = added(db_session, CreditLedgerEntry)
        assert entry.change_amount == 50
        assert entry.balance_after == 62
        assert added(db_session, BillingAccount) == []


class TestLifecycle:
    """Tests for pause, resume, cancel and extend."""

    @pytest.mark.asyncio
    async def test_pause(self, db_session, active_account):
        db_session.execute.return_value = make_result(scalar=active_account)

        message = await SubscriptionService(db_session).apply("user-1", "pause")

        assert message == "Subscription paused. Billing is on hold."
        assert active_account.subscription_status == "paused"
        assert added(db_session, CreditLedgerEntry) == []

    @pytest.mark.asyncio
    async def test_resume_resets_billing_date(self, db_session):
        account = create_billing_account(status="paused", reset_at=FIXED_NOW - timedelta(days=40))
        db_session.execute.return_value = make_result(scalar=account)

        message = await SubscriptionService(db_session).apply("user-1", "resume")

        assert message == "Subscription resumed successfully!"
        assert account.subscription_status == "active"
        assert account.credits_reset_at > datetime.now(UTC) + timedelta(days=27)

    @pytest.mark.asyncio
    async def test_cancel_with_reason_writes_zero_row(self, db_session, active_account):
        db_session.execute.return_value = make_result(scalar=active_account)

        message = await SubscriptionService(db_session).apply(
            "user-1", "cancel", cancel_reason="Moving abroad"
        )

        assert message == "Subscription cancelled. Access continues until current period ends."
        assert active_account.subscription_status == "cancelled"
        assert active_account.subscription_plan is None
        [entry] = added(db_session, CreditLedgerEntry)
        assert entry.change_amount == 0
        assert entry.change_type == "admin"
        assert entry.description == "Subscription cancelled: Moving abroad"

    @pytest.mark.asyncio
    async def test_cancel_without_reason_writes_nothing(self, db_session, active_account):
        db_session.execute.return_value = make_result(scalar=active_account)

        await SubscriptionService(db_session).apply("user-1", "cancel")

        assert added(db_session, CreditLedgerEntry) == []

    @pytest.mark.asyncio
    async def test_extend(self, db_session):
        account = create_billing_account(reset_at=datetime(2026, 4, 1, tzinfo=UTC))
        db_session.execute.return_value = make_result(scalar=account)

        message = await SubscriptionService(db_session).apply("user-1", "extend", extension_days=10)

        assert message == "Billing date extended by 10 days to 2026-04-11."
        assert account.credits_reset_at == datetime(2026, 4, 11, tzinfo=UTC)
        [entry] = added(db_session, CreditLedgerEntry)
        assert entry.change_amount == 0

    @pytest.mark.asyncio
    async def test_extend_defaults_to_30_days(self, db_session):
        account = create_billing_account(reset_at=datetime(2026, 4, 1, tzinfo=UTC))
        db_session.execute.return_value = make_result(scalar=account)

        message = await SubscriptionService(db_session).apply("user-1", "extend")

        assert message == "Billing date extended by 30 days to 2026-05-01."


class TestErrors:
    """Tests for rejected actions."""

    @pytest.mark.asyncio
    async def test_unknown_action(self, db_session):
        with pytest.raises(InvalidSubscriptionActionError) as exc_info:
            await SubscriptionService(db_session).apply("user-1", "upgrade")

        assert exc_info.value.status_code == 400
        db_session.execute.assert_not_awaited()

    @pytest.mark.parametrize("action", ["pause", "resume", "cancel", "extend"])
    @pytest.mark.asyncio
    async def test_needs_account(self, db_session, action):
        db_session.execute.return_value = make_result(scalar=None)

        with pytest.raises(BillingAccountNotFoundError):
            await SubscriptionService(db_session).apply("user-1", action)

        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lenient_by_default(self, db_session):
        account = create_billing_account(status="cancelled")
        db_session.execute.return_value = make_result(scalar=account)

        await SubscriptionService(db_session).apply("user-1", "pause")

        assert account.subscription_status == "paused"

    @pytest.mark.asyncio
    async def test_strict_rejects_pause_of_cancelled(self, db_session, strict_config):
        account = create_billing_account(status="cancelled")
        db_session.execute.return_value = make_result(scalar=account)

        with pytest.raises(SubscriptionConflictError) as exc_info:
            await SubscriptionService(db_session, strict_config).apply("user-1", "pause")

        assert exc_info.value.status_code == 409
        assert exc_info.value.current_status == "cancelled"
        assert account.subscription_status == "cancelled"

    @pytest.mark.asyncio
    async def test_strict_rejects_double_activation(self, db_session, strict_config, active_account):
        db_session.execute.return_value = make_result(scalar=active_account)

        with pytest.raises(SubscriptionConflictError):
            await SubscriptionService(db_session, strict_config).apply("user-1", "activate")

        assert added(db_session, CreditLedgerEntry) == []


class TestSnapshot:
    """Tests for get_snapshot."""

    @pytest.mark.asyncio
    async def test_no_account(self, db_session):
        db_session.execute.return_value = make_result(first=None)

        snapshot = await SubscriptionService(db_session).get_snapshot("user-1")

        assert snapshot.subscription_status == "none"
        assert snapshot.credits_balance == 0

    @pytest.mark.asyncio
    async def test_joined_fields(self, db_session):
        db_session.execute.return_value = make_result(
            first=row(
                id="acct-1",
                user_id="user-1",
                subscription_status="active",
                subscription_plan="premium_monthly",
                credits_balance=42,
                credits_monthly_allowance=50,
                credits_used_this_period=8,
                credits_reset_at=None,
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
                phone="+5215550001111",
                preferred_name="Mari",
                name="Maria Lopez",
            )
        )

        snapshot = await SubscriptionService(db_session).get_snapshot("user-1")

        assert snapshot.credits_balance == 42
        assert snapshot.preferred_name == "Mari"
