"""
Subscription Service - Operator-driven subscription lifecycle.

Each action runs in one transaction. Actions that move credits write a
ledger row; status-only changes don't.
"""

import calendar
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vivebien_admin.config import Settings, settings
from vivebien_admin.db.models import BillingAccount, User, new_id
from vivebien_admin.exceptions import (
    BillingAccountNotFoundError,
    InvalidSubscriptionActionError,
    SubscriptionConflictError,
)
from vivebien_admin.models.api import (
    LedgerChangeType,
    SubscriptionAction,
    SubscriptionSnapshot,
    SubscriptionStatus,
)
from vivebien_admin.observability.logging import get_logger
from vivebien_admin.services.credits import get_account_for_user, record_ledger_entry

logger = get_logger(__name__)

# States each action may start from when strict transitions are enabled
ALLOWED_FROM: dict[SubscriptionAction, frozenset[str]] = {
    SubscriptionAction.ACTIVATE: frozenset(
        {SubscriptionStatus.NONE.value, SubscriptionStatus.CANCELLED.value}
    ),
    SubscriptionAction.PAUSE: frozenset({SubscriptionStatus.ACTIVE.value}),
    SubscriptionAction.RESUME: frozenset({SubscriptionStatus.PAUSED.value}),
    SubscriptionAction.CANCEL: frozenset(
        {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value}
    ),
    SubscriptionAction.EXTEND: frozenset(
        {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value}
    ),
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def add_one_month(moment: datetime) -> datetime:
    """Same day next month, clamped to the month's last day."""
    year = moment.year + (1 if moment.month == 12 else 0)
    month = 1 if moment.month == 12 else moment.month + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def parse_action(action: str) -> SubscriptionAction:
    """
    Raises:
        InvalidSubscriptionActionError: Not one of the five actions
    """
    try:
        return SubscriptionAction(action)
    except ValueError as exc:
        raise InvalidSubscriptionActionError(action) from exc


class SubscriptionService:
    """Activate, pause, resume, cancel and extend billing subscriptions."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def get_snapshot(self, user_id: str) -> SubscriptionSnapshot:
        """The account joined with the user's contact fields, or the 'none' snapshot."""
        stmt = (
            select(
                *BillingAccount.__table__.c,
                User.phone,
                User.preferred_name,
                User.name,
            )
            .select_from(BillingAccount)
            .join(User, User.id == BillingAccount.user_id)
            .where(BillingAccount.user_id == user_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            return SubscriptionSnapshot()
        return SubscriptionSnapshot.model_validate(row)

    def _check_transition(self, action: SubscriptionAction, account: BillingAccount | None) -> None:
        if not self.config.subscription_strict_transitions:
            return
        current = account.subscription_status if account else SubscriptionStatus.NONE.value
        if current not in ALLOWED_FROM[action]:
            raise SubscriptionConflictError(action.value, current)

    async def apply(
        self,
        user_id: str,
        action: str,
        cancel_reason: str | None = None,
        extension_days: int | None = None,
    ) -> str:
        """
        Run one subscription action and return the operator-facing message.

        Raises:
            InvalidSubscriptionActionError: Unknown action
            BillingAccountNotFoundError: Non-activate action without an account
            SubscriptionConflictError: Strict transitions on and the state forbids it
        """
        parsed = parse_action(action)
        account = await get_account_for_user(self.session, user_id)

        if parsed is not SubscriptionAction.ACTIVATE and account is None:
            raise BillingAccountNotFoundError(user_id)
        self._check_transition(parsed, account)

        if parsed is SubscriptionAction.ACTIVATE:
            message = await self._activate(user_id, account)
        elif parsed is SubscriptionAction.PAUSE:
            message = self._pause(account)
        elif parsed is SubscriptionAction.RESUME:
            message = self._resume(account)
        elif parsed is SubscriptionAction.CANCEL:
            message = self._cancel(account, cancel_reason)
        else:
            message = self._extend(account, extension_days)

        await self.session.flush()
        await self.session.commit()

        logger.info("subscription_action_applied", user_id=user_id, action=parsed.value)
        return message

    async def _activate(self, user_id: str, account: BillingAccount | None) -> str:
        now = _utc_now()
        allowance = self.config.subscription_monthly_allowance

        if account is None:
            account = BillingAccount(
                id=new_id(),
                user_id=user_id,
                subscription_status=SubscriptionStatus.ACTIVE.value,
                subscription_plan=self.config.subscription_plan,
                credits_balance=allowance,
                credits_monthly_allowance=allowance,
                credits_used_this_period=0,
                credits_reset_at=add_one_month(now),
                created_at=now,
                updated_at=now,
            )
            self.session.add(account)
            record_ledger_entry(
                self.session,
                account,
                change_amount=allowance,
                change_type=LedgerChangeType.SUBSCRIPTION,
                balance_after=allowance,
                description="Subscription activated - Initial credits",
            )
            logger.info("billing_account_created", user_id=user_id, balance=allowance)
        else:
            account.subscription_status = SubscriptionStatus.ACTIVE.value
            account.subscription_plan = self.config.subscription_plan
            account.credits_monthly_allowance = allowance
            account.credits_reset_at = add_one_month(now)
            account.updated_at = now
            await self.session.flush()

            # Separate increment, then read the balance back for the ledger row
            await self.session.execute(
                update(BillingAccount)
                .where(BillingAccount.id == account.id)
                .values(credits_balance=BillingAccount.credits_balance + allowance)
            )
            balance_result = await self.session.execute(
                select(BillingAccount.credits_balance).where(BillingAccount.id == account.id)
            )
            new_balance = balance_result.scalar_one()
            record_ledger_entry(
                self.session,
                account,
                change_amount=allowance,
                change_type=LedgerChangeType.SUBSCRIPTION,
                balance_after=new_balance,
                description="Subscription activated - Monthly allowance",
            )

        return "Subscription activated successfully! Monthly plan started."

    def _pause(self, account: BillingAccount) -> str:
        account.subscription_status = SubscriptionStatus.PAUSED.value
        account.updated_at = _utc_now()
        return "Subscription paused. Billing is on hold."

    def _resume(self, account: BillingAccount) -> str:
        now = _utc_now()
        account.subscription_status = SubscriptionStatus.ACTIVE.value
        account.credits_reset_at = add_one_month(now)
        account.updated_at = now
        return "Subscription resumed successfully!"

    def _cancel(self, account: BillingAccount, cancel_reason: str | None) -> str:
        account.subscription_status = SubscriptionStatus.CANCELLED.value
        account.subscription_plan = None
        account.updated_at = _utc_now()
        if cancel_reason:
            record_ledger_entry(
                self.session,
                account,
                change_amount=0,
                change_type=LedgerChangeType.ADMIN,
                balance_after=account.credits_balance,
                description=f"Subscription cancelled: {cancel_reason}",
            )
        return "Subscription cancelled. Access continues until current period ends."

    def _extend(self, account: BillingAccount, extension_days: int | None) -> str:
        days = extension_days or self.config.subscription_default_extension_days
        current_reset = account.credits_reset_at or _utc_now()
        new_reset = current_reset + timedelta(days=days)
        account.credits_reset_at = new_reset
        account.updated_at = _utc_now()
        record_ledger_entry(
            self.session,
            account,
            change_amount=0,
            change_type=LedgerChangeType.ADMIN,
            balance_after=account.credits_balance,
            description=f"Billing extended by {days} days",
        )
        return f"Billing date extended by {days} days to {new_reset.strftime('%Y-%m-%d')}."
