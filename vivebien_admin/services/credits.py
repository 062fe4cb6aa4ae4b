"""
Credit Service - Operator balance adjustments with a ledger entry per change.

NO DICTIONARIES - the ledger row is an ORM object written in the same
transaction as the balance it records.
"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vivebien_admin.db.models import BillingAccount, CreditLedgerEntry
from vivebien_admin.exceptions import BillingAccountNotFoundError
from vivebien_admin.models.api import LedgerChangeType
from vivebien_admin.observability.logging import get_logger
from vivebien_admin.observability.metrics import metrics

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def adjustment_change_type(amount: int) -> LedgerChangeType:
    """Positive adjustments are grants, everything else a deduction."""
    return LedgerChangeType.ADMIN_ADD if amount > 0 else LedgerChangeType.ADMIN_DEDUCT


async def get_account_for_user(session: AsyncSession, user_id: str) -> BillingAccount | None:
    """The user's billing account, if any."""
    stmt = select(BillingAccount).where(BillingAccount.user_id == user_id).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def record_ledger_entry(
    session: AsyncSession,
    account: BillingAccount,
    change_amount: int,
    change_type: LedgerChangeType,
    balance_after: int,
    description: str | None,
) -> CreditLedgerEntry:
    """Stage one ledger row; the caller commits it with the balance change."""
    entry = CreditLedgerEntry(
        billing_account_id=account.id,
        user_id=account.user_id,
        change_amount=change_amount,
        change_type=change_type.value,
        balance_after=balance_after,
        description=description,
    )
    session.add(entry)
    metrics.record_ledger_entry(change_type.value, change_amount)
    return entry


class CreditService:
    """
    Manual credit adjustments made by operators.

    The balance is read, changed and written back inside the request's
    transaction. No row lock is taken: two concurrent adjustments to one
    account can lose an update.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def adjust_credits(self, user_id: str, amount: int, description: str) -> int:
        """
        Apply a signed adjustment and return the new balance.

        Negative results are allowed; there is no floor at zero.

        Raises:
            BillingAccountNotFoundError: User has no billing account
        """
        account = await get_account_for_user(self.session, user_id)
        if account is None:
            raise BillingAccountNotFoundError(user_id)

        balance_before = account.credits_balance
        new_balance = balance_before + amount

        account.credits_balance = new_balance
        account.updated_at = _utc_now()
        record_ledger_entry(
            self.session,
            account,
            change_amount=amount,
            change_type=adjustment_change_type(amount),
            balance_after=new_balance,
            description=description,
        )

        await self.session.flush()
        await self.session.commit()

        logger.info(
            "credits_adjusted",
            user_id=user_id,
            billing_account_id=account.id,
            amount=amount,
            balance_before=balance_before,
            new_balance=new_balance,
        )
        return new_balance
