"""Ledger reconciliation audit.

The ledger is the ground truth. For every account the following should
hold at all times:

    sum(ledger credits_amount)   == credits_balance
    credits_total - credits_spent == credits_balance
    sum(pending credits_required) == credits_reserved

A non-zero drift means the counters were modified outside the reservation
primitives and need investigating. The audit only reads.
"""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.core.errors import NotFoundError
from storage_quota.repositories.ledger_repository import LedgerRepository
from storage_quota.repositories.storage_account_repository import (
    StorageAccountRepository,
)
from storage_quota.repositories.upload_repository import UploadRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationReport:
    """Account counters compared against the ledger and pending uploads.

    Attributes:
        user_id: Audited account.
        credits_balance: Stored balance.
        credits_reserved: Stored reservation.
        credits_total: Stored lifetime grants.
        credits_spent: Stored lifetime charges.
        ledger_sum: Sum of all ledger entries.
        pending_reserved: Sum of credits_required over pending uploads.
        ledger_by_type: Ledger sum per entry type.
    """

    user_id: uuid.UUID
    credits_balance: int
    credits_reserved: int
    credits_total: int
    credits_spent: int
    ledger_sum: int
    pending_reserved: int
    ledger_by_type: dict[str, int] = field(default_factory=dict)

    @property
    def ledger_drift(self) -> int:
        """ledger_sum - credits_balance."""
        return self.ledger_sum - self.credits_balance

    @property
    def identity_drift(self) -> int:
        """(credits_total - credits_spent) - credits_balance."""
        return self.credits_total - self.credits_spent - self.credits_balance

    @property
    def reserved_drift(self) -> int:
        """credits_reserved - pending_reserved."""
        return self.credits_reserved - self.pending_reserved

    @property
    def consistent(self) -> bool:
        return self.ledger_drift == 0 and self.identity_drift == 0 and (
            self.reserved_drift == 0
        )


async def reconcile_account(
    db: AsyncSession, user_id: uuid.UUID
) -> ReconciliationReport:
    """Compare one account's counters with its ledger.

    Args:
        db: Async database session.
        user_id: Account to audit.

    Returns:
        ReconciliationReport with the drifts.

    Raises:
        NotFoundError: If the user has no storage account.
    """
    account = await StorageAccountRepository.get(db, user_id)
    if account is None:
        raise NotFoundError("Storage account", str(user_id))

    by_type = await LedgerRepository.sum_by_type(db, user_id)
    pending = await UploadRepository.sum_pending_credits(db, user_id)

    report = ReconciliationReport(
        user_id=user_id,
        credits_balance=account.credits_balance,
        credits_reserved=account.credits_reserved,
        credits_total=account.credits_total,
        credits_spent=account.credits_spent,
        ledger_sum=sum(by_type.values()),
        pending_reserved=pending,
        ledger_by_type=by_type,
    )
    if not report.consistent:
        logger.warning(
            "Storage account drift for user %s: ledger=%d identity=%d reserved=%d",
            user_id,
            report.ledger_drift,
            report.identity_drift,
            report.reserved_drift,
        )
    return report
