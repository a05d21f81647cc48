"""Reservation primitives on a locked storage account.

The only code paths that move credits for uploads. Each primitive expects
an account row already locked by the caller with
StorageAccountRepository.get_or_create_for_update, applies a pure
transition, writes the counters and appends the matching ledger entry in
the same transaction.

    reserve  -> reserved += units               (no ledger entry)
    commit   -> reserved -= units, balance -= units, spent += units
                (charge entry of -units)
    release  -> reserved -= units               (release entry of 0)
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.models.storage import (
    LedgerEntry,
    LedgerEntryType,
    StorageAccount,
    Upload,
)
from storage_quota.repositories.ledger_repository import LedgerRepository
from storage_quota.repositories.storage_account_repository import (
    StorageAccountRepository,
)
from storage_quota.services.account_transitions import AccountSnapshot

logger = logging.getLogger(__name__)


class ReservationManager:
    """Stateless reserve/commit/release operations.

    All methods are static. Raises InsufficientCapacityError (from the
    account transitions) before anything is written.
    """

    @staticmethod
    async def reserve(
        db: AsyncSession,
        account: StorageAccount,
        units: int,
    ) -> AccountSnapshot:
        """Hold credits for an upload about to be transferred.

        Args:
            db: Async database session.
            account: Locked account row.
            units: Credits to hold.

        Returns:
            Counters after the reservation.

        Raises:
            InsufficientCapacityError: If available credits < units.
        """
        snapshot = AccountSnapshot.from_model(account).reserve(units)
        await StorageAccountRepository.save(db, account, snapshot)
        return snapshot

    @staticmethod
    async def commit(
        db: AsyncSession,
        account: StorageAccount,
        upload: Upload,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Charge an upload's reserved credits permanently.

        Always charges upload.credits_required. The caller guarantees the
        upload is still pending; a second commit for the same upload must
        never reach this method.

        Args:
            db: Async database session.
            account: Locked account row of the upload owner.
            upload: Pending upload being finalized.
            metadata: Extra context stored on the charge entry.

        Returns:
            The charge ledger entry.

        Raises:
            InsufficientCapacityError: If the balance cannot cover the charge.
        """
        units = upload.credits_required
        snapshot = AccountSnapshot.from_model(account).commit(units)
        await StorageAccountRepository.save(db, account, snapshot)
        entry = await LedgerRepository.create(
            db,
            user_id=account.user_id,
            entry_type=LedgerEntryType.CHARGE,
            credits_amount=-units,
            upload_id=upload.id,
            metadata={
                "file_size_bytes": upload.file_size_bytes,
                **(metadata or {}),
            },
        )
        logger.debug(
            "Charged %d credits to user %s for upload %s",
            units,
            account.user_id,
            upload.id,
        )
        return entry

    @staticmethod
    async def release(
        db: AsyncSession,
        account: StorageAccount,
        upload: Upload,
        *,
        reason: str | None,
    ) -> LedgerEntry:
        """Return an upload's reserved credits to availability.

        The balance never included the hold, so the audit entry carries a
        zero amount and the failure reason.

        Args:
            db: Async database session.
            account: Locked account row of the upload owner.
            upload: Pending upload being failed.
            reason: Why the upload failed.

        Returns:
            The release ledger entry.
        """
        units = upload.credits_required
        snapshot = AccountSnapshot.from_model(account).release(units)
        await StorageAccountRepository.save(db, account, snapshot)
        entry = await LedgerRepository.create(
            db,
            user_id=account.user_id,
            entry_type=LedgerEntryType.RELEASE,
            credits_amount=0,
            upload_id=upload.id,
            metadata={
                "status": "failed",
                "reason": reason,
                "credits_released": units,
            },
        )
        logger.debug(
            "Released %d reserved credits for user %s, upload %s",
            units,
            account.user_id,
            upload.id,
        )
        return entry
