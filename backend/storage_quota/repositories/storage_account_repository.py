"""Repository for storage account rows.

Every mutation of a storage account happens on a row read with
get_for_update (SELECT ... FOR UPDATE) in the same transaction, so two
requests for the same user are strictly ordered. Requests for different
users never contend.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.core.errors import NotFoundError
from storage_quota.models.storage import LedgerEntryType, StorageAccount
from storage_quota.repositories.ledger_repository import LedgerRepository
from storage_quota.services.account_transitions import AccountSnapshot
from storage_quota.services.storage_units import FREE_PLAN_CREDITS

logger = logging.getLogger(__name__)


def free_plan_reference(user_id: uuid.UUID) -> str:
    """Ledger reference of a user's one-time free grant."""
    return f"free-plan:{user_id}"


class StorageAccountRepository:
    """Stateless repository for StorageAccount rows.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get(db: AsyncSession, user_id: uuid.UUID) -> StorageAccount | None:
        """Read an account without locking it.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            The account, or None if it has not been opened yet.
        """
        stmt = select(StorageAccount).where(StorageAccount.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_for_update(
        db: AsyncSession, user_id: uuid.UUID
    ) -> StorageAccount | None:
        """Read an account and hold its row lock until the transaction ends.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            The locked account with fresh counters, or None.
        """
        stmt = (
            select(StorageAccount)
            .where(StorageAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_with_free_grant(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Open an account holding the free plan grant, if none exists.

        Uses INSERT ... ON CONFLICT DO NOTHING so concurrent first requests
        for the same user open exactly one account. The grant ledger entry
        is only written by the request whose insert won.

        Args:
            db: Async database session.
            user_id: Account owner (must exist in users).

        Returns:
            True if this call opened the account, False if it already existed.
        """
        fresh = AccountSnapshot.fresh()
        stmt = (
            insert(StorageAccount)
            .values(
                user_id=user_id,
                credits_balance=fresh.balance,
                credits_reserved=fresh.reserved,
                credits_total=fresh.total,
                credits_spent=fresh.spent,
            )
            .on_conflict_do_nothing(index_elements=[StorageAccount.user_id])
            .returning(StorageAccount.user_id)
        )
        result = await db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return False

        await LedgerRepository.create(
            db,
            user_id=user_id,
            entry_type=LedgerEntryType.GRANT,
            credits_amount=FREE_PLAN_CREDITS,
            reference=free_plan_reference(user_id),
            metadata={"plan": "free"},
        )
        logger.info("Opened storage account for user %s", user_id)
        return True

    @staticmethod
    async def get_or_create_for_update(
        db: AsyncSession, user_id: uuid.UUID
    ) -> StorageAccount:
        """Lock the user's account, opening it with the free grant if needed.

        Args:
            db: Async database session.
            user_id: Account owner (must exist in users).

        Returns:
            The locked account.

        Raises:
            NotFoundError: If the account cannot be opened because the user
                row is gone.
        """
        account = await StorageAccountRepository.get_for_update(db, user_id)
        if account is not None:
            return account
        await StorageAccountRepository.create_with_free_grant(db, user_id)
        account = await StorageAccountRepository.get_for_update(db, user_id)
        if account is None:
            # Only possible if the user row is gone mid-transaction.
            raise NotFoundError("Storage account", str(user_id))
        return account

    @staticmethod
    async def save(
        db: AsyncSession,
        account: StorageAccount,
        snapshot: AccountSnapshot,
    ) -> StorageAccount:
        """Write counters produced by an account transition.

        Args:
            db: Async database session.
            account: Locked account row.
            snapshot: Validated post-transition counters.

        Returns:
            The updated account.
        """
        account.credits_balance = snapshot.balance
        account.credits_reserved = snapshot.reserved
        account.credits_total = snapshot.total
        account.credits_spent = snapshot.spent
        await db.flush()
        return account
