"""Repository for storage ledger entries.

The ledger is append-only: this repository inserts and reads, never updates
or deletes. Inserts share the caller's transaction so an entry is written
if and only if the matching account mutation commits.
"""

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.models.storage import LedgerEntry, LedgerEntryType


class LedgerRepository:
    """Stateless repository for LedgerEntry rows.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        entry_type: LedgerEntryType,
        credits_amount: int,
        upload_id: uuid.UUID | None = None,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry.

        Args:
            db: Async database session.
            user_id: Account owner.
            entry_type: Kind of credit movement.
            credits_amount: Signed credit delta.
            upload_id: Upload the entry belongs to, if any.
            reference: External reference, unique per entry type.
            metadata: Free-form JSON context.

        Returns:
            Created LedgerEntry with database-generated fields.
        """
        entry = LedgerEntry(
            user_id=user_id,
            entry_type=entry_type.value,
            credits_amount=credits_amount,
            upload_id=upload_id,
            reference=reference,
            entry_metadata=metadata or {},
        )
        db.add(entry)
        await db.flush()
        await db.refresh(entry)
        return entry

    @staticmethod
    async def get_by_reference(
        db: AsyncSession,
        *,
        entry_type: LedgerEntryType,
        reference: str,
    ) -> LedgerEntry | None:
        """Find the entry recorded for an external reference.

        Args:
            db: Async database session.
            entry_type: Kind of credit movement.
            reference: External reference (payment id, grant key).

        Returns:
            The matching entry, or None.
        """
        stmt = select(LedgerEntry).where(
            LedgerEntry.entry_type == entry_type.value,
            LedgerEntry.reference == reference,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LedgerEntry], int]:
        """List a user's ledger entries, newest first.

        Args:
            db: Async database session.
            user_id: User to query entries for.
            offset: Number of records to skip.
            limit: Maximum records to return.

        Returns:
            Tuple of (entries list, total count).
        """
        count_stmt = (
            select(func.count())
            .select_from(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
        )
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        entries = list(result.scalars().all())

        return entries, total

    @staticmethod
    async def sum_by_type(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> dict[str, int]:
        """Total credits per entry type for a user.

        Args:
            db: Async database session.
            user_id: User to aggregate.

        Returns:
            Mapping of entry type to summed credits_amount. Types with no
            entries are absent.
        """
        stmt = (
            select(LedgerEntry.entry_type, func.sum(LedgerEntry.credits_amount))
            .where(LedgerEntry.user_id == user_id)
            .group_by(LedgerEntry.entry_type)
        )
        result = await db.execute(stmt)
        return {entry_type: int(total) for entry_type, total in result.all()}
