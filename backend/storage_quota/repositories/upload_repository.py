"""Repository for upload rows.

Status transitions are decided by the upload lifecycle service; this
repository only reads and writes rows.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.models.storage import Upload, UploadStatus


class UploadRepository:
    """Stateless repository for Upload rows.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        file_size_bytes: int,
        media_type: str,
        credits_required: int,
        idempotency_key: str | None = None,
    ) -> Upload:
        """Insert a pending upload.

        Args:
            db: Async database session.
            user_id: Upload owner.
            file_size_bytes: Declared size.
            media_type: Declared MIME type.
            credits_required: Credits reserved for this upload.
            idempotency_key: Optional client retry key.

        Returns:
            Created Upload with database-generated fields.
        """
        upload = Upload(
            user_id=user_id,
            file_size_bytes=file_size_bytes,
            media_type=media_type,
            credits_required=credits_required,
            status=UploadStatus.PENDING.value,
            idempotency_key=idempotency_key,
        )
        db.add(upload)
        await db.flush()
        await db.refresh(upload)
        return upload

    @staticmethod
    async def get_owned(
        db: AsyncSession,
        *,
        upload_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Upload | None:
        """Read an upload only if it belongs to the user.

        Call after locking the owner's storage account so the status read
        here cannot change before the caller writes.

        Args:
            db: Async database session.
            upload_id: Upload to read.
            user_id: Expected owner.

        Returns:
            The upload with fresh state, or None if unknown or owned by
            someone else.
        """
        stmt = (
            select(Upload)
            .where(Upload.id == upload_id, Upload.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_idempotency_key(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        idempotency_key: str,
    ) -> Upload | None:
        """Find the upload a user already began with this key.

        Args:
            db: Async database session.
            user_id: Upload owner.
            idempotency_key: Client retry key.

        Returns:
            The earlier upload, or None.
        """
        stmt = select(Upload).where(
            Upload.user_id == user_id,
            Upload.idempotency_key == idempotency_key,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_stale_pending(
        db: AsyncSession,
        *,
        created_before: datetime,
        limit: int,
    ) -> list[Upload]:
        """List pending uploads created before a cutoff, oldest first.

        Args:
            db: Async database session.
            created_before: Uploads created strictly before this are stale.
            limit: Maximum rows to return.

        Returns:
            Stale pending uploads.
        """
        stmt = (
            select(Upload)
            .where(
                Upload.status == UploadStatus.PENDING.value,
                Upload.created_at < created_before,
            )
            .order_by(Upload.created_at)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def sum_pending_credits(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Credits held by a user's pending uploads.

        Args:
            db: Async database session.
            user_id: Upload owner.

        Returns:
            Sum of credits_required over pending uploads (0 if none).
        """
        stmt = select(func.coalesce(func.sum(Upload.credits_required), 0)).where(
            Upload.user_id == user_id,
            Upload.status == UploadStatus.PENDING.value,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def mark_complete(
        db: AsyncSession,
        upload: Upload,
        *,
        ipfs_cid: str,
        media_share_id: uuid.UUID | None,
        completed_at: datetime,
    ) -> Upload:
        """Record a successful finalize."""
        upload.status = UploadStatus.COMPLETE.value
        upload.credits_charged = upload.credits_required
        upload.ipfs_cid = ipfs_cid
        upload.media_share_id = media_share_id
        upload.completed_at = completed_at
        await db.flush()
        return upload

    @staticmethod
    async def mark_failed(
        db: AsyncSession,
        upload: Upload,
        *,
        reason: str | None,
        completed_at: datetime,
    ) -> Upload:
        """Record a failure (client-reported or timeout)."""
        upload.status = UploadStatus.FAILED.value
        upload.failure_reason = reason
        upload.completed_at = completed_at
        await db.flush()
        return upload
