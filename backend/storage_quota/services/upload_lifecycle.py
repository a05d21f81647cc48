"""Upload lifecycle: begin, finalize, fail.

Each upload moves pending -> complete or pending -> failed exactly once.
All transition rules live in this module.

Every state-changing call locks the owner's storage account row first and
only then reads the upload. Concurrent calls for the same user (two
devices, a finalize racing a fail, a fail racing the cleanup sweep) are
therefore serialized on that lock, and the loser sees the winner's
terminal status. No lock is held while the client transfers bytes to IPFS.

credits_required is fixed at begin and is what finalize charges, even if
the client reports a different size afterwards.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.core.errors import (
    STORAGE_LIMIT_MESSAGE,
    InsufficientCapacityError,
    InternalError,
    InvalidRequestError,
    StorageLimitReachedError,
    UploadAlreadyCompleteError,
    UploadAlreadyFailedError,
    UploadNotFoundError,
)
from storage_quota.models.storage import (
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_MEDIA_TYPE_LENGTH,
    StorageAccount,
    Upload,
    UploadStatus,
)
from storage_quota.repositories.storage_account_repository import (
    StorageAccountRepository,
)
from storage_quota.repositories.upload_repository import UploadRepository
from storage_quota.services.account_transitions import AccountSnapshot
from storage_quota.services.reservation_manager import ReservationManager
from storage_quota.services.storage_units import (
    percentage_used,
    required_units,
    units_to_gb,
)

logger = structlog.get_logger()

_UPLOAD_ALLOWED_MESSAGE = "Upload allowed"
_MAX_FAILURE_REASON_LENGTH = 500


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class QuotaCheck:
    """Advisory answer to "would this upload fit right now?".

    Attributes:
        allowed: Whether available credits cover the upload.
        required_units: Credits the upload would reserve.
        available_units: Credits currently available (balance - reserved).
        message: Short user-facing message.
    """

    allowed: bool
    required_units: int
    available_units: int
    message: str


@dataclass(frozen=True)
class BeginResult:
    """Outcome of begin().

    Attributes:
        upload_id: Upload to finalize or fail later.
        credits_required: Credits reserved for this upload.
        idempotent: True when an earlier upload with the same key was
            returned and nothing new was reserved.
    """

    upload_id: uuid.UUID
    credits_required: int
    idempotent: bool


@dataclass(frozen=True)
class StorageSummary:
    """User-facing storage totals, in GB only."""

    total_gb: Decimal
    used_gb: Decimal
    remaining_gb: Decimal
    reserved_gb: Decimal
    available_gb: Decimal
    percentage_used: int

    @classmethod
    def from_snapshot(cls, snapshot: AccountSnapshot) -> "StorageSummary":
        return cls(
            total_gb=units_to_gb(snapshot.total),
            used_gb=units_to_gb(snapshot.spent),
            remaining_gb=units_to_gb(snapshot.balance),
            reserved_gb=units_to_gb(snapshot.reserved),
            available_gb=units_to_gb(snapshot.available),
            percentage_used=percentage_used(snapshot.spent, snapshot.total),
        )


# =============================================================================
# Validation
# =============================================================================


def _validate_begin(
    file_size_bytes: int, media_type: str, idempotency_key: str | None
) -> None:
    if file_size_bytes <= 0:
        raise InvalidRequestError("file_size_bytes must be a positive integer")
    if not media_type or not media_type.strip():
        raise InvalidRequestError("media_type is required")
    if len(media_type) > MAX_MEDIA_TYPE_LENGTH:
        raise InvalidRequestError(
            f"media_type must be at most {MAX_MEDIA_TYPE_LENGTH} characters"
        )
    if idempotency_key is not None and (
        not idempotency_key.strip()
        or len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH
    ):
        raise InvalidRequestError(
            "idempotency_key must be 1 to "
            f"{MAX_IDEMPOTENCY_KEY_LENGTH} non-blank characters"
        )


# =============================================================================
# Service
# =============================================================================


class UploadLifecycleService:
    """Drives uploads through their lifecycle for one database session.

    The caller owns the transaction: commit after a method returns, roll
    back if it raises. Methods never commit on their own.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _read_snapshot(self, user_id: uuid.UUID) -> AccountSnapshot:
        account = await StorageAccountRepository.get(self._db, user_id)
        if account is None:
            return AccountSnapshot.fresh()
        return AccountSnapshot.from_model(account)

    async def _lock_account(self, user_id: uuid.UUID) -> StorageAccount:
        return await StorageAccountRepository.get_or_create_for_update(
            self._db, user_id
        )

    async def check_quota(
        self, user_id: uuid.UUID, file_size_bytes: int
    ) -> QuotaCheck:
        """Report whether an upload would fit, without reserving anything.

        A user without an account is treated as holding the free grant.

        Args:
            user_id: Requesting user.
            file_size_bytes: Size of the planned upload.

        Returns:
            QuotaCheck with the required and available credits.

        Raises:
            InvalidRequestError: If file_size_bytes is not positive.
        """
        if file_size_bytes <= 0:
            raise InvalidRequestError("file_size_bytes must be a positive integer")
        snapshot = await self._read_snapshot(user_id)
        units = required_units(file_size_bytes)
        allowed = snapshot.available >= units
        return QuotaCheck(
            allowed=allowed,
            required_units=units,
            available_units=snapshot.available,
            message=_UPLOAD_ALLOWED_MESSAGE if allowed else STORAGE_LIMIT_MESSAGE,
        )

    async def begin(
        self,
        user_id: uuid.UUID,
        *,
        file_size_bytes: int,
        media_type: str,
        idempotency_key: str | None = None,
    ) -> BeginResult:
        """Reserve credits and open a pending upload.

        Replaying a key the user already used returns that upload unchanged
        and reserves nothing, even if the size differs.

        Args:
            user_id: Requesting user.
            file_size_bytes: Declared size of the file.
            media_type: Declared MIME type.
            idempotency_key: Optional client retry key.

        Returns:
            BeginResult for the new (or replayed) upload.

        Raises:
            InvalidRequestError: If the input is malformed.
            StorageLimitReachedError: If available credits cannot cover the
                upload. No upload row is created.
        """
        _validate_begin(file_size_bytes, media_type, idempotency_key)

        account = await self._lock_account(user_id)

        if idempotency_key is not None:
            existing = await UploadRepository.get_by_idempotency_key(
                self._db, user_id=user_id, idempotency_key=idempotency_key
            )
            if existing is not None:
                logger.info(
                    "upload_begin_replayed",
                    user_id=str(user_id),
                    upload_id=str(existing.id),
                    credits_required=existing.credits_required,
                )
                return BeginResult(
                    upload_id=existing.id,
                    credits_required=existing.credits_required,
                    idempotent=True,
                )

        units = required_units(file_size_bytes)
        try:
            await ReservationManager.reserve(self._db, account, units)
        except InsufficientCapacityError as exc:
            logger.info(
                "storage_limit_reached",
                user_id=str(user_id),
                file_size_bytes=file_size_bytes,
                credits_required=exc.required,
                credits_available=exc.available,
                credits_balance=account.credits_balance,
                credits_reserved=account.credits_reserved,
            )
            raise StorageLimitReachedError() from exc

        upload = await UploadRepository.create(
            self._db,
            user_id=user_id,
            file_size_bytes=file_size_bytes,
            media_type=media_type.strip(),
            credits_required=units,
            idempotency_key=idempotency_key,
        )
        logger.info(
            "upload_begun",
            user_id=str(user_id),
            upload_id=str(upload.id),
            credits_required=units,
            credits_reserved=account.credits_reserved,
        )
        return BeginResult(
            upload_id=upload.id, credits_required=units, idempotent=False
        )

    async def finalize(
        self,
        user_id: uuid.UUID,
        upload_id: uuid.UUID,
        *,
        ipfs_cid: str,
        media_share_id: uuid.UUID | None = None,
        reported_size_bytes: int | None = None,
    ) -> Upload:
        """Charge a pending upload and mark it complete.

        Finalizing an already complete upload returns it unchanged.

        Args:
            user_id: Requesting user (must own the upload).
            upload_id: Upload to finalize.
            ipfs_cid: Content identifier returned by IPFS.
            media_share_id: Optional published share the file belongs to.
            reported_size_bytes: Size the client observed after transfer.
                Recorded for audit when it maps to a different credit
                amount; the charge itself always uses credits_required.

        Returns:
            The complete upload.

        Raises:
            InvalidRequestError: If ipfs_cid is blank.
            UploadNotFoundError: If the upload is unknown or not owned.
            UploadAlreadyFailedError: If the upload already failed.
        """
        if not ipfs_cid or not ipfs_cid.strip():
            raise InvalidRequestError("ipfs_cid is required")
        if reported_size_bytes is not None and reported_size_bytes <= 0:
            raise InvalidRequestError("file_size_bytes must be a positive integer")

        account = await self._lock_account(user_id)
        upload = await UploadRepository.get_owned(
            self._db, upload_id=upload_id, user_id=user_id
        )
        if upload is None:
            raise UploadNotFoundError()

        if upload.status == UploadStatus.COMPLETE:
            return upload
        if upload.status == UploadStatus.FAILED:
            logger.warning(
                "finalize_rejected_upload_failed",
                user_id=str(user_id),
                upload_id=str(upload_id),
            )
            raise UploadAlreadyFailedError()

        ipfs_cid = ipfs_cid.strip()
        metadata: dict[str, object] = {"ipfs_cid": ipfs_cid}
        if reported_size_bytes is not None:
            reported_credits = required_units(reported_size_bytes)
            if reported_credits != upload.credits_required:
                logger.warning(
                    "finalize_size_mismatch",
                    user_id=str(user_id),
                    upload_id=str(upload_id),
                    credits_required=upload.credits_required,
                    reported_size_bytes=reported_size_bytes,
                    reported_credits=reported_credits,
                )
                metadata["reported_size_bytes"] = reported_size_bytes
                metadata["reported_credits"] = reported_credits

        try:
            await ReservationManager.commit(
                self._db, account, upload, metadata=metadata
            )
        except InsufficientCapacityError as exc:
            # balance >= reserved makes this unreachable for a live hold
            logger.error(
                "finalize_commit_rejected",
                user_id=str(user_id),
                upload_id=str(upload_id),
                credits_required=exc.required,
                credits_balance=account.credits_balance,
                credits_reserved=account.credits_reserved,
            )
            raise InternalError() from exc

        await UploadRepository.mark_complete(
            self._db,
            upload,
            ipfs_cid=ipfs_cid,
            media_share_id=media_share_id,
            completed_at=datetime.now(UTC),
        )
        logger.info(
            "upload_finalized",
            user_id=str(user_id),
            upload_id=str(upload_id),
            credits_charged=upload.credits_required,
            credits_balance=account.credits_balance,
        )
        return upload

    async def fail(
        self,
        user_id: uuid.UUID,
        upload_id: uuid.UUID,
        *,
        reason: str | None = None,
    ) -> tuple[Upload, bool]:
        """Release a pending upload's reservation and mark it failed.

        Failing an already failed upload is a no-op.

        Args:
            user_id: Requesting user (must own the upload).
            upload_id: Upload to fail.
            reason: Why the upload failed (stored on the upload and ledger).

        Returns:
            Tuple of (upload, released). released is False when the upload
            had already failed and nothing changed.

        Raises:
            UploadNotFoundError: If the upload is unknown or not owned.
            UploadAlreadyCompleteError: If the upload already completed.
        """
        if reason is not None:
            reason = reason.strip()[:_MAX_FAILURE_REASON_LENGTH] or None

        account = await self._lock_account(user_id)
        upload = await UploadRepository.get_owned(
            self._db, upload_id=upload_id, user_id=user_id
        )
        if upload is None:
            raise UploadNotFoundError()

        if upload.status == UploadStatus.FAILED:
            return upload, False
        if upload.status == UploadStatus.COMPLETE:
            logger.warning(
                "fail_rejected_upload_complete",
                user_id=str(user_id),
                upload_id=str(upload_id),
            )
            raise UploadAlreadyCompleteError()

        await ReservationManager.release(self._db, account, upload, reason=reason)
        await UploadRepository.mark_failed(
            self._db,
            upload,
            reason=reason,
            completed_at=datetime.now(UTC),
        )
        logger.info(
            "upload_failed",
            user_id=str(user_id),
            upload_id=str(upload_id),
            reason=reason,
            credits_released=upload.credits_required,
            credits_reserved=account.credits_reserved,
        )
        return upload, True

    async def get_upload(self, user_id: uuid.UUID, upload_id: uuid.UUID) -> Upload:
        """Read one of the user's uploads.

        Raises:
            UploadNotFoundError: If the upload is unknown or not owned.
        """
        upload = await UploadRepository.get_owned(
            self._db, upload_id=upload_id, user_id=user_id
        )
        if upload is None:
            raise UploadNotFoundError()
        return upload

    async def summary(self, user_id: uuid.UUID) -> StorageSummary:
        """User-facing storage totals in GB.

        A user without an account sees the free plan.
        """
        return StorageSummary.from_snapshot(await self._read_snapshot(user_id))
