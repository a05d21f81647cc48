"""Cleanup sweep for abandoned uploads.

A client that crashes or loses its connection between begin and finalize
leaves a pending upload holding reserved credits. The sweep fails every
pending upload older than the staleness threshold through the same
UploadLifecycleService.fail() path a client would use, with reason
"timeout", so the reservation is released and the ledger records why.

Each upload is processed in its own transaction: one bad row does not
hold back the rest, and a user's account lock is held only for that
user's upload.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_quota.core.errors import (
    APIError,
    UploadAlreadyCompleteError,
    UploadNotFoundError,
)
from storage_quota.repositories.upload_repository import UploadRepository
from storage_quota.services.upload_lifecycle import UploadLifecycleService

logger = structlog.get_logger()

TIMEOUT_REASON = "timeout"
DEFAULT_STALE_AFTER = timedelta(hours=2)
DEFAULT_BATCH_SIZE = 500


@dataclass(frozen=True)
class CleanupResult:
    """Result of one cleanup sweep.

    Attributes:
        stuck_uploads_fixed: Pending uploads moved to failed.
        reservations_released: Credits returned to availability.
        skipped: Stale candidates that reached a terminal state before the
            sweep got to them.
        errors: Candidates left pending because of a database error. They
            are retried by the next sweep.
    """

    stuck_uploads_fixed: int
    reservations_released: int
    skipped: int
    errors: int = 0


class CleanupError(APIError):
    """Raised when the sweep cannot list stale uploads."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="CLEANUP_ERROR",
            message=message,
            status_code=500,
        )


async def sweep_stale_uploads(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    now: datetime | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> CleanupResult:
    """Fail pending uploads created more than stale_after ago.

    Args:
        session_factory: Opens one session per transaction.
        stale_after: Age after which a pending upload is abandoned.
        now: Reference time (defaults to the current UTC time).
        batch_size: Maximum uploads processed in one sweep. Anything left
            over is picked up by the next run.

    Returns:
        CleanupResult with counts for this sweep.

    Raises:
        CleanupError: If stale uploads cannot be listed.
        ValueError: If stale_after or batch_size is not positive.
    """
    if stale_after <= timedelta(0):
        raise ValueError("stale_after must be positive")
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    cutoff = (now or datetime.now(UTC)) - stale_after

    try:
        async with session_factory() as session:
            stale = await UploadRepository.list_stale_pending(
                session, created_before=cutoff, limit=batch_size
            )
            candidates = [(upload.id, upload.user_id) for upload in stale]
    except SQLAlchemyError as exc:
        logger.error("upload_cleanup_list_failed", error=str(exc))
        raise CleanupError("Listing stale uploads failed") from exc

    if candidates:
        logger.info(
            "upload_cleanup_started",
            candidates=len(candidates),
            cutoff=cutoff.isoformat(),
        )

    fixed = 0
    released = 0
    skipped = 0
    errors = 0
    for upload_id, user_id in candidates:
        try:
            async with session_factory() as session, session.begin():
                upload, changed = await UploadLifecycleService(session).fail(
                    user_id, upload_id, reason=TIMEOUT_REASON
                )
                credits = upload.credits_required
        except (UploadAlreadyCompleteError, UploadNotFoundError):
            skipped += 1
            continue
        except SQLAlchemyError as exc:
            errors += 1
            logger.error(
                "upload_cleanup_item_failed",
                upload_id=str(upload_id),
                user_id=str(user_id),
                error=str(exc),
            )
            continue

        if not changed:
            skipped += 1
            continue
        fixed += 1
        released += credits

    result = CleanupResult(
        stuck_uploads_fixed=fixed,
        reservations_released=released,
        skipped=skipped,
        errors=errors,
    )
    logger.info(
        "upload_cleanup_complete",
        stuck_uploads_fixed=result.stuck_uploads_fixed,
        reservations_released=result.reservations_released,
        skipped=result.skipped,
        errors=result.errors,
    )
    return result
