"""Storage grants: purchases, refunds and admin adjustments.

Adds credits to an account outside the upload lifecycle. Payment webhooks
may be delivered more than once, so a grant carrying a reference is
recorded at most once per (source type, reference); a replay returns the
current balance and credits nothing.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.core.errors import (
    ConflictError,
    InsufficientCapacityError,
    InvalidRequestError,
    NotFoundError,
)
from storage_quota.models.storage import MAX_REFERENCE_LENGTH, LedgerEntryType
from storage_quota.repositories.ledger_repository import LedgerRepository
from storage_quota.repositories.storage_account_repository import (
    StorageAccountRepository,
)
from storage_quota.repositories.user_repository import UserRepository
from storage_quota.services.account_transitions import AccountSnapshot

logger = logging.getLogger(__name__)

# Entry types that may be created through grant(). charge and release only
# come from the upload lifecycle.
GRANT_SOURCE_TYPES: frozenset[LedgerEntryType] = frozenset(
    {
        LedgerEntryType.GRANT,
        LedgerEntryType.PURCHASE,
        LedgerEntryType.ADMIN_ADJUSTMENT,
        LedgerEntryType.REFUND,
    }
)


@dataclass(frozen=True)
class GrantResult:
    """Outcome of a grant.

    Attributes:
        new_balance: Account balance after the grant (in credits).
        idempotent: True if the reference was already recorded and nothing
            changed.
    """

    new_balance: int
    idempotent: bool


def _duplicate_reference() -> ConflictError:
    return ConflictError(
        code="DUPLICATE_GRANT_REFERENCE",
        message="Reference already used for another grant",
    )


async def grant(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    units: int,
    source_type: LedgerEntryType,
    reference: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> GrantResult:
    """Credit (or, for admin adjustments, debit) a user's storage.

    Locks the account first, so grants serialize with uploads for the same
    user. Opens the account with the free grant if the user has none yet.

    Args:
        db: Async database session.
        user_id: Account owner.
        units: Signed credits. Must be positive except for
            admin_adjustment, which may be negative but not zero.
        source_type: Ledger entry type to record.
        reference: External reference making the grant idempotent.
        metadata: Free-form JSON stored on the ledger entry.

    Returns:
        GrantResult with the new balance.

    Raises:
        InvalidRequestError: If the source type or amount is not allowed,
            or a negative adjustment would break the account invariants.
        NotFoundError: If the user does not exist.
        ConflictError: If the reference is already recorded for another
            user.
    """
    if source_type not in GRANT_SOURCE_TYPES:
        raise InvalidRequestError(f"source_type '{source_type.value}' cannot be granted")
    if source_type is LedgerEntryType.ADMIN_ADJUSTMENT:
        if units == 0:
            raise InvalidRequestError("units must not be zero")
    elif units <= 0:
        raise InvalidRequestError("units must be positive")
    if reference is not None and (
        not reference.strip() or len(reference) > MAX_REFERENCE_LENGTH
    ):
        raise InvalidRequestError(
            f"reference must be 1 to {MAX_REFERENCE_LENGTH} non-blank characters"
        )

    if await UserRepository.get_by_id(db, user_id) is None:
        raise NotFoundError("User", str(user_id))

    account = await StorageAccountRepository.get_or_create_for_update(db, user_id)

    if reference is not None:
        existing = await LedgerRepository.get_by_reference(
            db, entry_type=source_type, reference=reference
        )
        if existing is not None:
            if existing.user_id != user_id:
                logger.warning(
                    "Grant reference %s (%s) already recorded for user %s, "
                    "rejected for user %s",
                    reference,
                    source_type.value,
                    existing.user_id,
                    user_id,
                )
                raise _duplicate_reference()
            logger.info(
                "Duplicate grant %s (%s) for user %s ignored",
                reference,
                source_type.value,
                user_id,
            )
            return GrantResult(new_balance=account.credits_balance, idempotent=True)

    try:
        snapshot = AccountSnapshot.from_model(account).grant(units)
    except InsufficientCapacityError as exc:
        logger.warning(
            "Adjustment of %d credits rejected for user %s: balance=%d reserved=%d",
            units,
            user_id,
            account.credits_balance,
            account.credits_reserved,
        )
        raise InvalidRequestError(
            "Adjustment would leave less storage than is currently in use"
        ) from exc

    await StorageAccountRepository.save(db, account, snapshot)
    try:
        await LedgerRepository.create(
            db,
            user_id=user_id,
            entry_type=source_type,
            credits_amount=units,
            reference=reference,
            metadata=metadata,
        )
    except IntegrityError as exc:
        # Concurrent grant with the same reference for a different user.
        raise _duplicate_reference() from exc

    logger.info(
        "Granted %d credits (%s) to user %s, balance now %d",
        units,
        source_type.value,
        user_id,
        snapshot.balance,
    )
    return GrantResult(new_balance=snapshot.balance, idempotent=False)
