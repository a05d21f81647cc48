"""Admin API router.

Storage grants (purchases, refunds, adjustments) and per-account
reconciliation. All endpoints require the AdminUser dependency.
"""

import uuid
from decimal import Decimal

from fastapi import APIRouter

from storage_quota.api.deps import AdminUser, DbSession
from storage_quota.core.responses import DataResponse
from storage_quota.models.storage import LedgerEntryType
from storage_quota.schemas.admin import (
    GrantRequest,
    GrantResponse,
    ReconciliationResponse,
    balance_gb,
)
from storage_quota.services import storage_grants
from storage_quota.services.ledger_reconciliation import reconcile_account
from storage_quota.services.storage_units import gb_to_units

router = APIRouter()


# =============================================================================
# Grants
# =============================================================================


@router.post("/storage/grants")
async def create_grant(
    body: GrantRequest,
    _admin: AdminUser,
    db: DbSession,
) -> DataResponse[GrantResponse]:
    """Credit storage to a user.

    Idempotent on (source_type, reference): a replayed payment webhook
    returns the current balance with idempotent=true.
    """
    units = body.units if body.units is not None else gb_to_units(Decimal(body.gb))
    result = await storage_grants.grant(
        db,
        user_id=body.user_id,
        units=units,
        source_type=LedgerEntryType(body.source_type),
        reference=body.reference,
        metadata=body.metadata,
    )
    return DataResponse(
        data=GrantResponse(
            new_balance=result.new_balance,
            new_balance_gb=balance_gb(result.new_balance),
            idempotent=result.idempotent,
        )
    )


# =============================================================================
# Reconciliation
# =============================================================================


@router.get("/storage/accounts/{user_id}/reconciliation")
async def get_reconciliation(
    user_id: uuid.UUID,
    _admin: AdminUser,
    db: DbSession,
) -> DataResponse[ReconciliationResponse]:
    """Compare an account's counters with its ledger."""
    report = await reconcile_account(db, user_id)
    return DataResponse(data=ReconciliationResponse.from_report(report))
