"""Admin and internal API request/response schemas.

Admin tooling works in credits; GB strings are included for readability.
All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storage_quota.models.storage import MAX_REFERENCE_LENGTH
from storage_quota.services.ledger_reconciliation import ReconciliationReport
from storage_quota.services.storage_units import CREDITS_PER_GB, units_to_gb
from storage_quota.services.upload_cleanup import CleanupResult

# Max string length for decimal input fields. Prevents pathological-precision
# Decimal parsing (e.g. "0." + "0" * 100_000) from consuming CPU/memory.
_MAX_DECIMAL_STR_LEN = 20

# Largest single grant: 1 PB worth of credits.
_MAX_GRANT_UNITS = 100 * 1024 * 1024 * 1024
_MAX_GRANT_GB = Decimal(_MAX_GRANT_UNITS) / CREDITS_PER_GB

GrantSourceType = Literal["grant", "purchase", "admin_adjustment", "refund"]


def _validate_positive_decimal(value: str, field_name: str) -> str:
    """Validate a string parses as a finite, positive Decimal (> 0)."""
    if len(value) > _MAX_DECIMAL_STR_LEN:
        msg = f"{field_name} string representation too long"
        raise ValueError(msg)
    try:
        d = Decimal(value)
    except InvalidOperation:
        msg = f"{field_name} must be a valid decimal number"
        raise ValueError(msg) from None
    if not d.is_finite():
        msg = f"{field_name} must be a finite number"
        raise ValueError(msg)
    if d <= 0:
        msg = f"{field_name} must be > 0"
        raise ValueError(msg)
    return value


# =============================================================================
# Grants
# =============================================================================


class GrantRequest(BaseModel):
    """Body for POST /api/v1/admin/storage/grants.

    Exactly one of units or gb must be given. GB amounts are rounded up to
    whole credits.

    Attributes:
        user_id: Account to credit.
        source_type: Ledger entry type to record.
        units: Signed credits (negative only for admin_adjustment).
        gb: Positive GB amount as a decimal string (e.g. "10" or "0.5").
        reference: External reference (payment id). Replays with the same
            source_type and reference do not credit twice.
        metadata: Free-form JSON stored on the ledger entry.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    source_type: GrantSourceType
    units: int | None = Field(
        default=None, ge=-_MAX_GRANT_UNITS, le=_MAX_GRANT_UNITS
    )
    gb: str | None = None
    reference: str | None = Field(
        default=None, min_length=1, max_length=MAX_REFERENCE_LENGTH
    )
    metadata: dict[str, Any] | None = None

    @field_validator("gb")
    @classmethod
    def validate_gb(cls, v: str | None) -> str | None:
        if v is None:
            return v
        _validate_positive_decimal(v, "gb")
        # Compared before conversion; huge exponents would overflow the
        # Decimal context.
        if Decimal(v) > _MAX_GRANT_GB:
            msg = f"gb must be <= {_MAX_GRANT_GB}"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def exactly_one_amount(self) -> "GrantRequest":
        if (self.units is None) == (self.gb is None):
            msg = "Provide exactly one of units or gb"
            raise ValueError(msg)
        return self


class GrantResponse(BaseModel):
    """Response for POST /api/v1/admin/storage/grants."""

    model_config = ConfigDict(extra="forbid")

    new_balance: int
    new_balance_gb: str
    idempotent: bool


# =============================================================================
# Reconciliation
# =============================================================================


class ReconciliationResponse(BaseModel):
    """Response for GET /api/v1/admin/storage/accounts/{user_id}/reconciliation.

    Attributes:
        user_id: Audited account.
        credits_balance: Stored balance.
        credits_reserved: Stored reservation.
        credits_total: Stored lifetime grants.
        credits_spent: Stored lifetime charges.
        ledger_sum: Sum of all ledger entries.
        pending_reserved: Credits held by pending uploads.
        ledger_by_type: Ledger sum per entry type.
        ledger_drift: ledger_sum - credits_balance.
        identity_drift: (credits_total - credits_spent) - credits_balance.
        reserved_drift: credits_reserved - pending_reserved.
        consistent: True when every drift is zero.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    credits_balance: int
    credits_reserved: int
    credits_total: int
    credits_spent: int
    ledger_sum: int
    pending_reserved: int
    ledger_by_type: dict[str, int]
    ledger_drift: int
    identity_drift: int
    reserved_drift: int
    consistent: bool

    @classmethod
    def from_report(cls, report: ReconciliationReport) -> "ReconciliationResponse":
        return cls(
            user_id=str(report.user_id),
            credits_balance=report.credits_balance,
            credits_reserved=report.credits_reserved,
            credits_total=report.credits_total,
            credits_spent=report.credits_spent,
            ledger_sum=report.ledger_sum,
            pending_reserved=report.pending_reserved,
            ledger_by_type=dict(report.ledger_by_type),
            ledger_drift=report.ledger_drift,
            identity_drift=report.identity_drift,
            reserved_drift=report.reserved_drift,
            consistent=report.consistent,
        )


# =============================================================================
# Cleanup
# =============================================================================


class CleanupResponse(BaseModel):
    """Response for POST /api/v1/internal/storage/cleanup."""

    model_config = ConfigDict(extra="forbid")

    stuck_uploads_fixed: int
    reservations_released: int
    skipped: int
    errors: int

    @classmethod
    def from_result(cls, result: CleanupResult) -> "CleanupResponse":
        return cls(
            stuck_uploads_fixed=result.stuck_uploads_fixed,
            reservations_released=result.reservations_released,
            skipped=result.skipped,
            errors=result.errors,
        )


def balance_gb(units: int) -> str:
    """Format a credit balance as a GB string."""
    return f"{units_to_gb(units):.2f}"
