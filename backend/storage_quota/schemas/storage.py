"""Storage API request/response schemas.

Storage amounts shown to users are GB strings with 2 decimal places.
Credit counts only appear where an upload needs to be correlated with its
reservation (quota check and begin).
All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storage_quota.models.storage import (
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_MEDIA_TYPE_LENGTH,
    LedgerEntry,
    Upload,
)
from storage_quota.services.storage_units import units_to_gb
from storage_quota.services.upload_lifecycle import (
    BeginResult,
    QuotaCheck,
    StorageSummary,
)

_MAX_IPFS_CID_LENGTH = 255
_MAX_REASON_LENGTH = 500


def _gb(value: Decimal) -> str:
    return f"{value:.2f}"


def _strip_required(value: str, field_name: str) -> str:
    stripped = value.strip()
    if not stripped:
        msg = f"{field_name} must not be blank"
        raise ValueError(msg)
    return stripped


# =============================================================================
# Requests
# =============================================================================


class QuotaCheckRequest(BaseModel):
    """Body for POST /api/v1/storage/quota-check."""

    model_config = ConfigDict(extra="forbid")

    file_size_bytes: int = Field(gt=0)


class BeginUploadRequest(BaseModel):
    """Body for POST /api/v1/storage/uploads.

    Attributes:
        file_size_bytes: Size of the file about to be uploaded.
        media_type: MIME type of the file.
        idempotency_key: Optional client retry key. Replaying a key returns
            the original upload.
    """

    model_config = ConfigDict(extra="forbid")

    file_size_bytes: int = Field(gt=0)
    media_type: str = Field(min_length=1, max_length=MAX_MEDIA_TYPE_LENGTH)
    idempotency_key: str | None = Field(
        default=None, min_length=1, max_length=MAX_IDEMPOTENCY_KEY_LENGTH
    )

    @field_validator("media_type")
    @classmethod
    def media_type_not_blank(cls, value: str) -> str:
        return _strip_required(value, "media_type")


class FinalizeUploadRequest(BaseModel):
    """Body for POST /api/v1/storage/uploads/{upload_id}/finalize.

    Attributes:
        ipfs_cid: Content identifier returned by IPFS.
        media_share_id: Optional share the file was published in.
        file_size_bytes: Optional size observed after transfer. Recorded for
            audit only; the charge is the amount reserved at begin.
    """

    model_config = ConfigDict(extra="forbid")

    ipfs_cid: str = Field(min_length=1, max_length=_MAX_IPFS_CID_LENGTH)
    media_share_id: uuid.UUID | None = None
    file_size_bytes: int | None = Field(default=None, gt=0)

    @field_validator("ipfs_cid")
    @classmethod
    def ipfs_cid_not_blank(cls, value: str) -> str:
        return _strip_required(value, "ipfs_cid")


class FailUploadRequest(BaseModel):
    """Body for POST /api/v1/storage/uploads/{upload_id}/fail."""

    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(default=None, max_length=_MAX_REASON_LENGTH)


# =============================================================================
# Responses
# =============================================================================


class QuotaCheckResponse(BaseModel):
    """Response for POST /api/v1/storage/quota-check.

    Attributes:
        allowed: Whether the upload fits right now (advisory).
        required_units: Credits the upload would reserve.
        available_units: Credits currently available.
        available_gb: Available storage in GB.
        message: Short user-facing message.
    """

    model_config = ConfigDict(extra="forbid")

    allowed: bool
    required_units: int
    available_units: int
    available_gb: str
    message: str

    @classmethod
    def from_result(cls, result: QuotaCheck) -> "QuotaCheckResponse":
        return cls(
            allowed=result.allowed,
            required_units=result.required_units,
            available_units=result.available_units,
            available_gb=_gb(units_to_gb(result.available_units)),
            message=result.message,
        )


class BeginUploadResponse(BaseModel):
    """Response for POST /api/v1/storage/uploads."""

    model_config = ConfigDict(extra="forbid")

    upload_id: str
    credits_required: int
    idempotent: bool

    @classmethod
    def from_result(cls, result: BeginResult) -> "BeginUploadResponse":
        return cls(
            upload_id=str(result.upload_id),
            credits_required=result.credits_required,
            idempotent=result.idempotent,
        )


class UploadStatusResponse(BaseModel):
    """Response for finalize and fail."""

    model_config = ConfigDict(extra="forbid")

    upload_id: str
    status: str


class UploadResponse(BaseModel):
    """Response for GET /api/v1/storage/uploads/{upload_id}."""

    model_config = ConfigDict(extra="forbid")

    id: str
    status: str
    file_size_bytes: int
    media_type: str
    ipfs_cid: str | None
    media_share_id: str | None
    failure_reason: str | None
    created_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_model(cls, upload: Upload) -> "UploadResponse":
        return cls(
            id=str(upload.id),
            status=upload.status,
            file_size_bytes=upload.file_size_bytes,
            media_type=upload.media_type,
            ipfs_cid=upload.ipfs_cid,
            media_share_id=(
                str(upload.media_share_id) if upload.media_share_id else None
            ),
            failure_reason=upload.failure_reason,
            created_at=upload.created_at,
            completed_at=upload.completed_at,
        )


class StorageSummaryResponse(BaseModel):
    """Response for GET /api/v1/storage/summary.

    Attributes:
        total_gb: Storage ever granted (free plan + purchases).
        used_gb: Storage consumed by completed uploads.
        remaining_gb: total_gb - used_gb.
        reserved_gb: Storage held by uploads in progress.
        available_gb: remaining_gb - reserved_gb.
        percentage_used: used / total, whole percent.
    """

    model_config = ConfigDict(extra="forbid")

    total_gb: str
    used_gb: str
    remaining_gb: str
    reserved_gb: str
    available_gb: str
    percentage_used: int

    @classmethod
    def from_summary(cls, summary: StorageSummary) -> "StorageSummaryResponse":
        return cls(
            total_gb=_gb(summary.total_gb),
            used_gb=_gb(summary.used_gb),
            remaining_gb=_gb(summary.remaining_gb),
            reserved_gb=_gb(summary.reserved_gb),
            available_gb=_gb(summary.available_gb),
            percentage_used=summary.percentage_used,
        )


class LedgerEntryResponse(BaseModel):
    """Response item for GET /api/v1/storage/ledger.

    Attributes:
        id: Entry UUID.
        entry_type: grant, charge, release, purchase, admin_adjustment, refund.
        amount_gb: Signed amount in GB (negative for charges).
        upload_id: Related upload, if any.
        reason: Failure reason for release entries.
        created_at: When the entry was written.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    entry_type: str
    amount_gb: str
    upload_id: str | None
    reason: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, entry: LedgerEntry) -> "LedgerEntryResponse":
        metadata = entry.entry_metadata or {}
        return cls(
            id=str(entry.id),
            entry_type=entry.entry_type,
            amount_gb=_gb(units_to_gb(entry.credits_amount)),
            upload_id=str(entry.upload_id) if entry.upload_id else None,
            reason=metadata.get("reason"),
            created_at=entry.created_at,
        )
