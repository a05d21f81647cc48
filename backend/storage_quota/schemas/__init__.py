"""Pydantic request/response schemas for API endpoints."""

from storage_quota.schemas.admin import (
    CleanupResponse,
    GrantRequest,
    GrantResponse,
    ReconciliationResponse,
)
from storage_quota.schemas.storage import (
    BeginUploadRequest,
    BeginUploadResponse,
    FailUploadRequest,
    FinalizeUploadRequest,
    LedgerEntryResponse,
    QuotaCheckRequest,
    QuotaCheckResponse,
    StorageSummaryResponse,
    UploadResponse,
    UploadStatusResponse,
)

__all__ = [
    # Storage
    "BeginUploadRequest",
    "BeginUploadResponse",
    "FailUploadRequest",
    "FinalizeUploadRequest",
    "LedgerEntryResponse",
    "QuotaCheckRequest",
    "QuotaCheckResponse",
    "StorageSummaryResponse",
    "UploadResponse",
    "UploadStatusResponse",
    # Admin / internal
    "CleanupResponse",
    "GrantRequest",
    "GrantResponse",
    "ReconciliationResponse",
]
