"""Storage API router.

Quota check, upload lifecycle (begin, finalize, fail, status), storage
summary and ledger history for the authenticated user. Storage is
reported in GB; credits only appear where a client correlates an upload
with its reservation.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from storage_quota.api.deps import CurrentUserId, DbSession, UploadLifecycle
from storage_quota.core.config import settings
from storage_quota.core.pagination import PaginationParams, pagination_params
from storage_quota.core.rate_limiting import limiter
from storage_quota.core.responses import DataResponse, ListResponse, PaginationMeta
from storage_quota.repositories.ledger_repository import LedgerRepository
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

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# =============================================================================
# Quota and summary
# =============================================================================


@router.post("/quota-check")
async def check_quota(
    body: QuotaCheckRequest,
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
) -> DataResponse[QuotaCheckResponse]:
    """Advise whether an upload of this size would fit. Reserves nothing."""
    result = await lifecycle.check_quota(user_id, body.file_size_bytes)
    return DataResponse(data=QuotaCheckResponse.from_result(result))


@router.get("/summary")
async def get_summary(
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
) -> DataResponse[StorageSummaryResponse]:
    """Return the user's storage totals in GB."""
    summary = await lifecycle.summary(user_id)
    return DataResponse(data=StorageSummaryResponse.from_summary(summary))


@router.get("/ledger")
async def get_ledger(
    user_id: CurrentUserId,
    db: DbSession,
    pagination: Pagination,
) -> ListResponse[LedgerEntryResponse]:
    """Return the user's ledger entries, newest first."""
    entries, total = await LedgerRepository.list_by_user(
        db,
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[LedgerEntryResponse.from_model(entry) for entry in entries],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


# =============================================================================
# Upload lifecycle
# =============================================================================


@router.post("/uploads", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_uploads)
async def begin_upload(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: BeginUploadRequest,
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
) -> DataResponse[BeginUploadResponse]:
    """Reserve storage for an upload before the file is sent to IPFS.

    Returns 403 STORAGE_LIMIT_REACHED when the upload does not fit.
    Replaying an idempotency_key returns the original upload.
    """
    result = await lifecycle.begin(
        user_id,
        file_size_bytes=body.file_size_bytes,
        media_type=body.media_type,
        idempotency_key=body.idempotency_key,
    )
    return DataResponse(data=BeginUploadResponse.from_result(result))


@router.get("/uploads/{upload_id}")
async def get_upload(
    upload_id: uuid.UUID,
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
) -> DataResponse[UploadResponse]:
    """Return one of the user's uploads."""
    upload = await lifecycle.get_upload(user_id, upload_id)
    return DataResponse(data=UploadResponse.from_model(upload))


@router.post("/uploads/{upload_id}/finalize")
async def finalize_upload(
    upload_id: uuid.UUID,
    body: FinalizeUploadRequest,
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
) -> DataResponse[UploadStatusResponse]:
    """Charge the reserved storage once the file is on IPFS.

    Safe to retry: finalizing a complete upload returns it unchanged.
    """
    upload = await lifecycle.finalize(
        user_id,
        upload_id,
        ipfs_cid=body.ipfs_cid,
        media_share_id=body.media_share_id,
        reported_size_bytes=body.file_size_bytes,
    )
    return DataResponse(
        data=UploadStatusResponse(upload_id=str(upload.id), status=upload.status)
    )


@router.post("/uploads/{upload_id}/fail")
async def fail_upload(
    upload_id: uuid.UUID,
    user_id: CurrentUserId,
    lifecycle: UploadLifecycle,
    body: FailUploadRequest | None = None,
) -> DataResponse[UploadStatusResponse]:
    """Release the reserved storage of an upload that did not make it.

    Safe to retry: failing a failed upload is a no-op.
    """
    upload, _released = await lifecycle.fail(
        user_id,
        upload_id,
        reason=body.reason if body else None,
    )
    return DataResponse(
        data=UploadStatusResponse(upload_id=str(upload.id), status=upload.status)
    )
