"""Internal API router for scheduled jobs.

Authenticated with the service bearer token (SERVICE_API_TOKEN), not a
user session.
"""

from datetime import timedelta

from fastapi import APIRouter

from storage_quota.api.deps import ServiceCredential, SessionFactory
from storage_quota.core.config import settings
from storage_quota.core.responses import DataResponse
from storage_quota.schemas.admin import CleanupResponse
from storage_quota.services.upload_cleanup import sweep_stale_uploads

router = APIRouter()


@router.post("/storage/cleanup")
async def run_cleanup(
    _service: ServiceCredential,
    session_factory: SessionFactory,
) -> DataResponse[CleanupResponse]:
    """Fail abandoned pending uploads and release their reservations."""
    result = await sweep_stale_uploads(
        session_factory,
        stale_after=timedelta(minutes=settings.upload_stale_after_minutes),
        batch_size=settings.upload_cleanup_batch_size,
    )
    return DataResponse(data=CleanupResponse.from_result(result))
