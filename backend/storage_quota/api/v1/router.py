"""API v1 router aggregator.

URL structure with /api/v1 prefix. All v1 endpoint routers are included
here.
"""

from fastapi import APIRouter

from storage_quota.api.v1 import admin, internal, storage

router = APIRouter()

# =============================================================================
# User-facing storage
# =============================================================================

router.include_router(storage.router, prefix="/storage", tags=["storage"])

# =============================================================================
# Admin and scheduled jobs
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(internal.router, prefix="/internal", tags=["internal"])
