"""SQLAlchemy ORM models for the storage quota service.

All models are exported from this module for convenient imports:
    from storage_quota.models import User, StorageAccount, Upload, LedgerEntry

Models are organized by domain:
- user.py: User (identity anchor, admin flag)
- storage.py: StorageAccount, Upload, LedgerEntry and their enums
"""

from storage_quota.models.base import Base, TimestampMixin
from storage_quota.models.storage import (
    LedgerEntry,
    LedgerEntryType,
    StorageAccount,
    Upload,
    UploadStatus,
)
from storage_quota.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Identity
    "User",
    # Storage accounting
    "StorageAccount",
    "Upload",
    "LedgerEntry",
    # Enums
    "UploadStatus",
    "LedgerEntryType",
]
