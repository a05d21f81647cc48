"""Storage accounting ORM models.

StorageAccount holds the per-user credit counters, Upload tracks one media
upload from reservation to a terminal state, and LedgerEntry is the
append-only history of every credit movement. Ledger rows are never updated
or deleted.

Account invariants (enforced by CHECK constraints and the account
transitions):
    credits_balance >= 0
    credits_reserved >= 0
    credits_balance >= credits_reserved
    credits_balance == credits_total - credits_spent
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage_quota.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from storage_quota.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")

MAX_MEDIA_TYPE_LENGTH = 100
MAX_IDEMPOTENCY_KEY_LENGTH = 255
MAX_REFERENCE_LENGTH = 255


class UploadStatus(str, Enum):
    """Upload lifecycle states.

    pending -> complete and pending -> failed are the only transitions.
    Both terminal states are final.
    """

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class LedgerEntryType(str, Enum):
    """Kinds of credit movement recorded in the ledger.

    Values:
        GRANT: Free plan allocation when the account is opened.
        CHARGE: Finalized upload (negative amount).
        RELEASE: Reservation returned after a failed upload (zero amount).
        PURCHASE: Paid storage pack.
        ADMIN_ADJUSTMENT: Manual correction by an admin.
        REFUND: Credits returned to the user.
    """

    GRANT = "grant"
    CHARGE = "charge"
    RELEASE = "release"
    PURCHASE = "purchase"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REFUND = "refund"


def _sql_in(values: type[Enum]) -> str:
    return ", ".join(f"'{member.value}'" for member in values)


class StorageAccount(Base, TimestampMixin):
    """Per-user storage credit counters.

    Attributes:
        user_id: PK and FK to users table.
        credits_balance: Credits the user still owns (total - spent).
        credits_reserved: Credits held by pending uploads.
        credits_total: Credits ever granted or purchased.
        credits_spent: Credits charged for finalized uploads.
        created_at: When the account was opened (from TimestampMixin).
        updated_at: Last counter change (from TimestampMixin).
    """

    __tablename__ = "storage_accounts"
    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_storage_balance_nonneg"),
        CheckConstraint("credits_reserved >= 0", name="ck_storage_reserved_nonneg"),
        CheckConstraint(
            "credits_balance >= credits_reserved",
            name="ck_storage_balance_covers_reserved",
        ),
        CheckConstraint("credits_total >= 0", name="ck_storage_total_nonneg"),
        CheckConstraint("credits_spent >= 0", name="ck_storage_spent_nonneg"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    credits_balance: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("0"),
    )
    credits_reserved: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("0"),
    )
    credits_total: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("0"),
    )
    credits_spent: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("0"),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="storage_account")


class Upload(Base):
    """One media upload attempt.

    credits_required is fixed when the upload begins and never recomputed.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        file_size_bytes: Size declared at begin.
        media_type: MIME type declared at begin.
        credits_required: Credits reserved at begin.
        credits_charged: Credits charged at finalize (NULL until complete).
        status: pending, complete or failed.
        idempotency_key: Optional client key, unique per user.
        ipfs_cid: Content identifier returned by IPFS at finalize.
        media_share_id: Optional link to the published share.
        failure_reason: Why the upload failed (e.g. "timeout").
        created_at: When the upload began.
        completed_at: When the upload reached a terminal state.
    """

    __tablename__ = "uploads"
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_sql_in(UploadStatus)})",
            name="ck_uploads_status",
        ),
        CheckConstraint("file_size_bytes > 0", name="ck_uploads_size_positive"),
        CheckConstraint(
            "credits_required >= 0", name="ck_uploads_credits_required_nonneg"
        ),
        CheckConstraint(
            "credits_charged >= 0 OR credits_charged IS NULL",
            name="ck_uploads_credits_charged_nonneg",
        ),
        Index(
            "uq_uploads_user_idempotency_key",
            "user_id",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
        Index(
            "ix_uploads_pending_created",
            "created_at",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_uploads_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_size_bytes: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    media_type: Mapped[str] = mapped_column(
        String(MAX_MEDIA_TYPE_LENGTH),
        nullable=False,
    )
    credits_required: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    credits_charged: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        server_default=text("'pending'"),
        default=UploadStatus.PENDING.value,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(MAX_IDEMPOTENCY_KEY_LENGTH),
        nullable=True,
    )
    ipfs_cid: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    media_share_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class LedgerEntry(Base):
    """Append-only record of one credit movement.

    Positive amounts add credits (grant, purchase, refund), negative amounts
    remove them (charge). Release entries carry zero because a reservation
    never left the balance. The sum of a user's entries equals their
    credits_balance.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        entry_type: LedgerEntryType value.
        credits_amount: Signed credit delta.
        upload_id: Upload this entry belongs to, if any.
        reference: External reference (payment id, grant key). Unique per
            entry type when present.
        entry_metadata: Free-form JSON (column name "metadata").
        created_at: When the entry was written.
    """

    __tablename__ = "storage_ledger"
    __table_args__ = (
        CheckConstraint(
            f"entry_type IN ({_sql_in(LedgerEntryType)})",
            name="ck_storage_ledger_entry_type",
        ),
        Index(
            "ix_storage_ledger_upload_id",
            "upload_id",
            postgresql_where=text("upload_id IS NOT NULL"),
        ),
        Index(
            "uq_storage_ledger_type_reference",
            "entry_type",
            "reference",
            unique=True,
            postgresql_where=text("reference IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    entry_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    credits_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    upload_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("uploads.id", ondelete="SET NULL"),
        nullable=True,
    )
    reference: Mapped[str | None] = mapped_column(
        String(MAX_REFERENCE_LENGTH),
        nullable=True,
    )
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


Index(
    "ix_storage_ledger_user_created",
    LedgerEntry.user_id,
    LedgerEntry.created_at.desc(),
)
