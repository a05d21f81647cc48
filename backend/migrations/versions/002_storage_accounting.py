"""Create storage accounting tables.

Revision ID: 002_storage_accounting
Revises: 001_users
Create Date: 2026-10-19

storage_accounts holds per-user credit counters, uploads tracks each
upload from reservation to a terminal state, storage_ledger is the
append-only history of credit movements.

Account invariants are enforced by CHECK constraints so that no code path
(including manual SQL) can leave balance below reserved or negative.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002_storage_accounting"
down_revision: str = "001_users"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Shared column types
_PG_UUID = sa.dialects.postgresql.UUID(as_uuid=True)
_UUID_DEFAULT = sa.text("gen_random_uuid()")
_USERS_FK = "users.id"


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    """Create storage_accounts, uploads and storage_ledger."""
    # 1. Per-user counters
    op.create_table(
        "storage_accounts",
        sa.Column(
            "user_id",
            _PG_UUID,
            sa.ForeignKey(_USERS_FK, ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "credits_balance", sa.BigInteger, server_default="0", nullable=False
        ),
        sa.Column(
            "credits_reserved", sa.BigInteger, server_default="0", nullable=False
        ),
        sa.Column("credits_total", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("credits_spent", sa.BigInteger, server_default="0", nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("credits_balance >= 0", name="ck_storage_balance_nonneg"),
        sa.CheckConstraint(
            "credits_reserved >= 0", name="ck_storage_reserved_nonneg"
        ),
        sa.CheckConstraint(
            "credits_balance >= credits_reserved",
            name="ck_storage_balance_covers_reserved",
        ),
        sa.CheckConstraint("credits_total >= 0", name="ck_storage_total_nonneg"),
        sa.CheckConstraint("credits_spent >= 0", name="ck_storage_spent_nonneg"),
    )

    # 2. Uploads
    op.create_table(
        "uploads",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "user_id",
            _PG_UUID,
            sa.ForeignKey(_USERS_FK, ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_size_bytes", sa.BigInteger, nullable=False),
        sa.Column("media_type", sa.String(100), nullable=False),
        sa.Column("credits_required", sa.BigInteger, nullable=False),
        sa.Column("credits_charged", sa.BigInteger, nullable=True),
        sa.Column(
            "status",
            sa.String(10),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("ipfs_cid", sa.Text, nullable=True),
        sa.Column("media_share_id", _PG_UUID, nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'complete', 'failed')",
            name="ck_uploads_status",
        ),
        sa.CheckConstraint("file_size_bytes > 0", name="ck_uploads_size_positive"),
        sa.CheckConstraint(
            "credits_required >= 0", name="ck_uploads_credits_required_nonneg"
        ),
        sa.CheckConstraint(
            "credits_charged >= 0 OR credits_charged IS NULL",
            name="ck_uploads_credits_charged_nonneg",
        ),
    )

    # 3. Ledger
    op.create_table(
        "storage_ledger",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "user_id",
            _PG_UUID,
            sa.ForeignKey(_USERS_FK, ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_type", sa.String(20), nullable=False),
        sa.Column("credits_amount", sa.BigInteger, nullable=False),
        sa.Column(
            "upload_id",
            _PG_UUID,
            sa.ForeignKey("uploads.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column(
            "metadata",
            sa.dialects.postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _created_at(),
        sa.CheckConstraint(
            "entry_type IN ('grant', 'charge', 'release', 'purchase', "
            "'admin_adjustment', 'refund')",
            name="ck_storage_ledger_entry_type",
        ),
    )

    # 4. Indexes
    # Idempotent begin: one upload per (user, key) when a key is given
    op.create_index(
        "uq_uploads_user_idempotency_key",
        "uploads",
        ["user_id", "idempotency_key"],
        unique=True,
        postgresql_where="idempotency_key IS NOT NULL",
    )
    # Cleanup sweep scans pending uploads by age
    op.create_index(
        "ix_uploads_pending_created",
        "uploads",
        ["created_at"],
        postgresql_where="status = 'pending'",
    )
    op.create_index("ix_uploads_user_id", "uploads", ["user_id"])
    op.create_index(
        "ix_storage_ledger_user_created",
        "storage_ledger",
        ["user_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "ix_storage_ledger_upload_id",
        "storage_ledger",
        ["upload_id"],
        postgresql_where="upload_id IS NOT NULL",
    )
    # Duplicate payment webhooks must not credit twice
    op.create_index(
        "uq_storage_ledger_type_reference",
        "storage_ledger",
        ["entry_type", "reference"],
        unique=True,
        postgresql_where="reference IS NOT NULL",
    )


def downgrade() -> None:
    """Drop storage accounting tables."""
    op.drop_index("uq_storage_ledger_type_reference", table_name="storage_ledger")
    op.drop_index("ix_storage_ledger_upload_id", table_name="storage_ledger")
    op.drop_index("ix_storage_ledger_user_created", table_name="storage_ledger")
    op.drop_index("ix_uploads_user_id", table_name="uploads")
    op.drop_index("ix_uploads_pending_created", table_name="uploads")
    op.drop_index("uq_uploads_user_idempotency_key", table_name="uploads")

    op.drop_table("storage_ledger")
    op.drop_table("uploads")
    op.drop_table("storage_accounts")
