"""User model - identity anchor for storage accounts.

Authentication itself is external: the service only verifies session
tokens. The row exists so storage accounts, uploads and ledger entries have
an owner to reference, and so admin access and token revocation can be
checked.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage_quota.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from storage_quota.models.storage import StorageAccount

_DEFAULT_UUID = text("gen_random_uuid()")


class User(Base, TimestampMixin):
    """User known to the storage service.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        token_invalidated_before: JWTs issued before this are rejected.
        is_admin: Whether the user may grant storage and audit accounts.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    token_invalidated_before: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )

    # Relationships
    storage_account: Mapped["StorageAccount | None"] = relationship(
        "StorageAccount",
        back_populates="user",
        uselist=False,
    )
