"""Gateway API key database model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base, TimestampMixin


class ApiKey(Base, TimestampMixin):
    """Credential of the trusted gateway that asserts ``X-Principal``.

    Only the HMAC of the key is stored. The plaintext is shown once, by the
    CLI that creates it.
    """

    __tablename__ = "api_keys"

    key_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="HMAC-SHA256 hex digest of the key",
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Which gateway or deployment holds the key",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        insert_default=True,
        nullable=False,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
