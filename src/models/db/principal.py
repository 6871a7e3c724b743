"""Principal (identity registry) database model."""

import enum

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base, TimestampMixin


class PrincipalRole(enum.StrEnum):
    """Role of a registered principal."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Principal(Base, TimestampMixin):
    """A registered wallet address with its role and display details.

    Wallet addresses are stored lowercase; lookups must normalize first.
    """

    __tablename__ = "principals"

    wallet_address: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        index=True,
    )
    role: Mapped[PrincipalRole] = mapped_column(
        Enum(PrincipalRole, name="principal_role"),
        nullable=False,
    )
    full_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    organization_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Hospital or practice for doctors",
    )
