"""Directory models: regions, HEIs, programs and users."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_tracker.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Region(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Administrative region an HEI and an RC belong to."""

    __tablename__ = "region"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class HEI(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Higher Education Institution."""

    __tablename__ = "hei"

    uii: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("region.id"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive')", name="hei_status_check"),
    )


class Program(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Scholarship or grant program funds are disbursed under."""

    __tablename__ = "program"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """System user. ``role`` holds a ``Role`` value."""

    __tablename__ = "app_user"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    hei_id: Mapped[UUID | None] = mapped_column(ForeignKey("hei.id"), nullable=True)
    region_id: Mapped[UUID | None] = mapped_column(ForeignKey("region.id"), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        UniqueConstraint("email", name="app_user_email_unique"),
        CheckConstraint(
            "role IN ('Super Admin', 'Admin', 'Regional Coordinator', 'Accountant', 'HEI')",
            name="app_user_role_check",
        ),
        CheckConstraint("status IN ('active', 'inactive')", name="app_user_status_check"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"
