from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.ngoadmin.models import Base


class Community(Base):
    __tablename__ = "communities"
    __table_args__ = (
        Index("idx_communities_department", "department"),
        Index("idx_communities_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    registration_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Location
    department: Mapped[str] = mapped_column(String(128), nullable=False)
    municipality: Mapped[str] = mapped_column(String(128), nullable=False)
    villages: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_maps_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Leadership
    leader_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    leader_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_in_leaders_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="activa")  # activa, inactiva, suspendida
    inactive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    classification: Mapped[str | None] = mapped_column(String(16), nullable=True)  # Pequeña, Mediana, Grande

    total_families: Mapped[int | None] = mapped_column(Integer, nullable=True)
    families_in_ra: Mapped[int | None] = mapped_column(Integer, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def display_name(self) -> str:
        return f"{self.municipality}, {self.department}"
