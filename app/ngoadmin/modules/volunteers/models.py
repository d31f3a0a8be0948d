from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.ngoadmin.models import Base


class Volunteer(Base):
    __tablename__ = "volunteers"
    __table_args__ = (
        Index("idx_volunteers_work_date", "work_date"),
        Index("idx_volunteers_type", "volunteer_type"),
        Index("idx_volunteers_organization", "organization"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    volunteer_type: Mapped[str] = mapped_column(String(32), nullable=False)  # Agrícola, Víveres, Picking
    organization: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shift: Mapped[str] = mapped_column(String(32), nullable=False)  # Mañana, Tarde, Día completo
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
