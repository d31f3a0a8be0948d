from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.ngoadmin.models import Base


class Beneficiary(Base):
    __tablename__ = "beneficiaries"
    __table_args__ = (
        Index("idx_beneficiaries_name", "name"),
        Index("idx_beneficiaries_program", "program"),
        Index("idx_beneficiaries_department", "department"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Personal
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String(16), nullable=False)  # Masculino, Femenino
    dpi: Mapped[str | None] = mapped_column(String(13), nullable=True)  # national id, 13 digits

    # Program
    program: Mapped[str] = mapped_column(String(128), nullable=False)
    admission_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Location
    department: Mapped[str] = mapped_column(String(128), nullable=False)
    municipality: Mapped[str] = mapped_column(String(128), nullable=False)
    village: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_maps_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    personal_contact: Mapped[str | None] = mapped_column(String(100), nullable=True)
    personal_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    photo_storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
