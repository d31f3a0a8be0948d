from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ngoadmin.models import Base

if TYPE_CHECKING:
    from app.ngoadmin.models import User


class FormTemplate(Base):
    __tablename__ = "form_templates"
    __table_args__ = (
        Index("idx_form_templates_location", "section_location"),
        Index("idx_form_templates_active", "is_active", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    section_location: Mapped[str] = mapped_column(String(64), nullable=False)  # see sections.FORM_LOCATIONS

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Soft delete: deleted_at set means "in the trash", restorable.
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    questions: Mapped[list["FormQuestion"]] = relationship(
        back_populates="form",
        cascade="all, delete-orphan",
        order_by="FormQuestion.order_index",
        lazy="selectin",
    )

    @property
    def status(self) -> str:
        if self.deleted_at is not None:
            return "deleted"
        return "active" if self.is_active else "inactive"


class FormQuestion(Base):
    __tablename__ = "form_questions"
    __table_args__ = (Index("idx_form_questions_form", "form_template_id", "order_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False)
    question_type: Mapped[str] = mapped_column(String(32), nullable=False)  # see service.QUESTION_TYPES
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # JSON string: {"options": [...]} for choice types, {"min": 1, "max": 5} for scales.
    config_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    form: Mapped[FormTemplate] = relationship(back_populates="questions")

    @property
    def config(self) -> dict:
        return json.loads(self.config_json) if self.config_json else {}

    @property
    def options(self) -> list[str]:
        return list(self.config.get("options") or [])


class FormSubmission(Base):
    __tablename__ = "form_submissions"
    __table_args__ = (Index("idx_form_submissions_form", "form_template_id", "submitted_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False)
    # Null for anonymous submissions through a public form.
    submitted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    form_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    answers: Mapped[list["FormAnswer"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", lazy="selectin"
    )
    submitted_by: Mapped["User | None"] = relationship(foreign_keys=[submitted_by_user_id], lazy="selectin")

    def answer_map(self) -> dict[int, object]:
        return {a.question_id: a.value for a in self.answers}


class FormAnswer(Base):
    __tablename__ = "form_answers"
    __table_args__ = (Index("idx_form_answers_submission", "submission_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)

    submission: Mapped[FormSubmission] = relationship(back_populates="answers")

    @property
    def value(self):
        return json.loads(self.value_json)
