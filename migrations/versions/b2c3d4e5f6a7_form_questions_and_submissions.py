"""form questions, submissions and answers

Revision ID: b2c3d4e5f6a7
Revises: a0b1c2d3e4f5
Create Date: 2026-10-19 09:41:07.552803

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b2c3d4e5f6a7"
down_revision: Union[str, Sequence[str], None] = "a0b1c2d3e4f5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing_tables = set(sa.inspect(conn).get_table_names())

    if "form_questions" not in existing_tables:
        op.create_table(
            "form_questions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "form_template_id",
                sa.Integer(),
                sa.ForeignKey("form_templates.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("question_type", sa.String(32), nullable=False),
            sa.Column("title", sa.String(500), nullable=False),
            sa.Column("help_text", sa.Text(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("config_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_form_questions_form", "form_questions", ["form_template_id", "order_index"])

    if "form_submissions" not in existing_tables:
        op.create_table(
            "form_submissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "form_template_id",
                sa.Integer(),
                sa.ForeignKey("form_templates.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "submitted_by_user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("form_version", sa.Integer(), nullable=False, server_default="1"),
        )
        op.create_index("idx_form_submissions_form", "form_submissions", ["form_template_id", "submitted_at"])

    if "form_answers" not in existing_tables:
        op.create_table(
            "form_answers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "submission_id",
                sa.Integer(),
                sa.ForeignKey("form_submissions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "question_id",
                sa.Integer(),
                sa.ForeignKey("form_questions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("value_json", sa.Text(), nullable=False),
        )
        op.create_index("idx_form_answers_submission", "form_answers", ["submission_id"])


def downgrade() -> None:
    for table in ("form_answers", "form_submissions", "form_questions"):
        op.drop_table(table)
