"""initial schema: accounts, roles, section grants, audit, forms, beneficiaries, communities, volunteers

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-02-02 10:12:44.201318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def upgrade() -> None:
    # Idempotent: tables created earlier by Base.metadata.create_all() are left alone.
    conn = op.get_bind()
    existing_tables = set(sa.inspect(conn).get_table_names())

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("description", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_sections" not in existing_tables:
        op.create_table(
            "role_sections",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("section_key", sa.String(64), primary_key=True),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("display_name", sa.String(128), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True),
            *_timestamps(),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
        )

    if "user_section_permissions" not in existing_tables:
        op.create_table(
            "user_section_permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("section_key", sa.String(64), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            _user_fk("created_by_user_id"),
            sa.UniqueConstraint("user_id", "section_key", name="uq_user_section"),
        )
        op.create_index("idx_user_section_permissions_user", "user_section_permissions", ["user_id"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(45), nullable=True),
            _user_fk("actor_user_id"),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )

    if "form_templates" not in existing_tables:
        op.create_table(
            "form_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(320), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("section_location", sa.String(64), nullable=False),
            sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
        )
        op.create_index("idx_form_templates_location", "form_templates", ["section_location"])
        op.create_index("idx_form_templates_active", "form_templates", ["is_active", "deleted_at"])

    if "beneficiaries" not in existing_tables:
        op.create_table(
            "beneficiaries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("age", sa.Integer(), nullable=False),
            sa.Column("gender", sa.String(16), nullable=False),
            sa.Column("dpi", sa.String(13), nullable=True),
            sa.Column("program", sa.String(128), nullable=False),
            sa.Column("admission_date", sa.Date(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("department", sa.String(128), nullable=False),
            sa.Column("municipality", sa.String(128), nullable=False),
            sa.Column("village", sa.String(100), nullable=True),
            sa.Column("address", sa.String(255), nullable=True),
            sa.Column("google_maps_url", sa.Text(), nullable=True),
            sa.Column("personal_contact", sa.String(100), nullable=True),
            sa.Column("personal_phone", sa.String(32), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("photo_storage_key", sa.String(512), nullable=True),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
            _user_fk("updated_by_user_id"),
        )
        op.create_index("idx_beneficiaries_name", "beneficiaries", ["name"])
        op.create_index("idx_beneficiaries_program", "beneficiaries", ["program"])
        op.create_index("idx_beneficiaries_department", "beneficiaries", ["department"])

    if "communities" not in existing_tables:
        op.create_table(
            "communities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("registration_date", sa.Date(), nullable=True),
            sa.Column("department", sa.String(128), nullable=False),
            sa.Column("municipality", sa.String(128), nullable=False),
            sa.Column("villages", sa.Text(), nullable=True),
            sa.Column("google_maps_url", sa.Text(), nullable=True),
            sa.Column("leader_name", sa.String(128), nullable=True),
            sa.Column("leader_phone", sa.String(32), nullable=True),
            sa.Column("is_in_leaders_group", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(16), nullable=False, server_default="activa"),
            sa.Column("inactive_reason", sa.Text(), nullable=True),
            sa.Column("classification", sa.String(16), nullable=True),
            sa.Column("total_families", sa.Integer(), nullable=True),
            sa.Column("families_in_ra", sa.Integer(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
            _user_fk("updated_by_user_id"),
        )
        op.create_index("idx_communities_department", "communities", ["department"])
        op.create_index("idx_communities_status", "communities", ["status"])

    if "volunteers" not in existing_tables:
        op.create_table(
            "volunteers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("volunteer_type", sa.String(32), nullable=False),
            sa.Column("organization", sa.String(255), nullable=True),
            sa.Column("shift", sa.String(32), nullable=False),
            sa.Column("work_date", sa.Date(), nullable=False),
            sa.Column("hours", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("phone", sa.String(32), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
        )
        op.create_index("idx_volunteers_work_date", "volunteers", ["work_date"])
        op.create_index("idx_volunteers_type", "volunteers", ["volunteer_type"])
        op.create_index("idx_volunteers_organization", "volunteers", ["organization"])


def downgrade() -> None:
    for table in (
        "volunteers",
        "communities",
        "beneficiaries",
        "form_templates",
        "audit_events",
        "user_section_permissions",
        "users",
        "role_sections",
        "role_permissions",
        "permissions",
        "roles",
    ):
        op.drop_table(table)
