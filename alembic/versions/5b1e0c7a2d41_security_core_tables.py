"""security core tables

Revision ID: 5b1e0c7a2d41
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e0c7a2d41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# el ORM guarda el nombre del miembro del enum, no su valor
role_enum = sa.Enum("user", "editor", "admin", name="roleenum")
status_enum = sa.Enum("active", "suspended", "deleted", name="principalstatus")
direction_enum = sa.Enum("from_external", "to_external", name="syncdirection")


def upgrade() -> None:
    op.create_table(
        "principals",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(255), nullable=False),
        sa.Column("last_name", sa.String(255), nullable=False),
        sa.Column("image_url", sa.String(512), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("status", status_enum, nullable=False),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_principals_email", "principals", ["email"])

    op.create_table(
        "principal_preferences",
        sa.Column("principal_id", sa.String(64),
                  sa.ForeignKey("principals.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("theme", sa.String(16), nullable=False),
        sa.Column("language", sa.String(16), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("email_notifications", sa.Boolean(), nullable=False),
        sa.Column("marketing_emails", sa.Boolean(), nullable=False),
        sa.Column("weekly_digest", sa.Boolean(), nullable=False),
        sa.Column("auto_save", sa.Boolean(), nullable=False),
        sa.Column("auto_save_interval", sa.Integer(), nullable=False),
    )

    op.create_table(
        "principal_profiles",
        sa.Column("principal_id", sa.String(64),
                  sa.ForeignKey("principals.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("writing_genres", sa.JSON(), nullable=False),
        sa.Column("experience_level", sa.String(64), nullable=True),
        sa.Column("social_links", sa.JSON(), nullable=False),
        sa.Column("goals", sa.JSON(), nullable=False),
    )

    op.create_table(
        "totp_secrets",
        sa.Column("principal_id", sa.String(64), primary_key=True),
        sa.Column("encrypted_secret", sa.Text(), nullable=False),
        sa.Column("last_used_step", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "backup_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("principal_id", "code_hash", name="uq_backup_code_principal_hash"),
    )
    op.create_index("ix_backup_codes_principal_id", "backup_codes", ["principal_id"])

    op.create_table(
        "login_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_active_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("end_reason", sa.String(64), nullable=True),
    )
    op.create_index("ix_login_sessions_token", "login_sessions", ["token"], unique=True)
    op.create_index("ix_login_sessions_principal_id", "login_sessions", ["principal_id"])
    op.create_index("ix_login_sessions_last_active_at", "login_sessions", ["last_active_at"])
    op.create_index("ix_login_sessions_expires_at", "login_sessions", ["expires_at"])
    op.create_index("ix_login_sessions_is_active", "login_sessions", ["is_active"])

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("session_token", sa.String(128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_security_events_principal_id", "security_events", ["principal_id"])
    op.create_index("ix_security_events_kind", "security_events", ["kind"])
    op.create_index("ix_security_events_created_at", "security_events", ["created_at"])

    op.create_table(
        "sync_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("principal_id", sa.String(64), nullable=False),
        sa.Column("direction", direction_enum, nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("conflicts", sa.JSON(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sync_records_principal_id", "sync_records", ["principal_id"])
    op.create_index("ix_sync_records_created_at", "sync_records", ["created_at"])


def downgrade() -> None:
    op.drop_table("sync_records")
    op.drop_table("security_events")
    op.drop_table("login_sessions")
    op.drop_table("backup_codes")
    op.drop_table("totp_secrets")
    op.drop_table("principal_profiles")
    op.drop_table("principal_preferences")
    op.drop_table("principals")
