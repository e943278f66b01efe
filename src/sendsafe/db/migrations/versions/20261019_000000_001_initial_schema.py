"""Initial schema: deliveries, files, access codes and access log.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DELIVERY_STATUS = postgresql.ENUM(
    "active", "expired", "revoked", name="delivery_status", create_type=False
)
ACCESS_ACTION = postgresql.ENUM(
    "view",
    "download",
    "code_requested",
    "code_verified",
    "revoked",
    "destroyed",
    name="access_action",
    create_type=False,
)


def _uuid_pk(name: str = "id") -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply migration: create all tables."""
    DELIVERY_STATUS.create(op.get_bind(), checkfirst=True)
    ACCESS_ACTION.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "deliveries",
        _uuid_pk(),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", DELIVERY_STATUS, nullable=False, server_default="active"),
        sa.Column("current_views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_views", sa.Integer(), nullable=False),
        sa.Column("current_downloads", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_downloads", sa.Integer(), nullable=False),
        sa.Column("files_purged_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_deliveries"),
        sa.CheckConstraint(
            "current_views <= max_views", name="ck_deliveries_views_within_limit"
        ),
        sa.CheckConstraint(
            "current_downloads <= max_downloads",
            name="ck_deliveries_downloads_within_limit",
        ),
        sa.CheckConstraint(
            "max_views BETWEEN 1 AND 1000", name="ck_deliveries_max_views_range"
        ),
        sa.CheckConstraint(
            "max_downloads BETWEEN 1 AND 100", name="ck_deliveries_max_downloads_range"
        ),
    )
    op.create_index("ix_deliveries_sender_id", "deliveries", ["sender_id"])
    op.create_index("ix_deliveries_status", "deliveries", ["status"])
    op.create_index("ix_deliveries_expires_at", "deliveries", ["expires_at"])

    op.create_table(
        "delivery_files",
        _uuid_pk(),
        _created_at(),
        sa.Column("delivery_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_delivery_files"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.id"],
            name="fk_delivery_files_delivery_id_deliveries",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_delivery_files_delivery_id", "delivery_files", ["delivery_id"])

    op.create_table(
        "access_codes",
        _uuid_pk(),
        _created_at(),
        sa.Column("delivery_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_access_codes"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.id"],
            name="fk_access_codes_delivery_id_deliveries",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "attempts <= max_attempts", name="ck_access_codes_attempts_within_limit"
        ),
    )
    op.create_index(
        "ix_access_codes_lookup",
        "access_codes",
        ["delivery_id", "recipient_email", "created_at"],
    )

    op.create_table(
        "access_logs",
        _uuid_pk(),
        _created_at(),
        sa.Column("delivery_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", ACCESS_ACTION, nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.String(1000), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_access_logs"),
    )
    op.create_index("ix_access_logs_delivery_id", "access_logs", ["delivery_id"])
    op.create_index("ix_access_logs_action", "access_logs", ["action"])
    op.create_index("ix_access_logs_created_at", "access_logs", ["created_at"])


def downgrade() -> None:
    """Revert migration: drop all tables."""
    op.drop_table("access_logs")
    op.drop_table("access_codes")
    op.drop_table("delivery_files")
    op.drop_table("deliveries")
    ACCESS_ACTION.drop(op.get_bind(), checkfirst=True)
    DELIVERY_STATUS.drop(op.get_bind(), checkfirst=True)
