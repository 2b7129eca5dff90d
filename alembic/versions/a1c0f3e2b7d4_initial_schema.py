"""initial schema: catalog, sync queue, app settings

Revision ID: a1c0f3e2b7d4
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hey future me - the three tables the whole app runs on:
- catalog_entries: content_hash UNIQUE (dedup), local_path UNIQUE, remote_key indexed
- sync_queue: integer id for FIFO tie-breaks, locked_by/locked_at lease columns
- app_settings: key/value user settings + secrets (category 'secret')
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c0f3e2b7d4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "catalog_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("asset_class", sa.String(10), nullable=False),
        sa.Column("local_path", sa.String(2048), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("bpm", sa.Float(), nullable=True),
        sa.Column("favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("remote_key", sa.String(1024), nullable=True),
        sa.Column("remote_url", sa.String(2048), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("local_path"),
        sa.UniqueConstraint("content_hash"),
    )
    op.create_index("ix_catalog_entries_asset_class", "catalog_entries", ["asset_class"])
    op.create_index("ix_catalog_entries_remote_key", "catalog_entries", ["remote_key"])
    op.create_index("ix_catalog_entries_created_at", "catalog_entries", ["created_at"])

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("entry_id", sa.String(36), nullable=True),
        sa.Column("remote_key", sa.String(1024), nullable=True),
        sa.Column("asset_class", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(100), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_queue_status", "sync_queue", ["status"])
    op.create_index(
        "ix_sync_queue_status_next_retry", "sync_queue", ["status", "next_retry_at"]
    )
    op.create_index("ix_sync_queue_entry_id", "sync_queue", ["entry_id"])
    op.create_index("ix_sync_queue_remote_key", "sync_queue", ["remote_key"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("value_type", sa.String(20), nullable=False, server_default="string"),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_app_settings_category", "app_settings", ["category"])


def downgrade() -> None:
    op.drop_index("ix_app_settings_category", table_name="app_settings")
    op.drop_table("app_settings")
    op.drop_index("ix_sync_queue_remote_key", table_name="sync_queue")
    op.drop_index("ix_sync_queue_entry_id", table_name="sync_queue")
    op.drop_index("ix_sync_queue_status_next_retry", table_name="sync_queue")
    op.drop_index("ix_sync_queue_status", table_name="sync_queue")
    op.drop_table("sync_queue")
    op.drop_index("ix_catalog_entries_created_at", table_name="catalog_entries")
    op.drop_index("ix_catalog_entries_remote_key", table_name="catalog_entries")
    op.drop_index("ix_catalog_entries_asset_class", table_name="catalog_entries")
    op.drop_table("catalog_entries")
