"""Initial schema: connections, jobs, schema cache

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")
OPEN_STATES_SQL = "state IN ('created', 'retry', 'active')"


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "jobs" in existing_tables:
        # Tables already exist, skip migration
        return

    # Saved target databases (owned by the connection CRUD layer)
    op.create_table(
        "database_connections",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("db_type", sa.Text, nullable=False),
        sa.Column("host", sa.Text),
        sa.Column("port", sa.Integer),
        sa.Column("database", sa.Text),
        sa.Column("username", sa.Text),
        sa.Column("password", sa.Text),
        sa.Column("ssl", sa.Boolean, default=False),
        sa.Column("connection_string", sa.Text),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("user_id", sa.Text),
        sa.Column("state", sa.Text, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_limit", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_delay", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_backoff", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("expire_after_seconds", sa.Integer, nullable=False),
        sa.Column("singleton_key", sa.Text),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("progress", JSON_TYPE),
        sa.Column("output", JSON_TYPE),
        sa.Column("start_after", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("idx_jobs_type_state_start_after", "jobs", ["type", "state", "start_after"])
    op.create_index("idx_jobs_user_id", "jobs", ["user_id"])
    op.create_index(
        "uq_jobs_singleton_key_open",
        "jobs",
        ["singleton_key"],
        unique=True,
        postgresql_where=sa.text(OPEN_STATES_SQL),
        sqlite_where=sa.text(OPEN_STATES_SQL),
    )

    # Create schema cache table
    op.create_table(
        "connection_schema_cache",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "connection_id",
            UUID(as_uuid=True),
            sa.ForeignKey("database_connections.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("schema_data", JSON_TYPE),
        sa.Column("training_status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("training_started_at", sa.DateTime),
        sa.Column("last_trained_at", sa.DateTime),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_schema_cache_training_status", "connection_schema_cache", ["training_status"])
    op.create_index("idx_schema_cache_last_trained_at", "connection_schema_cache", ["last_trained_at"])


def downgrade() -> None:
    op.drop_table("connection_schema_cache")
    op.drop_table("jobs")
    op.drop_table("database_connections")
