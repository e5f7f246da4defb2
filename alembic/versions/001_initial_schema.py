"""Initial schema with pipeline queue, dead-letter and ledger tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE queue_record_state AS ENUM ('queued', 'leased');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Main queue
    op.create_table(
        "pipeline_jobs",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("object_key", sa.Text, nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "state",
            postgresql.ENUM("queued", "leased", name="queue_record_state", create_type=False),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("receipt", sa.String(64), nullable=True),
        sa.Column("leased_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # Partial index for lease polling
    op.execute("""
        CREATE INDEX ix_pipeline_jobs_lease_poll
        ON pipeline_jobs (visible_at)
        WHERE state = 'queued'
    """)

    # Partial index for lease expiry
    op.execute("""
        CREATE INDEX ix_pipeline_jobs_lease_expiry
        ON pipeline_jobs (lease_expires_at)
        WHERE state = 'leased'
    """)

    # Dead-letter sink
    op.create_table(
        "pipeline_dead_letters",
        sa.Column("job_id", sa.String(255), nullable=False),
        sa.Column("object_key", sa.Text, nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_pipeline_dead_letters_dead_lettered_at",
        "pipeline_dead_letters",
        ["dead_lettered_at"],
    )

    # Idempotency ledger
    op.create_table(
        "pipeline_ledger",
        sa.Column("job_id", sa.String(255), nullable=False),
        sa.Column("result_key", sa.Text, nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_pipeline_ledger_completed_at",
        "pipeline_ledger",
        ["completed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_pipeline_ledger_completed_at")
    op.drop_table("pipeline_ledger")

    op.drop_index("ix_pipeline_dead_letters_dead_lettered_at")
    op.drop_table("pipeline_dead_letters")

    op.execute("DROP INDEX IF EXISTS ix_pipeline_jobs_lease_expiry")
    op.execute("DROP INDEX IF EXISTS ix_pipeline_jobs_lease_poll")
    op.drop_table("pipeline_jobs")

    op.execute("DROP TYPE IF EXISTS queue_record_state")
