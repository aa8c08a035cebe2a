"""Initial schema: job table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates the jobqueue_jobs table shared by all database-backed queues.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: Create jobqueue_jobs."""
    op.create_table(
        "jobqueue_jobs",
        sa.Column(
            "job_id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            autoincrement=True,
            nullable=False,
        ),
        sa.Column("queue_id", sa.String(100), nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("num_retries", sa.Integer(), nullable=False),
        # Unix timestamps, 0 when unset
        sa.Column("available", sa.BigInteger(), nullable=False),
        sa.Column("processed", sa.BigInteger(), nullable=False),
        sa.Column("expires", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("job_id", name=op.f("pk_jobqueue_jobs")),
    )
    op.create_index(
        "ix_jobqueue_jobs_queue_state_available",
        "jobqueue_jobs",
        ["queue_id", "state", "available"],
    )
    op.create_index("ix_jobqueue_jobs_expires", "jobqueue_jobs", ["expires"])


def downgrade() -> None:
    """Revert migration: Drop jobqueue_jobs."""
    op.drop_index("ix_jobqueue_jobs_expires", table_name="jobqueue_jobs")
    op.drop_index("ix_jobqueue_jobs_queue_state_available", table_name="jobqueue_jobs")
    op.drop_table("jobqueue_jobs")
