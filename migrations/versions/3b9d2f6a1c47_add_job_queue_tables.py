"""add job queue and dead letter tables

Revision ID: 3b9d2f6a1c47
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b9d2f6a1c47"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False, comment="Handler dispatch key"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            server_default=sa.text("'{}'"),
            comment="Handler-owned parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|running|completed|dead",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher is claimed first",
        ),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be claimed",
        ),
        # Lifecycle timestamps
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True, comment="Last failure reason"),
        # Recurrence metadata
        sa.Column(
            "is_recurring", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("cron_expression", sa.Text, nullable=True),
        # Tracing and deduplication
        sa.Column(
            "idempotency_key",
            sa.Text,
            nullable=True,
            comment="Caller-supplied deduplication token",
        ),
        sa.Column("created_by", sa.Text, nullable=True, comment="Origin tag"),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'dead')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("max_retries >= 0", name="jobs_max_retries_check"),
        sa.CheckConstraint("retry_count >= 0", name="jobs_retry_count_check"),
    )

    # Claim path: pending rows by eligibility time
    op.create_index("ix_jobs_status_run_at", "jobs", ["status", "run_at"])
    op.create_index("ix_jobs_job_type_status", "jobs", ["job_type", "status"])

    # One live job per idempotency key; dead jobs release the key
    op.create_index(
        "ix_jobs_idempotency_key_active",
        "jobs",
        ["idempotency_key"],
        unique=True,
        postgresql_where=sa.text(
            "idempotency_key IS NOT NULL "
            "AND status IN ('pending', 'running', 'completed')"
        ),
    )

    op.create_table(
        "dead_letter_jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "original_job_id",
            sa.Uuid,
            nullable=False,
            comment="Job this entry was taken from",
        ),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column(
            "payload", sa.JSON, nullable=False, server_default=sa.text("'{}'")
        ),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("original_created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "dead_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_index("ix_dead_letter_jobs_dead_at", "dead_letter_jobs", ["dead_at"])
    op.create_index("ix_dead_letter_jobs_job_type", "dead_letter_jobs", ["job_type"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("dead_letter_jobs")
    op.drop_table("jobs")
