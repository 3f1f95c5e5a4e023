"""Create delayed_jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-17 00:00:00.000000

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

JOB_STATUSES = ("pending", "processing", "completed", "failed")
JOB_QUEUES = ("default", "high", "low", "bulk", "screenshot")


def upgrade() -> None:
    job_status = postgresql.ENUM(*JOB_STATUSES, name="job_status")
    job_queue = postgresql.ENUM(*JOB_QUEUES, name="job_queue")
    job_status.create(op.get_bind(), checkfirst=True)
    job_queue.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "delayed_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column(
            "queue",
            postgresql.ENUM(*JOB_QUEUES, name="job_queue", create_type=False),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        # json, not jsonb: payload key order is preserved
        sa.Column("payload", sa.JSON, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM(*JOB_STATUSES, name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column(
            "scheduled_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("leased_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
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
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("max_attempts >= 1", name="ck_delayed_jobs_max_attempts"),
        sa.CheckConstraint("attempts >= 0", name="ck_delayed_jobs_attempts"),
    )

    op.create_index("ix_delayed_jobs_job_type", "delayed_jobs", ["job_type"])
    op.create_index("ix_delayed_jobs_status", "delayed_jobs", ["status"])
    op.create_index("ix_delayed_jobs_failed_at", "delayed_jobs", ["failed_at"])

    # Partial index for queue polling
    op.execute("""
        CREATE INDEX ix_delayed_jobs_ready
        ON delayed_jobs (queue, priority, scheduled_at)
        WHERE status = 'pending'
    """)

    # Partial index for stale lease checks and concurrency counts
    op.execute("""
        CREATE INDEX ix_delayed_jobs_processing
        ON delayed_jobs (queue, leased_at)
        WHERE status = 'processing'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_delayed_jobs_processing")
    op.execute("DROP INDEX IF EXISTS ix_delayed_jobs_ready")
    op.drop_index("ix_delayed_jobs_failed_at")
    op.drop_index("ix_delayed_jobs_status")
    op.drop_index("ix_delayed_jobs_job_type")

    op.drop_table("delayed_jobs")

    op.execute("DROP TYPE IF EXISTS job_queue")
    op.execute("DROP TYPE IF EXISTS job_status")
