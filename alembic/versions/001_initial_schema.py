"""Initial schema with jobs, tasks, worker heartbeat and discovered candidates

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

ENUMS = {
    "job_type": ("render", "edit", "discover", "ai_short"),
    "job_status": ("ready", "processing", "done", "failed"),
    "task_kind": ("render", "edit"),
    "task_status": ("queued", "processing", "done", "failed"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION
                WHEN duplicate_object THEN null;
            END $$;
        """)

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", _enum("job_type"), nullable=False),
        sa.Column("status", _enum("job_status"), nullable=False, server_default="ready"),
        sa.Column("owner", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create tasks table
    op.create_table(
        "tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", _enum("task_kind"), nullable=False),
        sa.Column("status", _enum("task_status"), nullable=False, server_default="queued"),
        sa.Column("owner", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("input", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "worker_heartbeat",
        sa.Column("worker_id", sa.String(255), nullable=False),
        sa.Column("worker_type", sa.String(64), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("worker_id"),
    )

    op.create_table(
        "discovered_candidates",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("source_platform", sa.String(32), nullable=False),
        sa.Column("clip_url", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("thumbnail_url", sa.Text, nullable=True),
        sa.Column("duration", sa.Float, nullable=True),
        sa.Column("viral_score", sa.Integer, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="candidate"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
    )

    # Create indexes
    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_tasks_job_id", "tasks", ["job_id"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_discovered_candidates_job_id", "discovered_candidates", ["job_id"])

    # Create partial indexes for the oldest-first claim scans
    op.execute("""
        CREATE INDEX ix_jobs_claim_poll
        ON jobs (type, created_at)
        WHERE status = 'ready'
    """)

    op.execute("""
        CREATE INDEX ix_tasks_claim_poll
        ON tasks (kind, created_at)
        WHERE status = 'queued'
    """)


def downgrade() -> None:
    # Drop indexes
    op.execute("DROP INDEX IF EXISTS ix_tasks_claim_poll")
    op.execute("DROP INDEX IF EXISTS ix_jobs_claim_poll")
    op.drop_index("ix_discovered_candidates_job_id")
    op.drop_index("ix_tasks_status")
    op.drop_index("ix_tasks_job_id")
    op.drop_index("ix_jobs_status")
    op.drop_index("ix_jobs_type")

    # Drop tables
    op.drop_table("discovered_candidates")
    op.drop_table("worker_heartbeat")
    op.drop_table("tasks")
    op.drop_table("jobs")

    # Drop enums
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
