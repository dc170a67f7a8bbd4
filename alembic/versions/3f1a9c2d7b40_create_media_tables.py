"""create_media_tables

Revision ID: 3f1a9c2d7b40
Revises:
Create Date: 2026-10-18 09:12:41.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

media_type = sa.Enum("IMAGE", "VIDEO", "MUSIC", "AUDIO", name="mediatype")
request_status = sa.Enum("PENDING", "PROCESSING", "SUCCEEDED", "FAILED", name="requeststatus")
# SQLModel persists enum member names
media_job_type = sa.Enum(
    "INITIATE_VIDEO_GENERATION", "POLL_VIDEO_GENERATION", name="mediajobtype"
)
media_job_status = sa.Enum("QUEUED", "RUNNING", "COMPLETED", "FAILED", name="mediajobstatus")


def upgrade() -> None:
    """Create projects, media_generations, media_results and media_jobs."""
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    op.create_table(
        "media_generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("media_type", media_type, nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("status", request_status, nullable=False),
        sa.Column("error_message", sa.String(length=4000), nullable=True),
        sa.Column("operation_id", sa.String(length=255), nullable=True),
        sa.Column("operation_name", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in (
        "owner_id",
        "project_id",
        "media_type",
        "status",
        "operation_id",
        "operation_name",
        "created_at",
    ):
        op.create_index(f"ix_media_generations_{column}", "media_generations", [column])

    op.create_table(
        "media_results",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("media_generation_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("result_url", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["media_generation_id"], ["media_generations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "media_generation_id", "position", name="uq_media_results_generation_position"
        ),
    )
    op.create_index(
        "ix_media_results_media_generation_id", "media_results", ["media_generation_id"]
    )

    op.create_table(
        "media_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_type", media_job_type, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", media_job_status, nullable=False),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(length=4000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_media_jobs_job_type", "media_jobs", ["job_type"])
    op.create_index("ix_media_jobs_status", "media_jobs", ["status"])
    op.create_index("ix_media_jobs_run_at", "media_jobs", ["run_at"])


def downgrade() -> None:
    """Drop media tables and enum types."""
    op.drop_table("media_jobs")
    op.drop_table("media_results")
    op.drop_table("media_generations")
    op.drop_table("projects")

    bind = op.get_bind()
    for enum_type in (media_job_status, media_job_type, request_status, media_type):
        enum_type.drop(bind, checkfirst=True)
