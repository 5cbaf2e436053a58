"""create projects, generations and generation_versions

Revision ID: 0001
Revises:
Create Date: 2026-10-18

  - projects: one row per JIRA project key (unique, uppercase)
  - generations: lifecycle record + current content + publication flags
  - generation_versions: superseded content, unique per version number
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. projects ─────────────────────────────────────────
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_key", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("total_generations", sa.Integer(), server_default="0", nullable=False),
        sa.Column("first_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_project_key", "projects", ["project_key"], unique=True)

    # ── 2. generations ──────────────────────────────────────
    op.create_table(
        "generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("issue_key", sa.String(64), nullable=False),
        sa.Column("issue_title", sa.Text(), nullable=True),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generation_time_seconds", sa.Float(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Numeric(12, 8), nullable=True),
        sa.Column("result_content", sa.Text(), nullable=True),
        sa.Column("result_filename", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("published", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_by", sa.String(255), nullable=True),
        sa.Column("current_version", sa.Integer(), server_default="1", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_generations_owner_email", "generations", ["owner_email"])
    op.create_index("ix_generations_issue_key", "generations", ["issue_key"])
    op.create_index("ix_generations_project_id", "generations", ["project_id"])
    op.create_index("ix_generations_published_status", "generations", ["published", "status"])
    op.create_index("ix_generations_created_at", "generations", ["created_at"])

    # ── 3. generation_versions ──────────────────────────────
    op.create_table(
        "generation_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("generation_id", sa.Uuid(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("updated_by", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "generation_id",
            "version_number",
            name="uq_generation_versions_generation_version",
        ),
    )
    op.create_index(
        "ix_generation_versions_generation_id",
        "generation_versions",
        ["generation_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_generation_versions_generation_id", table_name="generation_versions")
    op.drop_table("generation_versions")

    op.drop_index("ix_generations_created_at", table_name="generations")
    op.drop_index("ix_generations_published_status", table_name="generations")
    op.drop_index("ix_generations_project_id", table_name="generations")
    op.drop_index("ix_generations_issue_key", table_name="generations")
    op.drop_index("ix_generations_owner_email", table_name="generations")
    op.drop_table("generations")

    op.drop_index("ix_projects_project_key", table_name="projects")
    op.drop_table("projects")
