"""Create projects, publish_versions and publish_jobs"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_publish_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(9), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("slug", sa.String(60), nullable=True, unique=True),
        sa.Column("subdomain_url", sa.String(255), nullable=True),
        sa.Column("published_url", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("primary_version_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_projects_user_id", "projects", ["user_id"])

    op.create_table(
        "publish_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("version_tag", sa.Text(), nullable=False),
        sa.Column("storage_prefix", sa.Text(), nullable=False),
        sa.Column("entrypoint", sa.Text(), nullable=False, server_default=sa.text("'index.html'")),
        sa.Column("checksum", sa.Text(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("build_time_ms", sa.Integer(), nullable=True),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("built_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("project_id", "version_tag", name="uq_publish_versions_project_tag"),
    )
    op.create_index("idx_publish_versions_project", "publish_versions", ["project_id", "built_at"])

    # Batch mode so SQLite, which cannot ALTER constraints in place, rebuilds the table.
    with op.batch_alter_table("projects") as batch_op:
        batch_op.create_foreign_key(
            "fk_projects_primary_version",
            "publish_versions",
            ["primary_version_id"],
            ["id"],
        )

    op.create_table(
        "publish_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default=sa.text("'queued'")),
        sa.Column("progress", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("log_url", sa.Text(), nullable=True),
        sa.Column("version_id", sa.String(36), sa.ForeignKey("publish_versions.id"), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_publish_jobs_status_created", "publish_jobs", ["status", "created_at"])
    op.create_index("idx_publish_jobs_project", "publish_jobs", ["project_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_publish_jobs_project", table_name="publish_jobs")
    op.drop_index("idx_publish_jobs_status_created", table_name="publish_jobs")
    op.drop_table("publish_jobs")
    with op.batch_alter_table("projects") as batch_op:
        batch_op.drop_constraint("fk_projects_primary_version", type_="foreignkey")
    op.drop_index("idx_publish_versions_project", table_name="publish_versions")
    op.drop_table("publish_versions")
    op.drop_index("ix_projects_user_id", table_name="projects")
    op.drop_table("projects")
