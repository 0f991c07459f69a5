"""Add logical foreign keys and per-project detection metadata.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "logical_foreign_keys",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("source_table_id", sa.Integer(), nullable=False),
        sa.Column("source_column_ids", sa.String(length=512), nullable=False),
        sa.Column("target_table_id", sa.Integer(), nullable=False),
        sa.Column("target_column_ids", sa.String(length=512), nullable=False),
        sa.Column("discovery_method", sa.String(length=32), nullable=False),
        sa.Column("confidence_score", sa.Numeric(precision=3, scale=2), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="SUGGESTED"
        ),
        sa.Column("detection_reason", sa.Text(), nullable=True),
        sa.Column("discovery_methods", sa.String(length=255), nullable=True),
        sa.Column("rejected_score", sa.Numeric(precision=3, scale=2), nullable=True),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('SUGGESTED', 'CONFIRMED', 'REJECTED')",
            name="ck_logical_fk_status",
        ),
        sa.CheckConstraint(
            "discovery_method IN ('MANUAL', 'NAME_CONVENTION', 'SP_JOIN', 'CORROBORATED')",
            name="ck_logical_fk_discovery_method",
        ),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_logical_fk_confidence_range",
        ),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_table_id"], ["db_tables.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_table_id"], ["db_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "project_id",
            "source_table_id",
            "source_column_ids",
            "target_table_id",
            "target_column_ids",
            name="uq_logical_fk_mapping",
        ),
    )
    op.create_index(
        "ix_logical_foreign_keys_project_id", "logical_foreign_keys", ["project_id"]
    )
    op.create_index(
        "ix_logical_foreign_keys_project_status",
        "logical_foreign_keys",
        ["project_id", "status"],
    )

    op.add_column(
        "projects",
        sa.Column("last_detection_run_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "projects",
        sa.Column("detection_algorithm_version", sa.String(length=32), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("projects", "detection_algorithm_version")
    op.drop_column("projects", "last_detection_run_at")
    op.drop_index("ix_logical_foreign_keys_project_status", table_name="logical_foreign_keys")
    op.drop_index("ix_logical_foreign_keys_project_id", table_name="logical_foreign_keys")
    op.drop_table("logical_foreign_keys")
