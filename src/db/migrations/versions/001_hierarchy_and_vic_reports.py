"""Create console schema: hierarchy nodes, level assignments, VIC reports and timeline."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_hierarchy_and_vic_reports"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "console"

_NOW = sa.text("timezone('utc', now())")


def _timestamp(name: str, *, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        nullable=nullable,
        server_default=_NOW if default else None,
    )


def upgrade() -> None:
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")

    op.create_table(
        "hierarchy_nodes",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("level_name", sa.Text(), nullable=False),
        sa.Column(
            "parent_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.hierarchy_nodes.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        # NULL means the level kind does not declare leafness; callers fall back to the registry
        sa.Column("is_leaf_level", sa.Boolean(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("parent_id IS NULL OR parent_id <> id", name="ck_hierarchy_nodes_not_self"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_hierarchy_nodes_parent_id", "hierarchy_nodes", ["parent_id"], schema=SCHEMA
    )

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        schema=SCHEMA,
    )

    op.create_table(
        "level_assignments",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "level_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.hierarchy_nodes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("assigned_at"),
        sa.UniqueConstraint("user_id", "level_id", name="uq_level_assignments_user_level"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_level_assignments_level_id", "level_assignments", ["level_id"], schema=SCHEMA
    )

    op.create_table(
        "vic_reports",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="Pending"),
        sa.Column("priority", sa.Text(), nullable=False, server_default="Medium"),
        sa.Column("report_type", sa.Text(), nullable=False),
        sa.Column("submitted_by", sa.BigInteger(), nullable=False),
        _timestamp("submitted_at"),
        sa.Column(
            "current_level_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.hierarchy_nodes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("report_content", sa.Text(), nullable=False),
        sa.Column("voter_id_epic_no", sa.Text(), nullable=False),
        sa.Column("voter_first_name", sa.Text(), nullable=False),
        sa.Column("voter_last_name", sa.Text(), nullable=True),
        sa.Column("part_no", sa.Text(), nullable=False),
        sa.Column("voter_relative_name", sa.Text(), nullable=False),
        sa.Column(
            "attachments",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        _timestamp("resolved_at", nullable=True, default=False),
        sa.Column("resolved_by", sa.BigInteger(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("updated_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('Pending','In_Progress','Approved','Rejected','Resolved','Forwarded')",
            name="ck_vic_reports_status",
        ),
        sa.CheckConstraint(
            "priority IN ('Low','Medium','High','Critical')", name="ck_vic_reports_priority"
        ),
        sa.CheckConstraint(
            "report_type IN ('Complaint','Feedback','Issue','Other')",
            name="ck_vic_reports_type",
        ),
        sa.CheckConstraint("version >= 0", name="ck_vic_reports_version"),
        schema=SCHEMA,
    )
    op.create_index("ix_vic_reports_submitted_by", "vic_reports", ["submitted_by"], schema=SCHEMA)
    op.create_index(
        "ix_vic_reports_current_level",
        "vic_reports",
        ["current_level_id", "status"],
        schema=SCHEMA,
        postgresql_where=sa.text("NOT is_deleted"),
    )

    op.create_table(
        "vic_report_timeline",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column(
            "report_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.vic_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("hierarchy_order", sa.Integer(), nullable=False),
        sa.Column(
            "level_id",
            sa.BigInteger(),
            sa.ForeignKey(f"{SCHEMA}.hierarchy_nodes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("assigned_user_id", sa.BigInteger(), nullable=True),
        sa.Column("action_notes", sa.Text(), nullable=True),
        _timestamp("action_taken_at", nullable=True, default=False),
        sa.Column("action_taken_by", sa.BigInteger(), nullable=True),
        sa.Column("forwarded_to_level_id", sa.BigInteger(), nullable=True),
        sa.UniqueConstraint("report_id", "hierarchy_order", name="uq_vic_report_timeline_order"),
        sa.CheckConstraint("hierarchy_order >= 0", name="ck_vic_report_timeline_order"),
        sa.CheckConstraint(
            "status IN ('Pending','Forwarded','Approved','Rejected','Resolved')",
            name="ck_vic_report_timeline_status",
        ),
        sa.CheckConstraint(
            "(status = 'Forwarded') = (forwarded_to_level_id IS NOT NULL)",
            name="ck_vic_report_timeline_forward_target",
        ),
        schema=SCHEMA,
    )
    # At most one pending step per report
    op.create_index(
        "uq_vic_report_timeline_single_pending",
        "vic_report_timeline",
        ["report_id"],
        unique=True,
        schema=SCHEMA,
        postgresql_where=sa.text("status = 'Pending'"),
    )
    op.create_index(
        "ix_vic_report_timeline_level", "vic_report_timeline", ["level_id"], schema=SCHEMA
    )


def downgrade() -> None:
    op.drop_table("vic_report_timeline", schema=SCHEMA)
    op.drop_table("vic_reports", schema=SCHEMA)
    op.drop_table("level_assignments", schema=SCHEMA)
    op.drop_table("users", schema=SCHEMA)
    op.drop_table("hierarchy_nodes", schema=SCHEMA)
