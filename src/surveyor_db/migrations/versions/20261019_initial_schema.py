"""Create flow_runs and submissions tables.

``flow_runs`` holds one row per run with its full serialized state in
``document``; ``submissions`` holds one frozen row per completed run until
the Upload layer confirms it.

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Runs ---
    op.create_table(
        "flow_runs",
        # Identity
        sa.Column("run_uuid", sa.String(36), primary_key=True),
        sa.Column("org_uuid", sa.String(36), nullable=True),
        sa.Column("flow_uuid", sa.String(36), nullable=False),
        sa.Column("flow_revision", sa.Integer, nullable=False),
        sa.Column("parent_run_uuid", sa.String(36), nullable=True),
        # Position
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("current_node_id", sa.String(36), nullable=True),
        sa.Column("wait_expires_on", sa.DateTime(timezone=True), nullable=True),
        # Full state
        sa.Column("document", sa.JSON, nullable=False),
        # Timestamps
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_on", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_flow_runs_flow_uuid", "flow_runs", ["flow_uuid"])
    op.create_index("ix_flow_runs_status", "flow_runs", ["status"])
    op.create_index(
        "ix_flow_runs_status_expires", "flow_runs", ["status", "wait_expires_on"]
    )

    # --- Submissions ---
    op.create_table(
        "submissions",
        sa.Column("run_uuid", sa.String(36), primary_key=True),
        sa.Column("org_uuid", sa.String(36), nullable=True),
        sa.Column("flow_uuid", sa.String(36), nullable=False),
        sa.Column("flow_revision", sa.Integer, nullable=False),
        sa.Column("completed_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("document", sa.JSON, nullable=False),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submissions_org_uuid", "submissions", ["org_uuid"])
    op.create_index("ix_submissions_flow_uuid", "submissions", ["flow_uuid"])
    op.create_index("ix_submissions_completed_on", "submissions", ["completed_on"])


def downgrade() -> None:
    op.drop_index("ix_submissions_completed_on", table_name="submissions")
    op.drop_index("ix_submissions_flow_uuid", table_name="submissions")
    op.drop_index("ix_submissions_org_uuid", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("ix_flow_runs_status_expires", table_name="flow_runs")
    op.drop_index("ix_flow_runs_status", table_name="flow_runs")
    op.drop_index("ix_flow_runs_flow_uuid", table_name="flow_runs")
    op.drop_table("flow_runs")
