"""Add agent capability registry and routing defaults."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20260301_0002"
down_revision = "20260301_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("adapter", sa.String(), nullable=False),
        sa.Column("default_model", sa.String(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("cost_per_million", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_slug", "agents", ["slug"], unique=True)

    op.create_table(
        "agent_capabilities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("capability", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "agent_id",
            "capability",
            name="uq_agent_capabilities_agent_capability",
        ),
    )
    op.create_index(
        "ix_agent_capabilities_agent_id",
        "agent_capabilities",
        ["agent_id"],
        unique=False,
    )

    op.create_table(
        "agent_health",
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("agent_id"),
    )

    op.create_table(
        "routing_defaults",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("command_name", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("qa_profile", sa.String(), nullable=True),
        sa.Column("docdex_scope", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "command_name",
            name="uq_routing_defaults_workspace_command",
        ),
    )
    op.create_index(
        "ix_routing_defaults_workspace_id",
        "routing_defaults",
        ["workspace_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_routing_defaults_workspace_id", table_name="routing_defaults")
    op.drop_table("routing_defaults")
    op.drop_table("agent_health")
    op.drop_index("ix_agent_capabilities_agent_id", table_name="agent_capabilities")
    op.drop_table("agent_capabilities")
    op.drop_index("ix_agents_slug", table_name="agents")
    op.drop_table("agents")
