"""initial_qa_tracker_schema

Systems, requirements with change history, test cycles with per-cycle
results, and the scenario graph (requirement links, e2e → integration
compositions, per-cycle scenario results).

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e4a9b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "systems" not in existing_tables:
        op.create_table(
            "systems",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "requirements" not in existing_tables:
        op.create_table(
            "requirements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("system_id", sa.Integer(), nullable=False),
            sa.Column("display_id", sa.Integer(), nullable=True),
            sa.Column("depth_0", sa.String(length=200), nullable=True),
            sa.Column("depth_1", sa.String(length=200), nullable=True),
            sa.Column("depth_2", sa.String(length=200), nullable=True),
            sa.Column("depth_3", sa.String(length=200), nullable=True),
            sa.Column("feature_name", sa.String(length=300), nullable=True),
            sa.Column("original_spec", sa.Text(), nullable=True),
            sa.Column("current_policy", sa.Text(), nullable=True),
            sa.Column("policy_note", sa.Text(), nullable=True),
            sa.Column("policy_updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("precondition", sa.Text(), nullable=True),
            sa.Column("test_steps", sa.Text(), nullable=True),
            sa.Column("expected_result", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=True),
            sa.Column("related_ids", sa.Text(), nullable=True),
            sa.Column("scenario_link", sa.String(length=500), nullable=True),
            sa.Column("backlog_link", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["system_id"], ["systems.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_requirements_system_id", "requirements", ["system_id"])
        op.create_index("ix_requirements_display_id", "requirements", ["display_id"], unique=True)
        op.create_index("ix_requirements_depth_0", "requirements", ["depth_0"])

    if "requirement_changes" not in existing_tables:
        op.create_table(
            "requirement_changes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("requirement_id", sa.Integer(), nullable=False),
            sa.Column("changed_field", sa.String(length=50), nullable=False),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("change_reason", sa.Text(), nullable=True),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_requirement_changes_requirement_id", "requirement_changes", ["requirement_id"])

    if "test_cycles" not in existing_tables:
        op.create_table(
            "test_cycles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "test_results" not in existing_tables:
        op.create_table(
            "test_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("requirement_id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="미테스트"),
            sa.Column("tester", sa.String(length=100), nullable=True),
            sa.Column("tested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("issue_ids", sa.Text(), nullable=True),
            sa.Column("issue_raised", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("issue_fixed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("issue_items", sa.JSON(), nullable=True),
            sa.Column("retest_reason", sa.String(length=30), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["cycle_id"], ["test_cycles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("requirement_id", "cycle_id", name="uq_result_requirement_cycle"),
        )
        op.create_index("ix_test_results_requirement_id", "test_results", ["requirement_id"])
        op.create_index("ix_test_results_cycle_id", "test_results", ["cycle_id"])

    if "test_scenarios" not in existing_tables:
        op.create_table(
            "test_scenarios",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("scenario_type", sa.String(length=20), nullable=False, server_default="integration"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("system_ids", sa.JSON(), nullable=True),
            sa.Column("business_context", sa.Text(), nullable=True),
            sa.Column("precondition", sa.Text(), nullable=True),
            sa.Column("steps", sa.Text(), nullable=True),
            sa.Column("expected_result", sa.Text(), nullable=True),
            sa.Column("ai_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "scenario_requirements" not in existing_tables:
        op.create_table(
            "scenario_requirements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scenario_id", sa.Integer(), nullable=False),
            sa.Column("requirement_id", sa.Integer(), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("verify_note", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["scenario_id"], ["test_scenarios.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("scenario_id", "requirement_id", name="uq_scenario_requirement"),
        )
        op.create_index("ix_scenario_requirements_scenario_id", "scenario_requirements", ["scenario_id"])
        op.create_index("ix_scenario_requirements_requirement_id", "scenario_requirements", ["requirement_id"])

    if "scenario_compositions" not in existing_tables:
        op.create_table(
            "scenario_compositions",
            sa.Column("parent_id", sa.Integer(), nullable=False),
            sa.Column("child_id", sa.Integer(), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["parent_id"], ["test_scenarios.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["child_id"], ["test_scenarios.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("parent_id", "child_id"),
        )
        op.create_index("ix_scenario_compositions_child_id", "scenario_compositions", ["child_id"])

    if "scenario_results" not in existing_tables:
        op.create_table(
            "scenario_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scenario_id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="미테스트"),
            sa.Column("tester", sa.String(length=100), nullable=True),
            sa.Column("tested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("issue_items", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["scenario_id"], ["test_scenarios.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["cycle_id"], ["test_cycles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("scenario_id", "cycle_id", name="uq_scenario_result_cycle"),
        )
        op.create_index("ix_scenario_results_scenario_id", "scenario_results", ["scenario_id"])
        op.create_index("ix_scenario_results_cycle_id", "scenario_results", ["cycle_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # Children before parents
    for table in (
        "scenario_results",
        "scenario_compositions",
        "scenario_requirements",
        "test_scenarios",
        "test_results",
        "test_cycles",
        "requirement_changes",
        "requirements",
        "systems",
    ):
        if table in existing_tables:
            op.drop_table(table)
