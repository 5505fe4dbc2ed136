"""keon_workflow_schema

Creates the request/task workflow schema:
  - departments, profiles, categories, subcategories
  - process_templates, sub_process_templates, task_templates,
    task_template_checklists, template_validation_levels
  - tasks, task_validation_levels, task_checklists, material_request_lines
  - recurrence_runs, workflow_events, notifications, scheduled_jobs

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 0001_keon_workflow
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '0001_keon_workflow'
down_revision = None
branch_labels = None
depends_on = None


def _recurrence_columns():
    return [
        sa.Column("recurrence_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurrence_interval", sa.Integer(), nullable=True),
        sa.Column("recurrence_unit", sa.String(length=10), nullable=True,
                  comment="days | weeks | months | years"),
        sa.Column("recurrence_delay_days", sa.Integer(), nullable=True),
        sa.Column("recurrence_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recurrence_next_run_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Organisation ──────────────────────────────────────────────────────
    if "departments" not in existing:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("manager_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "profiles" not in existing:
        op.create_table(
            "profiles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("can_manage_templates", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_profiles_department_id", "profiles", ["department_id"])
        with op.batch_alter_table("departments") as batch:
            batch.create_foreign_key(
                "fk_departments_manager_id", "profiles", ["manager_id"], ["id"], ondelete="SET NULL",
            )

    if "categories" not in existing:
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "subcategories" not in existing:
        op.create_table(
            "subcategories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("default_process_template_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_subcategories_category_id", "subcategories", ["category_id"])

    # ── Templates ─────────────────────────────────────────────────────────
    if "process_templates" not in existing:
        op.create_table(
            "process_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("creator_id", sa.Integer(), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("subcategory_id", sa.Integer(), nullable=True),
            sa.Column("target_department_id", sa.Integer(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True,
                      comment='{"title_pattern", "default_priority", "default_material_assignee_id"}'),
            *_recurrence_columns(),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["creator_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["subcategory_id"], ["subcategories.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["target_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_process_templates_creator_id", "process_templates", ["creator_id"])
        op.create_index(
            "ix_process_templates_recurrence_next_run_at", "process_templates", ["recurrence_next_run_at"],
        )
        with op.batch_alter_table("subcategories") as batch:
            batch.create_foreign_key(
                "fk_subcategories_default_process_template_id", "process_templates",
                ["default_process_template_id"], ["id"], ondelete="SET NULL",
            )

    if "sub_process_templates" not in existing:
        op.create_table(
            "sub_process_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_template_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("target_manager_id", sa.Integer(), nullable=True),
            sa.Column("target_department_id", sa.Integer(), nullable=True),
            *_recurrence_columns(),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_template_id"], ["process_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["target_manager_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["target_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_sub_process_templates_process_template_id", "sub_process_templates", ["process_template_id"],
        )
        op.create_index(
            "ix_sub_process_templates_recurrence_next_run_at", "sub_process_templates",
            ["recurrence_next_run_at"],
        )

    if "task_templates" not in existing:
        op.create_table(
            "task_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_template_id", sa.Integer(), nullable=False),
            sa.Column("sub_process_template_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("default_duration_days", sa.Integer(), nullable=True),
            sa.Column("requires_validation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_template_id"], ["process_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["sub_process_template_id"], ["sub_process_templates.id"], ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_task_templates_process_order", "task_templates", ["process_template_id", "order_index"],
        )
        op.create_index(
            "ix_task_templates_subprocess_order", "task_templates", ["sub_process_template_id", "order_index"],
        )

    if "task_template_checklists" not in existing:
        op.create_table(
            "task_template_checklists",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_template_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["task_template_id"], ["task_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_task_template_checklists_task_template_id", "task_template_checklists", ["task_template_id"],
        )

    if "template_validation_levels" not in existing:
        op.create_table(
            "template_validation_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_template_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, comment="1 | 2"),
            sa.Column("validator_profile_id", sa.Integer(), nullable=True),
            sa.Column("validator_department_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["task_template_id"], ["task_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["validator_profile_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["validator_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("task_template_id", "level", name="uq_template_validation_level"),
        )
        op.create_index(
            "ix_template_validation_levels_task_template_id", "template_validation_levels",
            ["task_template_id"],
        )

    # ── Tasks ─────────────────────────────────────────────────────────────
    if "tasks" not in existing:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=10), nullable=False, server_default="task",
                      comment="task | request"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("parent_request_id", sa.Integer(), nullable=True),
            sa.Column("source_process_template_id", sa.Integer(), nullable=True),
            sa.Column("source_sub_process_template_id", sa.Integer(), nullable=True),
            sa.Column("creator_id", sa.Integer(), nullable=True),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("requester_id", sa.Integer(), nullable=True),
            sa.Column("target_department_id", sa.Integer(), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("subcategory_id", sa.Integer(), nullable=True),
            sa.Column("requires_validation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("current_validation_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("validator_level_1_id", sa.Integer(), nullable=True),
            sa.Column("validator_level_2_id", sa.Integer(), nullable=True),
            sa.Column("request_validation_status", sa.String(length=20), nullable=True,
                      comment="pending | validated | refused (requests only)"),
            sa.Column("validation_requested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("validator_id", sa.Integer(), nullable=True),
            sa.Column("validation_comment", sa.Text(), nullable=True),
            sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["parent_request_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["source_process_template_id"], ["process_templates.id"], ondelete="SET NULL",
            ),
            sa.ForeignKeyConstraint(
                ["source_sub_process_template_id"], ["sub_process_templates.id"], ondelete="SET NULL",
            ),
            sa.ForeignKeyConstraint(["creator_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assignee_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["requester_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["target_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["subcategory_id"], ["subcategories.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["validator_level_1_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["validator_level_2_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["validator_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_status_type", "tasks", ["status", "type"])
        op.create_index("ix_tasks_parent_request", "tasks", ["parent_request_id"])
        op.create_index("ix_tasks_target_department", "tasks", ["target_department_id"])
        op.create_index("ix_tasks_source_process_template_id", "tasks", ["source_process_template_id"])
        op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"])

    if "task_validation_levels" not in existing:
        op.create_table(
            "task_validation_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, comment="1 | 2"),
            sa.Column("validator_id", sa.Integer(), nullable=True),
            sa.Column("validator_department_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("decided_by_id", sa.Integer(), nullable=True),
            sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["validator_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["validator_department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["decided_by_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("task_id", "level", name="uq_task_validation_level"),
        )
        op.create_index("ix_task_validation_levels_task_id", "task_validation_levels", ["task_id"])

    if "task_checklists" not in existing:
        op.create_table(
            "task_checklists",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["completed_by"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_task_checklists_task_id", "task_checklists", ["task_id"])

    if "material_request_lines" not in existing:
        op.create_table(
            "material_request_lines",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("ref", sa.String(length=100), nullable=True),
            sa.Column("designation", sa.String(length=300), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("order_state", sa.String(length=50), nullable=False,
                      server_default="En attente validation"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["request_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_material_request_lines_request_id", "material_request_lines", ["request_id"])

    # ── Audit / scheduling ────────────────────────────────────────────────
    if "recurrence_runs" not in existing:
        op.create_table(
            "recurrence_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_template_id", sa.Integer(), nullable=False),
            sa.Column("sub_process_template_id", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.Integer(), nullable=True),
            sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, comment="success | error"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_template_id"], ["process_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["sub_process_template_id"], ["sub_process_templates.id"], ondelete="CASCADE",
            ),
            sa.ForeignKeyConstraint(["request_id"], ["tasks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_recurrence_runs_template", "recurrence_runs", ["process_template_id", "scheduled_at"],
        )

    if "workflow_events" not in existing:
        op.create_table(
            "workflow_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.Integer(), nullable=False),
            sa.Column("triggered_by", sa.Integer(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["triggered_by"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_workflow_event_entity", "workflow_events", ["entity_type", "entity_id"])
        op.create_index("idx_workflow_event_type", "workflow_events", ["event_type"])

    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["profiles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("ix_notifications_department_id", "notifications", ["department_id"])

    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "notifications",
        "workflow_events",
        "recurrence_runs",
        "material_request_lines",
        "task_checklists",
        "task_validation_levels",
        "tasks",
        "template_validation_levels",
        "task_template_checklists",
        "task_templates",
        "sub_process_templates",
    ):
        op.drop_table(table)
    with op.batch_alter_table("subcategories") as batch:
        batch.drop_constraint("fk_subcategories_default_process_template_id", type_="foreignkey")
    op.drop_table("process_templates")
    op.drop_table("subcategories")
    op.drop_table("categories")
    with op.batch_alter_table("departments") as batch:
        batch.drop_constraint("fk_departments_manager_id", type_="foreignkey")
    op.drop_table("profiles")
    op.drop_table("departments")
