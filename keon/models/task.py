"""
KEON Task Manager
Task domain model.

Models:
    - Task: polymorphic task/request row (``type`` discriminates)
    - TaskValidationLevel: one sign-off step (1 or 2) of a task
    - ChecklistItem: checklist entry of a task

Status model:
    TASK_TRANSITIONS is the fixed directed graph of legal status changes.
    ``done`` and ``cancelled`` are terminal.
"""

from datetime import datetime, timezone

from keon.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TASK_TYPES = ("task", "request")

TASK_STATUSES = (
    "to_assign",
    "todo",
    "in-progress",
    "pending_validation_1",
    "pending_validation_2",
    "validated",
    "refused",
    "review",
    "done",
    "cancelled",
)

TASK_PRIORITIES = ("low", "medium", "high", "urgent")

VALIDATION_LEVEL_STATUSES = ("pending", "validated", "refused")

# Statuses a task is created in; a task that requires validation cannot leave
# them without at least one validation level.
INITIAL_STATUSES = frozenset({"to_assign", "todo"})

TERMINAL_STATUSES = frozenset({"done", "cancelled"})


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

TASK_TRANSITIONS = {
    "to_assign":            ["todo", "in-progress", "cancelled"],
    "todo":                 ["in-progress", "to_assign", "cancelled"],
    "in-progress":          ["done", "todo", "pending_validation_1", "review", "cancelled"],
    "pending_validation_1": ["pending_validation_2", "validated", "refused", "review", "cancelled"],
    "pending_validation_2": ["validated", "refused", "review", "cancelled"],
    "validated":            ["done", "cancelled"],
    "refused":              ["todo", "review", "cancelled"],
    "review":               ["todo", "in-progress", "cancelled"],
    "done":                 [],
    "cancelled":            [],
}


def validate_task_transition(old_status, new_status):
    """Return True if a Task status transition is valid."""
    return new_status in TASK_TRANSITIONS.get(old_status, [])


class Task(db.Model):
    """
    Task or request.

    A request (``type='request'``) is submitted against a process template
    and spawns child tasks (``parent_request_id``) that carry the request's
    ``source_process_template_id`` for traceability.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_status_type", "status", "type"),
        db.Index("ix_tasks_parent_request", "parent_request_id"),
        db.Index("ix_tasks_target_department", "target_department_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")

    # Classification
    type = db.Column(db.String(10), nullable=False, default="task", comment="task | request")
    status = db.Column(db.String(30), nullable=False, default="todo")
    priority = db.Column(db.String(10), nullable=False, default="medium")

    # Relationships
    parent_request_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True,
    )
    source_process_template_id = db.Column(
        db.Integer, db.ForeignKey("process_templates.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    source_sub_process_template_id = db.Column(
        db.Integer, db.ForeignKey("sub_process_templates.id", ondelete="SET NULL"), nullable=True,
    )
    creator_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    requester_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    target_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    subcategory_id = db.Column(
        db.Integer, db.ForeignKey("subcategories.id", ondelete="SET NULL"), nullable=True,
    )

    # Validation
    requires_validation = db.Column(db.Boolean, nullable=False, default=False)
    current_validation_level = db.Column(db.Integer, nullable=False, default=0)
    validator_level_1_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    validator_level_2_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    request_validation_status = db.Column(
        db.String(20), nullable=True, comment="pending | validated | refused (requests only)",
    )
    validation_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validator_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    validation_comment = db.Column(db.Text, nullable=True)

    # Temporal
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    children = db.relationship(
        "Task", backref=db.backref("parent_request", remote_side=[id]), lazy="dynamic",
    )
    validation_levels = db.relationship(
        "TaskValidationLevel", backref="task", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TaskValidationLevel.level",
    )
    checklist_items = db.relationship(
        "ChecklistItem", backref="task", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ChecklistItem.order_index",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "parent_request_id": self.parent_request_id,
            "source_process_template_id": self.source_process_template_id,
            "source_sub_process_template_id": self.source_sub_process_template_id,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "requester_id": self.requester_id,
            "target_department_id": self.target_department_id,
            "category_id": self.category_id,
            "subcategory_id": self.subcategory_id,
            "requires_validation": self.requires_validation,
            "current_validation_level": self.current_validation_level,
            "validator_level_1_id": self.validator_level_1_id,
            "validator_level_2_id": self.validator_level_2_id,
            "request_validation_status": self.request_validation_status,
            "validation_requested_at": (
                self.validation_requested_at.isoformat() if self.validation_requested_at else None
            ),
            "validator_id": self.validator_id,
            "validation_comment": self.validation_comment,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id} [{self.type}/{self.status}]: {self.title[:40]}>"


class TaskValidationLevel(db.Model):
    """
    One validation step of a task.

    Lifecycle: created ``pending`` when the task is generated, decided
    exactly once (``validated`` or ``refused``), never re-opened.
    """

    __tablename__ = "task_validation_levels"
    __table_args__ = (
        db.UniqueConstraint("task_id", "level", name="uq_task_validation_level"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False, comment="1 | 2")
    validator_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    validator_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="pending")
    comment = db.Column(db.Text, nullable=True)
    decided_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
        comment="Profile that actually decided (department validators act as a group)",
    )
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "level": self.level,
            "validator_id": self.validator_id,
            "validator_department_id": self.validator_department_id,
            "status": self.status,
            "comment": self.comment,
            "decided_by_id": self.decided_by_id,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TaskValidationLevel task={self.task_id} L{self.level} {self.status}>"


class ChecklistItem(db.Model):
    __tablename__ = "task_checklists"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "title": self.title,
            "order_index": self.order_index,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
        }
