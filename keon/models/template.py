"""
KEON Task Manager
Template domain model.

Hierarchy: ProcessTemplate → SubProcessTemplate → TaskTemplate.
Each level carries ``order_index`` controlling generation order.

Models:
    - ProcessTemplate: top-level process, optional recurrence schedule
    - SubProcessTemplate: optional grouping of task templates, own recurrence
    - TaskTemplate: one task to generate (duration, validation flag)
    - TaskTemplateChecklist: checklist items cloned onto generated tasks
    - TemplateValidationLevel: sign-off levels cloned onto generated tasks
"""

from datetime import datetime, timezone

from keon.models import db


# ── Constants ────────────────────────────────────────────────────────────────

RECURRENCE_UNITS = ("days", "weeks", "months", "years")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
VALIDATION_LEVELS = (1, 2)


class _RecurrenceMixin:
    """Recurrence schedule columns shared by process and sub-process templates."""

    recurrence_enabled = db.Column(db.Boolean, nullable=False, default=False)
    recurrence_interval = db.Column(db.Integer, nullable=True)
    recurrence_unit = db.Column(db.String(10), nullable=True, comment="days | weeks | months | years")
    recurrence_delay_days = db.Column(
        db.Integer, nullable=True, comment="Due date offset of each generated request",
    )
    recurrence_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    recurrence_next_run_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    def recurrence_dict(self) -> dict:
        return {
            "enabled": self.recurrence_enabled,
            "interval": self.recurrence_interval,
            "unit": self.recurrence_unit,
            "delay_days": self.recurrence_delay_days,
            "start_date": self.recurrence_start_date.isoformat() if self.recurrence_start_date else None,
            "next_run_at": self.recurrence_next_run_at.isoformat() if self.recurrence_next_run_at else None,
        }


class ProcessTemplate(_RecurrenceMixin, db.Model):
    """
    Reusable process definition from which requests are generated.

    ``settings`` keys read by the workflow:
        title_pattern                  — recurrence title, ``{process}``/``{date}``
        default_priority               — priority of generated requests
        default_material_assignee_id   — fulfilment task assignee (material requests)
    """

    __tablename__ = "process_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    creator_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    subcategory_id = db.Column(
        db.Integer, db.ForeignKey("subcategories.id", ondelete="SET NULL"), nullable=True,
    )
    target_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    settings = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    sub_processes = db.relationship(
        "SubProcessTemplate", backref="process_template", lazy="dynamic",
        cascade="all, delete-orphan", order_by="SubProcessTemplate.order_index",
    )
    task_templates = db.relationship(
        "TaskTemplate", backref="process_template", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TaskTemplate.order_index",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "creator_id": self.creator_id,
            "category_id": self.category_id,
            "subcategory_id": self.subcategory_id,
            "target_department_id": self.target_department_id,
            "settings": self.settings or {},
            "recurrence": self.recurrence_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_children:
            d["sub_processes"] = [sp.to_dict() for sp in self.sub_processes]
            d["task_templates"] = [
                t.to_dict() for t in self.task_templates.filter_by(sub_process_template_id=None)
            ]
        return d

    def __repr__(self):
        return f"<ProcessTemplate {self.id}: {self.name}>"


class SubProcessTemplate(_RecurrenceMixin, db.Model):
    __tablename__ = "sub_process_templates"

    id = db.Column(db.Integer, primary_key=True)
    process_template_id = db.Column(
        db.Integer, db.ForeignKey("process_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    target_manager_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    target_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    task_templates = db.relationship(
        "TaskTemplate", backref="sub_process_template", lazy="dynamic",
        order_by="TaskTemplate.order_index",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "process_template_id": self.process_template_id,
            "name": self.name,
            "description": self.description,
            "order_index": self.order_index,
            "target_manager_id": self.target_manager_id,
            "target_department_id": self.target_department_id,
            "recurrence": self.recurrence_dict(),
            "task_templates": [t.to_dict() for t in self.task_templates],
        }

    def __repr__(self):
        return f"<SubProcessTemplate {self.id}: {self.name}>"


class TaskTemplate(db.Model):
    """
    One task to materialise when a request is submitted.

    ``default_duration_days`` sets the generated task's due date to
    ``today + N days``; no duration means no due date.
    """

    __tablename__ = "task_templates"
    __table_args__ = (
        db.Index("ix_task_templates_process_order", "process_template_id", "order_index"),
        db.Index("ix_task_templates_subprocess_order", "sub_process_template_id", "order_index"),
    )

    id = db.Column(db.Integer, primary_key=True)
    process_template_id = db.Column(
        db.Integer, db.ForeignKey("process_templates.id", ondelete="CASCADE"), nullable=False,
    )
    sub_process_template_id = db.Column(
        db.Integer, db.ForeignKey("sub_process_templates.id", ondelete="CASCADE"), nullable=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    default_duration_days = db.Column(db.Integer, nullable=True)
    requires_validation = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    checklist_items = db.relationship(
        "TaskTemplateChecklist", backref="task_template", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TaskTemplateChecklist.order_index",
    )
    validation_levels = db.relationship(
        "TemplateValidationLevel", backref="task_template", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TemplateValidationLevel.level",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "process_template_id": self.process_template_id,
            "sub_process_template_id": self.sub_process_template_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "order_index": self.order_index,
            "default_duration_days": self.default_duration_days,
            "requires_validation": self.requires_validation,
            "checklist": [c.to_dict() for c in self.checklist_items],
            "validation_levels": [v.to_dict() for v in self.validation_levels],
        }

    def __repr__(self):
        return f"<TaskTemplate {self.id}: {self.title[:40]}>"


class TaskTemplateChecklist(db.Model):
    __tablename__ = "task_template_checklists"

    id = db.Column(db.Integer, primary_key=True)
    task_template_id = db.Column(
        db.Integer, db.ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {"id": self.id, "title": self.title, "order_index": self.order_index}


class TemplateValidationLevel(db.Model):
    """Sign-off level definition; either a named validator or a whole department."""

    __tablename__ = "template_validation_levels"
    __table_args__ = (
        db.UniqueConstraint("task_template_id", "level", name="uq_template_validation_level"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_template_id = db.Column(
        db.Integer, db.ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False, comment="1 | 2")
    validator_profile_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    validator_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_template_id": self.task_template_id,
            "level": self.level,
            "validator_profile_id": self.validator_profile_id,
            "validator_department_id": self.validator_department_id,
        }
