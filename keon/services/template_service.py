"""
Template Service

CRUD for the process → sub-process → task template hierarchy.
Edits of a process template are guarded by ``permission.can_manage_template``.
"""

import logging

from keon.core.exceptions import NotFoundError, ValidationError
from keon.models import db
from keon.models.template import (
    RECURRENCE_UNITS,
    TASK_PRIORITIES,
    VALIDATION_LEVELS,
    ProcessTemplate,
    SubProcessTemplate,
    TaskTemplate,
    TaskTemplateChecklist,
    TemplateValidationLevel,
)
from keon.services.permission import check_can_manage_template
from keon.utils.helpers import parse_datetime, parse_int, utcnow

logger = logging.getLogger(__name__)

_PROCESS_FIELDS = ("name", "description", "category_id", "subcategory_id", "target_department_id", "settings")
_RECURRENCE_FIELDS = (
    "recurrence_enabled", "recurrence_interval", "recurrence_unit",
    "recurrence_delay_days", "recurrence_start_date", "recurrence_next_run_at",
)


def get_process_template(template_id: int) -> ProcessTemplate:
    tpl = db.session.get(ProcessTemplate, template_id)
    if tpl is None:
        raise NotFoundError(resource="ProcessTemplate", resource_id=template_id)
    return tpl


def list_process_templates(category_id=None, subcategory_id=None):
    q = ProcessTemplate.query
    if category_id is not None:
        q = q.filter_by(category_id=category_id)
    if subcategory_id is not None:
        q = q.filter_by(subcategory_id=subcategory_id)
    return q.order_by(ProcessTemplate.name.asc(), ProcessTemplate.id.asc())


def _apply_recurrence(obj, data: dict) -> None:
    """Copy recurrence fields from ``data`` and check the resulting schedule."""
    for field in _RECURRENCE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in ("recurrence_start_date", "recurrence_next_run_at"):
            value = parse_datetime(value)
        elif field in ("recurrence_interval", "recurrence_delay_days"):
            value = parse_int(value)
        elif field == "recurrence_enabled":
            value = bool(value)
        setattr(obj, field, value)

    if not obj.recurrence_enabled:
        return
    if obj.recurrence_unit not in RECURRENCE_UNITS:
        raise ValidationError(
            f"Unknown recurrence unit '{obj.recurrence_unit}'",
            details={"field": "recurrence_unit", "valid_units": list(RECURRENCE_UNITS)},
        )
    if obj.recurrence_interval is None or obj.recurrence_interval < 1:
        raise ValidationError("recurrence_interval must be at least 1", details={"field": "recurrence_interval"})
    if obj.recurrence_delay_days is not None and obj.recurrence_delay_days < 0:
        raise ValidationError("recurrence_delay_days cannot be negative", details={"field": "recurrence_delay_days"})
    if obj.recurrence_next_run_at is None:
        obj.recurrence_next_run_at = obj.recurrence_start_date or utcnow()


def create_process_template(data: dict, actor) -> ProcessTemplate:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"field": "name"})
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise ValidationError("settings must be an object", details={"field": "settings"})

    tpl = ProcessTemplate(
        name=name,
        description=data.get("description") or "",
        creator_id=actor.id if actor else None,
        category_id=parse_int(data.get("category_id")),
        subcategory_id=parse_int(data.get("subcategory_id")),
        target_department_id=parse_int(data.get("target_department_id")),
        settings=settings,
    )
    _apply_recurrence(tpl, data)
    db.session.add(tpl)
    db.session.commit()
    logger.info("ProcessTemplate %s created by %s", tpl.id, tpl.creator_id)
    return tpl


def update_process_template(template_id: int, data: dict, actor) -> ProcessTemplate:
    """
    Update a process template.

    Raises:
        PermissionDenied: actor is neither the creator nor a template manager.
    """
    tpl = get_process_template(template_id)
    check_can_manage_template(actor, tpl)

    for field in _PROCESS_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = (value or "").strip()
            if not value:
                raise ValidationError("name cannot be empty", details={"field": "name"})
        elif field == "settings":
            if not isinstance(value, dict):
                raise ValidationError("settings must be an object", details={"field": "settings"})
            # reassign so the JSON column is flagged dirty
            value = dict(value)
        elif field.endswith("_id"):
            value = parse_int(value)
        setattr(tpl, field, value)
    _apply_recurrence(tpl, data)

    db.session.commit()
    return tpl


def create_sub_process(process_template_id: int, data: dict, actor) -> SubProcessTemplate:
    tpl = get_process_template(process_template_id)
    check_can_manage_template(actor, tpl)
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"field": "name"})

    sp = SubProcessTemplate(
        process_template_id=tpl.id,
        name=name,
        description=data.get("description") or "",
        order_index=parse_int(data.get("order_index")) or 0,
        target_manager_id=parse_int(data.get("target_manager_id")),
        target_department_id=parse_int(data.get("target_department_id")),
    )
    _apply_recurrence(sp, data)
    db.session.add(sp)
    db.session.commit()
    return sp


def _validation_levels_from(data: dict) -> list[TemplateValidationLevel]:
    levels = []
    seen = set()
    for raw in data.get("validation_levels") or []:
        level = parse_int(raw.get("level"))
        if level not in VALIDATION_LEVELS:
            raise ValidationError("Validation level must be 1 or 2", details={"level": raw.get("level")})
        if level in seen:
            raise ValidationError(f"Duplicate validation level {level}", details={"level": level})
        seen.add(level)
        profile_id = parse_int(raw.get("validator_profile_id"))
        department_id = parse_int(raw.get("validator_department_id"))
        if profile_id is None and department_id is None:
            raise ValidationError(
                f"Validation level {level} needs a validator profile or department",
                details={"level": level},
            )
        levels.append(TemplateValidationLevel(
            level=level, validator_profile_id=profile_id, validator_department_id=department_id,
        ))
    return levels


def create_task_template(data: dict, actor) -> TaskTemplate:
    """
    Create a task template with its checklist and validation levels.

    Body keys: process_template_id, sub_process_template_id?, title,
    description?, priority?, order_index?, default_duration_days?,
    requires_validation?, checklist: [str | {title}], validation_levels:
    [{level, validator_profile_id?, validator_department_id?}]
    """
    process_template_id = parse_int(data.get("process_template_id"))
    if process_template_id is None:
        raise ValidationError("process_template_id is required", details={"field": "process_template_id"})
    tpl = get_process_template(process_template_id)
    check_can_manage_template(actor, tpl)

    sub_process_template_id = parse_int(data.get("sub_process_template_id"))
    if sub_process_template_id is not None:
        sp = db.session.get(SubProcessTemplate, sub_process_template_id)
        if sp is None or sp.process_template_id != tpl.id:
            raise ValidationError(
                "sub_process_template_id does not belong to the process template",
                details={"sub_process_template_id": sub_process_template_id},
            )

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"field": "title"})
    priority = data.get("priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Unknown priority '{priority}'", details={"field": "priority"})
    duration = parse_int(data.get("default_duration_days"))
    if duration is not None and duration < 0:
        raise ValidationError("default_duration_days cannot be negative", details={"field": "default_duration_days"})

    requires_validation = bool(data.get("requires_validation"))
    levels = _validation_levels_from(data)
    if requires_validation and not levels:
        raise ValidationError(
            "A task template requiring validation needs at least one validation level",
            details={"field": "validation_levels"},
        )

    task_tpl = TaskTemplate(
        process_template_id=tpl.id,
        sub_process_template_id=sub_process_template_id,
        title=title,
        description=data.get("description") or "",
        priority=priority,
        order_index=parse_int(data.get("order_index")) or 0,
        default_duration_days=duration,
        requires_validation=requires_validation,
    )
    db.session.add(task_tpl)
    db.session.flush()

    for idx, entry in enumerate(data.get("checklist") or []):
        item_title = entry.get("title") if isinstance(entry, dict) else entry
        item_title = (item_title or "").strip()
        if item_title:
            db.session.add(TaskTemplateChecklist(task_template_id=task_tpl.id, title=item_title, order_index=idx))
    for lvl in levels:
        lvl.task_template_id = task_tpl.id
        db.session.add(lvl)

    db.session.commit()
    return task_tpl
