"""
Request Workflow Service

Turns a submitted request into dispatchable work:

  1. ``submit_request`` writes the request row (``type='request'``) and any
     material lines, then
  2. ``generate_pending_assignments`` materialises one ``to_assign`` task per
     resolved task template, with its checklist and validation levels.

Each generated task is written inside its own SAVEPOINT: a template that
fails to materialise rolls back only its own task, checklist and levels and
the loop continues. The batch commits once.

Usage:
    from keon.services.request_workflow import submit_request

    request_task, created = submit_request(data, actor_id=profile.id)
"""

import logging
from datetime import timedelta

from keon.core.exceptions import NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.material import MaterialRequestLine
from keon.models.org import Department
from keon.models.task import TASK_PRIORITIES, ChecklistItem, Task, TaskValidationLevel
from keon.models.template import ProcessTemplate, SubProcessTemplate
from keon.services.notification import NotificationService
from keon.services.template_resolver import (
    get_process_template_for_subcategory,
    resolve_task_templates,
)
from keon.utils.helpers import parse_date, parse_int, utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Generator
# ═════════════════════════════════════════════════════════════════════════════


def _materialise_task(tpl, *, parent_request_id, process_template_id, sub_process_template_id,
                      target_department_id, target_manager_id, actor_id, today) -> Task:
    due_date = None
    if tpl.default_duration_days is not None:
        due_date = today + timedelta(days=tpl.default_duration_days)

    task = Task(
        title=tpl.title,
        description=tpl.description or "",
        type="task",
        status="to_assign",
        priority=tpl.priority or "medium",
        assignee_id=target_manager_id,
        creator_id=actor_id,
        parent_request_id=parent_request_id,
        target_department_id=target_department_id,
        source_process_template_id=process_template_id,
        source_sub_process_template_id=tpl.sub_process_template_id or sub_process_template_id,
        requires_validation=bool(tpl.requires_validation),
        due_date=due_date,
    )
    db.session.add(task)
    db.session.flush()

    for item in tpl.checklist_items:
        db.session.add(ChecklistItem(task_id=task.id, title=item.title, order_index=item.order_index))

    if tpl.requires_validation:
        levels = tpl.validation_levels.all()
        if not levels:
            logger.warning(
                "TaskTemplate %s requires validation but defines no level (task %s)", tpl.id, task.id,
            )
        for lvl in levels:
            db.session.add(TaskValidationLevel(
                task_id=task.id,
                level=lvl.level,
                validator_id=lvl.validator_profile_id,
                validator_department_id=lvl.validator_department_id,
                status="pending",
            ))
            if lvl.level == 1:
                task.validator_level_1_id = lvl.validator_profile_id
            elif lvl.level == 2:
                task.validator_level_2_id = lvl.validator_profile_id

    db.session.flush()
    write_event(
        event_type="task_created",
        entity_type="task",
        entity_id=task.id,
        triggered_by=actor_id,
        payload={"parent_request_id": parent_request_id, "task_template_id": tpl.id},
    )
    return task


def generate_pending_assignments(
    parent_request_id: int,
    process_template_id: int,
    target_department_id: int | None,
    sub_process_template_id: int | None = None,
    target_manager_id: int | None = None,
    actor_id: int | None = None,
    today=None,
) -> int:
    """
    Materialise the resolved task templates of a request as ``to_assign`` tasks.

    Args:
        parent_request_id: Request the tasks belong to.
        process_template_id: Source process template (provenance on every task).
        target_department_id: Department that dispatches the tasks.
        sub_process_template_id: Restrict to one sub-process (falls back to
            the process's direct templates when it has none).
        target_manager_id: Pre-assigned dispatcher of every generated task.
        actor_id: Profile recorded on events.
        today: Reference date for due dates (defaults to today, UTC).

    Returns:
        Number of tasks created. Zero templates means zero rows and no
        notification.
    """
    templates = resolve_task_templates(process_template_id, sub_process_template_id)
    if not templates:
        logger.info(
            "No task template for process %s (sub-process %s); nothing to generate",
            process_template_id, sub_process_template_id,
        )
        return 0

    today = today or utcnow().date()
    created = 0
    for tpl in templates:
        try:
            with db.session.begin_nested():
                _materialise_task(
                    tpl,
                    parent_request_id=parent_request_id,
                    process_template_id=process_template_id,
                    sub_process_template_id=sub_process_template_id,
                    target_department_id=target_department_id,
                    target_manager_id=target_manager_id,
                    actor_id=actor_id,
                    today=today,
                )
            created += 1
        except Exception:
            logger.exception(
                "Failed to generate task from template %s for request %s", tpl.id, parent_request_id,
            )

    if created:
        NotificationService.notify_pending_assignments(
            request_id=parent_request_id,
            count=created,
            target_manager_id=target_manager_id,
            target_department_id=target_department_id,
        )
    db.session.commit()
    logger.info(
        "Request %s: %d/%d task(s) generated from process %s",
        parent_request_id, created, len(templates), process_template_id,
    )
    return created


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


def _resolve_manager(sub_process, department_id, explicit_manager_id):
    if explicit_manager_id is not None:
        return explicit_manager_id
    if sub_process is not None and sub_process.target_manager_id is not None:
        return sub_process.target_manager_id
    if department_id is not None:
        dept = db.session.get(Department, department_id)
        if dept is not None:
            return dept.manager_id
    return None


def _parse_material_lines(raw) -> list[dict]:
    """Check material lines before anything is written."""
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValidationError("material_lines must be a list", details={"field": "material_lines"})
    lines = []
    for idx, line in enumerate(raw):
        if not isinstance(line, dict):
            raise ValidationError(
                "Each material line must be an object",
                details={"field": "material_lines", "index": idx},
            )
        designation = str(line.get("designation") or "").strip()
        if not designation:
            raise ValidationError(
                "Each material line needs a designation",
                details={"field": "material_lines", "index": idx},
            )
        lines.append({
            "ref": line.get("ref"),
            "designation": designation,
            "quantity": parse_int(line.get("quantity")) or 1,
        })
    return lines


def submit_request(data: dict, actor_id: int | None = None):
    """
    Create a request from a process template and generate its tasks.

    ``process_template_id`` may be omitted when ``subcategory_id`` names a
    subcategory with a default process template.

    Returns:
        (request Task, number of generated tasks)
    """
    process_template_id = parse_int(data.get("process_template_id"))
    subcategory_id = parse_int(data.get("subcategory_id"))
    if process_template_id is None and subcategory_id is not None:
        process_template_id = get_process_template_for_subcategory(subcategory_id)
    if process_template_id is None:
        raise ValidationError(
            "process_template_id is required (directly or through the subcategory)",
            details={"field": "process_template_id"},
        )

    template = db.session.get(ProcessTemplate, process_template_id)
    if template is None:
        raise NotFoundError(resource="ProcessTemplate", resource_id=process_template_id)

    sub_process = None
    sub_process_template_id = parse_int(data.get("sub_process_template_id"))
    if sub_process_template_id is not None:
        sub_process = db.session.get(SubProcessTemplate, sub_process_template_id)
        if sub_process is None or sub_process.process_template_id != template.id:
            raise ValidationError(
                "sub_process_template_id does not belong to the process template",
                details={"sub_process_template_id": sub_process_template_id},
            )

    settings = template.settings or {}
    priority = data.get("priority") or settings.get("default_priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Unknown priority '{priority}'", details={"field": "priority"})

    target_department_id = (
        parse_int(data.get("target_department_id"))
        or (sub_process.target_department_id if sub_process else None)
        or template.target_department_id
    )
    target_manager_id = _resolve_manager(
        sub_process, target_department_id, parse_int(data.get("target_manager_id")),
    )
    material_lines = _parse_material_lines(data.get("material_lines"))

    request_task = Task(
        title=(data.get("title") or "").strip() or template.name,
        description=data.get("description") or "",
        type="request",
        status="todo",
        priority=priority,
        creator_id=actor_id,
        requester_id=actor_id,
        target_department_id=target_department_id,
        category_id=parse_int(data.get("category_id")) or template.category_id,
        subcategory_id=subcategory_id or template.subcategory_id,
        source_process_template_id=template.id,
        source_sub_process_template_id=sub_process_template_id,
        request_validation_status="pending" if material_lines else None,
        start_date=utcnow(),
        due_date=parse_date(data.get("due_date")),
    )
    db.session.add(request_task)
    db.session.flush()

    for line in material_lines:
        db.session.add(MaterialRequestLine(request_id=request_task.id, **line))

    write_event(
        event_type="request_created",
        entity_type="request",
        entity_id=request_task.id,
        triggered_by=actor_id,
        payload={"process_template_id": template.id, "material_lines": len(material_lines)},
    )

    created = generate_pending_assignments(
        parent_request_id=request_task.id,
        process_template_id=template.id,
        target_department_id=target_department_id,
        sub_process_template_id=sub_process_template_id,
        target_manager_id=target_manager_id,
        actor_id=actor_id,
    )
    if created == 0:
        # The generator commits only when it had templates.
        db.session.commit()
    return request_task, created
