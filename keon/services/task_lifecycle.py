"""
Task Lifecycle Service

Every task status mutation goes through this module:
  - Transition validation against TASK_TRANSITIONS (rejected before any write)
  - Validation-level invariant for tasks that require validation
  - ``task_status_changed`` workflow event
  - Cache invalidation after commit

Also owns dispatch of generated tasks: the ``to_assign`` inbox of a manager
or department, and assignment (``to_assign`` → ``todo``).

Usage:
    from keon.services.task_lifecycle import transition_task

    task = transition_task(task_id=12, new_status="in-progress", actor_id=3)
"""

import logging

from sqlalchemy import func

from keon.core.exceptions import InvalidTransition, NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.org import Profile
from keon.models.task import (
    INITIAL_STATUSES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TASK_TRANSITIONS,
    Task,
    TaskValidationLevel,
    validate_task_transition,
)
from keon.services.cache_service import TaskCache
from keon.services.notification import NotificationService
from keon.services.permission import check_can_assign
from keon.utils.helpers import parse_date, parse_int, utcnow

logger = logging.getLogger(__name__)


def is_valid_transition(old_status: str, new_status: str) -> bool:
    return validate_task_transition(old_status, new_status)


def allowed_transitions(status: str) -> list[str]:
    """Statuses reachable from ``status`` in one step (empty for terminal or unknown)."""
    return list(TASK_TRANSITIONS.get(status, []))


def get_task(task_id: int) -> Task:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def apply_transition(task: Task, new_status: str, actor_id: int | None, reason: str | None = None) -> str:
    """
    Validate and apply a status change in the current transaction.

    Does not commit. Returns the previous status.

    Raises:
        InvalidTransition: target not in the allowed set of the current status.
        ValidationError: a task requiring validation has no validation level.
    """
    old_status = task.status
    if new_status not in TASK_STATUSES or not validate_task_transition(old_status, new_status):
        raise InvalidTransition(task.id, old_status, new_status)

    if (
        task.requires_validation
        and old_status in INITIAL_STATUSES
        and new_status not in INITIAL_STATUSES
        and new_status != "cancelled"
    ):
        has_levels = (
            db.session.query(TaskValidationLevel.id)
            .filter_by(task_id=task.id)
            .first()
            is not None
        )
        if not has_levels:
            raise ValidationError(
                "Task requires validation but has no validation level",
                details={"task_id": task.id, "status": old_status},
            )

    task.status = new_status
    if new_status == "validated":
        task.validated_at = utcnow()

    payload = {"from": old_status, "to": new_status}
    if reason:
        payload["reason"] = reason
    write_event(
        event_type="task_status_changed",
        entity_type=task.type,
        entity_id=task.id,
        triggered_by=actor_id,
        payload=payload,
    )
    return old_status


def transition_task(task_id: int, new_status: str, actor_id: int | None = None,
                    reason: str | None = None) -> Task:
    """Move a task to ``new_status`` and commit."""
    task = get_task(task_id)
    old_status = apply_transition(task, new_status, actor_id, reason)
    db.session.commit()
    TaskCache.invalidate(task.id)
    logger.info("Task %s: %s → %s (actor=%s)", task.id, old_status, new_status, actor_id)
    return task


def create_task(data: dict, actor_id: int | None = None) -> Task:
    """Create a standalone task (not generated from a template)."""
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"field": "title"})
    status = data.get("status") or "todo"
    if status not in INITIAL_STATUSES:
        raise ValidationError(
            f"A new task must start in one of {sorted(INITIAL_STATUSES)}",
            details={"field": "status", "value": status},
        )
    priority = data.get("priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Unknown priority '{priority}'", details={"field": "priority"})

    task = Task(
        title=title,
        description=data.get("description") or "",
        type="task",
        status=status,
        priority=priority,
        creator_id=actor_id,
        requester_id=parse_int(data.get("requester_id")) or actor_id,
        assignee_id=parse_int(data.get("assignee_id")),
        target_department_id=parse_int(data.get("target_department_id")),
        category_id=parse_int(data.get("category_id")),
        subcategory_id=parse_int(data.get("subcategory_id")),
        parent_request_id=parse_int(data.get("parent_request_id")),
        due_date=parse_date(data.get("due_date")),
    )
    db.session.add(task)
    db.session.flush()
    write_event(event_type="task_created", entity_type="task", entity_id=task.id, triggered_by=actor_id)
    db.session.commit()
    return task


# ── Dispatch ─────────────────────────────────────────────────────────────────


def assign_task(task_id: int, assignee_id: int, actor_id: int | None = None) -> Task:
    """
    Dispatch a ``to_assign`` task to a profile; the task moves to ``todo``.

    Raises:
        NotFoundError: unknown task or assignee.
        InvalidTransition: task is not awaiting assignment.
        PermissionDenied: actor is neither the pre-assigned manager nor a
            member of the target department.
    """
    task = get_task(task_id)
    if task.status != "to_assign":
        raise InvalidTransition(task.id, task.status, "todo")
    if db.session.get(Profile, assignee_id) is None:
        raise NotFoundError(resource="Profile", resource_id=assignee_id)
    if actor_id is not None:
        actor = db.session.get(Profile, actor_id)
        if actor is None:
            raise NotFoundError(resource="Profile", resource_id=actor_id)
        check_can_assign(actor, task)

    previous_assignee = task.assignee_id
    apply_transition(task, "todo", actor_id)
    task.assignee_id = assignee_id
    write_event(
        event_type="task_assigned",
        entity_type="task",
        entity_id=task.id,
        triggered_by=actor_id,
        payload={"from": previous_assignee, "to": assignee_id},
    )
    NotificationService.notify_task_assigned(task)
    db.session.commit()
    TaskCache.invalidate(task.id)
    logger.info("Task %s assigned to profile %s", task.id, assignee_id)
    return task


def _to_assign_query(profile):
    cond = Task.assignee_id == profile.id
    if profile.department_id is not None:
        cond = cond | (Task.target_department_id == profile.department_id)
    return Task.query.filter(Task.status == "to_assign", Task.type == "task").filter(cond)


def list_tasks_to_assign(profile) -> list[Task]:
    """Tasks waiting for dispatch by this profile (directly or via its department), oldest first."""
    return _to_assign_query(profile).order_by(Task.created_at.asc(), Task.id.asc()).all()


def requests_with_pending(profile) -> list[dict]:
    """Per parent request, the number of tasks this profile may dispatch."""
    rows = (
        _to_assign_query(profile)
        .filter(Task.parent_request_id.isnot(None))
        .with_entities(Task.parent_request_id, func.count(Task.id))
        .group_by(Task.parent_request_id)
        .all()
    )
    if not rows:
        return []
    parents = {
        t.id: t for t in Task.query.filter(Task.id.in_([r[0] for r in rows])).all()
    }
    result = []
    for request_id, count in rows:
        parent = parents.get(request_id)
        result.append({
            "request_id": request_id,
            "title": parent.title if parent else None,
            "count": count,
        })
    result.sort(key=lambda r: r["request_id"])
    return result
