"""
Validation Orchestrator

Per-level sign-off of tasks that require validation.

Level lifecycle: ``pending`` → ``validated`` | ``refused``, decided exactly
once. Decisions are written with a compare-and-set update
(``WHERE status = 'pending'``) so two validators acting on the same level
cannot both win; the loser gets ConflictError.

  - validate_level:   level → validated; the task status is left alone
  - refuse_level:     level → refused; the task goes straight to ``refused``
  - request_validation: in-progress task → pending_validation_1
  - mark_task_as_validated: close-out once every level is validated

Who may decide a level is answered by ``permission.can_validate``.

Usage:
    from keon.services.validation import validate_level

    validate_level(level_id=7, actor=profile, comment="OK pour moi")
"""

import logging

from keon.core.exceptions import ConflictError, NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.task import TERMINAL_STATUSES, Task, TaskValidationLevel
from keon.services.cache_service import TaskCache
from keon.services.notification import NotificationService
from keon.services.permission import check_can_validate
from keon.services.task_lifecycle import apply_transition, get_task
from keon.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# ── Queries ──────────────────────────────────────────────────────────────────


def _get_level(level_id: int) -> TaskValidationLevel:
    level = db.session.get(TaskValidationLevel, level_id)
    if level is None:
        raise NotFoundError(resource="TaskValidationLevel", resource_id=level_id)
    return level


def list_validation_levels(task_id: int) -> list[TaskValidationLevel]:
    get_task(task_id)
    return (
        TaskValidationLevel.query
        .filter_by(task_id=task_id)
        .order_by(TaskValidationLevel.level.asc())
        .all()
    )


def get_current_pending_level(task_id: int) -> TaskValidationLevel | None:
    """Lowest-numbered pending level of the task, or None when nothing is pending."""
    return (
        TaskValidationLevel.query
        .filter_by(task_id=task_id, status="pending")
        .order_by(TaskValidationLevel.level.asc())
        .first()
    )


def list_pending_validations_for(profile) -> list[TaskValidationLevel]:
    """Pending levels the profile may decide, on tasks that are still open."""
    cond = TaskValidationLevel.validator_id == profile.id
    if profile.department_id is not None:
        cond = cond | (TaskValidationLevel.validator_department_id == profile.department_id)
    return (
        TaskValidationLevel.query
        .join(Task, Task.id == TaskValidationLevel.task_id)
        .filter(TaskValidationLevel.status == "pending")
        .filter(cond)
        .filter(Task.status.notin_(TERMINAL_STATUSES))
        .order_by(TaskValidationLevel.created_at.asc(), TaskValidationLevel.id.asc())
        .all()
    )


# ── Decisions ────────────────────────────────────────────────────────────────


def _decide(level: TaskValidationLevel, actor, status: str, comment: str | None) -> None:
    """Compare-and-set the level from pending to ``status``.

    Raises:
        ConflictError: the level was already decided (possibly concurrently).
    """
    if level.status != "pending":
        raise ConflictError("TaskValidationLevel", "status", level.status)

    updated = (
        TaskValidationLevel.query
        .filter_by(id=level.id, status="pending")
        .update(
            {
                "status": status,
                "comment": comment,
                "validated_at": utcnow(),
                "decided_by_id": actor.id,
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        db.session.rollback()
        raise ConflictError("TaskValidationLevel", "status", "decided")

    db.session.refresh(level)
    write_event(
        event_type="validation_decided",
        entity_type="validation_level",
        entity_id=level.id,
        triggered_by=actor.id,
        payload={"task_id": level.task_id, "level": level.level, "decision": status, "comment": comment},
    )


def validate_level(level_id: int, actor, comment: str | None = None) -> bool:
    """
    Approve one validation level.

    The parent task's status is not advanced; the next pending level (if
    any) is notified.

    Raises:
        NotFoundError, PermissionDenied, ConflictError
    """
    level = _get_level(level_id)
    check_can_validate(actor, level)
    _decide(level, actor, "validated", comment)

    task = db.session.get(Task, level.task_id)
    next_level = get_current_pending_level(level.task_id)
    if next_level is not None:
        task.current_validation_level = next_level.level
        NotificationService.notify_validation_requested(next_level, task)

    db.session.commit()
    TaskCache.invalidate(level.task_id)
    logger.info("Validation level %s (task %s, L%s) validated by %s",
                level.id, level.task_id, level.level, actor.id)
    return True


def refuse_level(level_id: int, actor, comment: str) -> bool:
    """
    Refuse one validation level; the parent task becomes ``refused``.

    The task status is set directly, whatever level was refused and
    whatever the task's current status.

    Raises:
        ValidationError: empty comment.
        NotFoundError, PermissionDenied, ConflictError
    """
    if not comment or not comment.strip():
        raise ValidationError("A comment is required to refuse", details={"field": "comment"})

    level = _get_level(level_id)
    check_can_validate(actor, level)
    _decide(level, actor, "refused", comment.strip())

    task = db.session.get(Task, level.task_id)
    old_status = task.status
    task.status = "refused"
    task.validation_comment = comment.strip()
    task.current_validation_level = level.level
    write_event(
        event_type="task_status_changed",
        entity_type=task.type,
        entity_id=task.id,
        triggered_by=actor.id,
        payload={"from": old_status, "to": "refused", "reason": "validation_refused", "level": level.level},
    )
    NotificationService.notify_task_refused(task, comment.strip())

    db.session.commit()
    TaskCache.invalidate(task.id)
    logger.info("Validation level %s (task %s, L%s) refused by %s",
                level.id, task.id, level.level, actor.id)
    return True


def request_validation(task_id: int, actor) -> Task:
    """
    Submit an in-progress task for sign-off.

    Stamps ``validation_requested_at``, moves the task to
    ``pending_validation_1`` and notifies the validator of the first
    pending level.

    Raises:
        ValidationError: the task has no validation level.
        InvalidTransition: the task is not in a status that can request validation.
    """
    task = get_task(task_id)
    first_pending = get_current_pending_level(task.id)
    if first_pending is None:
        raise ValidationError(
            "Task has no pending validation level",
            details={"task_id": task.id},
        )

    apply_transition(task, "pending_validation_1", actor.id if actor else None, "validation_requested")
    task.validation_requested_at = utcnow()
    task.current_validation_level = first_pending.level
    write_event(
        event_type="validation_requested",
        entity_type=task.type,
        entity_id=task.id,
        triggered_by=actor.id if actor else None,
        payload={"level": first_pending.level},
    )
    NotificationService.notify_validation_requested(first_pending, task)

    db.session.commit()
    TaskCache.invalidate(task.id)
    return task


def mark_task_as_validated(task_id: int, actor, comment: str | None = None) -> Task:
    """
    Close out a task whose validation levels are all validated.

    Raises:
        ValidationError: some level is still pending or was refused.
        InvalidTransition: the task status does not allow ``validated``.
    """
    task = get_task(task_id)
    undecided = (
        TaskValidationLevel.query
        .filter(TaskValidationLevel.task_id == task.id, TaskValidationLevel.status != "validated")
        .order_by(TaskValidationLevel.level.asc())
        .all()
    )
    if undecided:
        raise ValidationError(
            "Every validation level must be validated first",
            details={"levels": [{"level": lvl.level, "status": lvl.status} for lvl in undecided]},
        )

    apply_transition(task, "validated", actor.id if actor else None)
    task.validator_id = actor.id if actor else None
    task.validation_comment = comment

    db.session.commit()
    TaskCache.invalidate(task.id)
    return task
