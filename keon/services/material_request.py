"""
Material request validation.

A manager's decision on a material request:
  - validate: waiting lines move to quote stage, a fulfilment task with the
    five-step ordering checklist is created under the request, the request
    becomes ``validated``.
  - refuse: the request becomes ``refused``.

Both emit a workflow event on the request. A request is decided once: the
decision is a compare-and-set on ``request_validation_status``, and a done or
cancelled request is never reopened.
"""

import logging

from flask import current_app

from keon.core.exceptions import ConflictError, InvalidTransition, NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.material import (
    FULFILMENT_CHECKLIST,
    ORDER_STATE_AWAITING_VALIDATION,
    ORDER_STATE_QUOTE_REQUESTED,
    MaterialRequestLine,
)
from keon.models.task import TERMINAL_STATUSES, ChecklistItem, Task
from keon.models.template import ProcessTemplate
from keon.services.cache_service import TaskCache
from keon.services.notification import NotificationService
from keon.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MATERIAL_ACTIONS = ("validate", "refuse")


def _fulfilment_assignee(request_task):
    if request_task.source_process_template_id is not None:
        tpl = db.session.get(ProcessTemplate, request_task.source_process_template_id)
        assignee = ((tpl.settings or {}) if tpl else {}).get("default_material_assignee_id")
        if assignee:
            return int(assignee)
    return current_app.config.get("MATERIAL_DEFAULT_ASSIGNEE_ID")


def _claim_decision(request_task, status, validator_id):
    """Move a pending request to ``status``; the loser of a race gets ConflictError."""
    if request_task.is_terminal:
        raise InvalidTransition(request_task.id, request_task.status, status)
    if request_task.request_validation_status != "pending":
        raise ConflictError("Request", "request_validation_status", request_task.request_validation_status)

    updated = (
        Task.query
        .filter(
            Task.id == request_task.id,
            Task.request_validation_status == "pending",
            Task.status.notin_(TERMINAL_STATUSES),
        )
        .update(
            {
                "status": status,
                "request_validation_status": status,
                "validator_id": validator_id,
                "validated_at": utcnow(),
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        db.session.rollback()
        raise ConflictError("Request", "request_validation_status", "decided")
    db.session.refresh(request_task)


def validate_material_request(request_id: int, action: str, validator_id: int | None = None) -> dict:
    """
    Apply a validate/refuse decision to a material request.

    Returns:
        ``{"success": True, "message": ..., "task_id"?: ...}``

    Raises:
        ValidationError: unknown action.
        NotFoundError: unknown request.
        InvalidTransition: the request is done or cancelled.
        ConflictError: the request was already decided.
    """
    if action not in MATERIAL_ACTIONS:
        raise ValidationError(f"Invalid action '{action}'", details={"valid_actions": list(MATERIAL_ACTIONS)})

    request_task = db.session.get(Task, request_id)
    if request_task is None or request_task.type != "request":
        raise NotFoundError(resource="Request", resource_id=request_id)

    if action == "refuse":
        _claim_decision(request_task, "refused", validator_id)
        write_event(
            event_type="request_refused",
            entity_type="request",
            entity_id=request_task.id,
            triggered_by=validator_id,
            payload={"action": "refuse"},
        )
        db.session.commit()
        TaskCache.invalidate(request_task.id)
        logger.info("Material request %s refused by %s", request_task.id, validator_id)
        return {"success": True, "message": "Demande refusée"}

    _claim_decision(request_task, "validated", validator_id)
    activated = (
        MaterialRequestLine.query
        .filter_by(request_id=request_task.id, order_state=ORDER_STATE_AWAITING_VALIDATION)
        .update({"order_state": ORDER_STATE_QUOTE_REQUESTED}, synchronize_session=False)
    )

    assignee_id = _fulfilment_assignee(request_task)
    task = Task(
        title=f"Commande matériel — {request_task.title}",
        description=f"Tâche de suivi de commande matériel issue de la demande {request_task.id}",
        type="task",
        status="todo",
        priority=request_task.priority or "medium",
        creator_id=validator_id,
        assignee_id=assignee_id,
        requester_id=request_task.requester_id,
        parent_request_id=request_task.id,
        source_process_template_id=request_task.source_process_template_id,
        target_department_id=request_task.target_department_id,
        due_date=request_task.due_date,
    )
    db.session.add(task)
    db.session.flush()
    for idx, title in enumerate(FULFILMENT_CHECKLIST):
        db.session.add(ChecklistItem(task_id=task.id, title=title, order_index=idx))

    write_event(
        event_type="request_validated",
        entity_type="request",
        entity_id=request_task.id,
        triggered_by=validator_id,
        payload={"action": "validate", "created_task_id": task.id, "assignee_id": assignee_id},
    )
    if assignee_id is not None:
        NotificationService.notify_task_assigned(task)

    db.session.commit()
    TaskCache.invalidate(request_task.id)
    logger.info(
        "Material request %s validated by %s: %d line(s) activated, task %s created",
        request_task.id, validator_id, activated, task.id,
    )
    return {"success": True, "task_id": task.id, "message": "Demande validée, tâche créée"}
