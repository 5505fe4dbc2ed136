"""
Task Blueprint.

Endpoints:
    GET    /api/v1/tasks                          list (status, type, assignee_id, parent_request_id)
    POST   /api/v1/tasks                          create standalone task
    GET    /api/v1/tasks/<id>                     read (read-through cache)
    POST   /api/v1/tasks/<id>/transition          Body: { status, reason? }
    GET    /api/v1/tasks/<id>/transitions         allowed next statuses
    POST   /api/v1/tasks/<id>/assign              Body: { assignee_id }
    GET    /api/v1/tasks/<id>/checklist           items + progress
    POST   /api/v1/tasks/<id>/checklist           Body: { title }
    PATCH  /api/v1/checklist-items/<id>           Body: { title }
    DELETE /api/v1/checklist-items/<id>
    POST   /api/v1/checklist-items/<id>/toggle
"""

import logging

from flask import Blueprint, jsonify, request

from keon.blueprints import get_acting_profile, get_json_body, paginate_query
from keon.core.exceptions import NotFoundError
from keon.models.task import TASK_STATUSES, TASK_TYPES, Task
from keon.services import checklist as checklist_service
from keon.services import task_lifecycle
from keon.services.cache_service import TaskCache
from keon.utils.errors import E, api_error
from keon.utils.helpers import parse_int

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api/v1")


@tasks_bp.route("/tasks", methods=["GET"])
def list_tasks():
    query = Task.query
    status = request.args.get("status")
    if status:
        if status not in TASK_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Unknown status '{status}'")
        query = query.filter_by(status=status)
    task_type = request.args.get("type")
    if task_type:
        if task_type not in TASK_TYPES:
            return api_error(E.VALIDATION_INVALID, f"Unknown type '{task_type}'")
        query = query.filter_by(type=task_type)
    for arg in ("assignee_id", "parent_request_id", "target_department_id"):
        value = request.args.get(arg, type=int)
        if value is not None:
            query = query.filter(getattr(Task, arg) == value)

    items, total = paginate_query(query.order_by(Task.created_at.desc(), Task.id.desc()))
    return jsonify({"items": [t.to_dict() for t in items], "total": total}), 200


@tasks_bp.route("/tasks", methods=["POST"])
def create_task():
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    task = task_lifecycle.create_task(data, actor_id=profile.id)
    return jsonify(task.to_dict()), 201


@tasks_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    data = TaskCache.get_task_dict(task_id)
    if data is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return jsonify(data), 200


@tasks_bp.route("/tasks/<int:task_id>/transition", methods=["POST"])
def transition_task(task_id):
    """Move a task to another status.

    Returns 200 with the task, 422 ERR_INVALID_TRANSITION when the target is
    not reachable from the current status.
    """
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    new_status = (data.get("status") or "").strip()
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    task = task_lifecycle.transition_task(task_id, new_status, profile.id, data.get("reason"))
    return jsonify(task.to_dict()), 200


@tasks_bp.route("/tasks/<int:task_id>/transitions", methods=["GET"])
def list_transitions(task_id):
    task = task_lifecycle.get_task(task_id)
    return jsonify({
        "status": task.status,
        "allowed": task_lifecycle.allowed_transitions(task.status),
    }), 200


@tasks_bp.route("/tasks/<int:task_id>/assign", methods=["POST"])
def assign_task(task_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    assignee_id = parse_int(data.get("assignee_id"))
    if assignee_id is None:
        return api_error(E.VALIDATION_REQUIRED, "assignee_id is required")
    task = task_lifecycle.assign_task(task_id, assignee_id, actor_id=profile.id)
    return jsonify(task.to_dict()), 200


# ── Checklist ────────────────────────────────────────────────────────────────


@tasks_bp.route("/tasks/<int:task_id>/checklist", methods=["GET"])
def list_checklist(task_id):
    items = checklist_service.list_items(task_id)
    done = sum(1 for i in items if i.is_completed)
    return jsonify({
        "items": [i.to_dict() for i in items],
        "progress": {"completed": done, "total": len(items)},
    }), 200


@tasks_bp.route("/tasks/<int:task_id>/checklist", methods=["POST"])
def add_checklist_item(task_id):
    data, err = get_json_body()
    if err:
        return err
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    item = checklist_service.add_item(task_id, data["title"])
    return jsonify(item.to_dict()), 201


@tasks_bp.route("/checklist-items/<int:item_id>", methods=["PATCH"])
def rename_checklist_item(item_id):
    data, err = get_json_body()
    if err:
        return err
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    item = checklist_service.rename_item(item_id, data["title"])
    return jsonify(item.to_dict()), 200


@tasks_bp.route("/checklist-items/<int:item_id>", methods=["DELETE"])
def delete_checklist_item(item_id):
    checklist_service.delete_item(item_id)
    return "", 204


@tasks_bp.route("/checklist-items/<int:item_id>/toggle", methods=["POST"])
def toggle_checklist_item(item_id):
    profile, err = get_acting_profile()
    if err:
        return err
    item = checklist_service.toggle_item(item_id, actor_id=profile.id)
    return jsonify(item.to_dict()), 200
