"""
Request Blueprint.

Endpoints:
    POST   /api/v1/requests                         submit a request; generates its tasks
    GET    /api/v1/requests/<id>                    request with child tasks and material lines
    GET    /api/v1/pending-assignments              tasks awaiting dispatch by the acting profile
    GET    /api/v1/pending-assignments/requests     per-request count of those tasks
"""

import logging

from flask import Blueprint, jsonify

from keon.blueprints import get_acting_profile, get_json_body
from keon.core.exceptions import NotFoundError
from keon.models.material import MaterialRequestLine
from keon.models.task import Task
from keon.services import request_workflow, task_lifecycle
from keon.utils.errors import E, api_error

logger = logging.getLogger(__name__)

requests_bp = Blueprint("requests", __name__, url_prefix="/api/v1")


@requests_bp.route("/requests", methods=["POST"])
def submit_request():
    """Submit a request against a process template.

    Body: { process_template_id | subcategory_id, title?, description?,
            sub_process_template_id?, target_department_id?,
            target_manager_id?, priority?, due_date?,
            material_lines?: [{ref?, designation, quantity?}] }
    Returns: 201 with the request and the number of generated tasks.
    """
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    lines = data.get("material_lines")
    if lines and (not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines)):
        return api_error(E.VALIDATION_INVALID, "material_lines must be a list of objects")
    request_task, created = request_workflow.submit_request(data, actor_id=profile.id)
    return jsonify({"request": request_task.to_dict(), "tasks_created": created}), 201


@requests_bp.route("/requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    request_task = task_lifecycle.get_task(request_id)
    if request_task.type != "request":
        raise NotFoundError(resource="Request", resource_id=request_id)
    children = request_task.children.order_by(Task.id.asc()).all()
    lines = (
        MaterialRequestLine.query
        .filter_by(request_id=request_id)
        .order_by(MaterialRequestLine.id.asc())
        .all()
    )
    body = request_task.to_dict()
    body["tasks"] = [t.to_dict() for t in children]
    body["material_lines"] = [line.to_dict() for line in lines]
    return jsonify(body), 200


@requests_bp.route("/pending-assignments", methods=["GET"])
def list_pending_assignments():
    profile, err = get_acting_profile()
    if err:
        return err
    tasks = task_lifecycle.list_tasks_to_assign(profile)
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)}), 200


@requests_bp.route("/pending-assignments/requests", methods=["GET"])
def list_requests_with_pending():
    profile, err = get_acting_profile()
    if err:
        return err
    return jsonify({"items": task_lifecycle.requests_with_pending(profile)}), 200
