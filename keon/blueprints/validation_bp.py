"""
Validation Blueprint.

Endpoints:
    GET    /api/v1/tasks/<id>/validation-levels        levels ordered by level + current pending level
    POST   /api/v1/tasks/<id>/request-validation       in-progress → pending_validation_1
    POST   /api/v1/tasks/<id>/mark-validated           Body: { comment? }
    POST   /api/v1/validation-levels/<id>/validate     Body: { comment? }
    POST   /api/v1/validation-levels/<id>/refuse       Body: { comment }  (required)
    GET    /api/v1/validations/pending                 levels the acting profile may decide

Decisions on an already decided level return 409 ERR_CONFLICT_STATE.
"""

import logging

from flask import Blueprint, jsonify, request

from keon.blueprints import get_acting_profile
from keon.services import validation
from keon.utils.errors import E, api_error

logger = logging.getLogger(__name__)

validation_bp = Blueprint("validation", __name__, url_prefix="/api/v1")


@validation_bp.route("/tasks/<int:task_id>/validation-levels", methods=["GET"])
def list_levels(task_id):
    levels = validation.list_validation_levels(task_id)
    current = validation.get_current_pending_level(task_id)
    return jsonify({
        "items": [lvl.to_dict() for lvl in levels],
        "current_pending_level": current.to_dict() if current else None,
    }), 200


@validation_bp.route("/tasks/<int:task_id>/request-validation", methods=["POST"])
def request_validation(task_id):
    profile, err = get_acting_profile()
    if err:
        return err
    task = validation.request_validation(task_id, profile)
    return jsonify(task.to_dict()), 200


@validation_bp.route("/tasks/<int:task_id>/mark-validated", methods=["POST"])
def mark_validated(task_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    task = validation.mark_task_as_validated(task_id, profile, data.get("comment"))
    return jsonify(task.to_dict()), 200


@validation_bp.route("/validation-levels/<int:level_id>/validate", methods=["POST"])
def validate_level(level_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    validation.validate_level(level_id, profile, data.get("comment"))
    return jsonify({"success": True, "level_id": level_id, "status": "validated"}), 200


@validation_bp.route("/validation-levels/<int:level_id>/refuse", methods=["POST"])
def refuse_level(level_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    comment = (data.get("comment") or "").strip()
    if not comment:
        return api_error(E.VALIDATION_REQUIRED, "comment is required to refuse")
    validation.refuse_level(level_id, profile, comment)
    return jsonify({"success": True, "level_id": level_id, "status": "refused"}), 200


@validation_bp.route("/validations/pending", methods=["GET"])
def list_pending():
    profile, err = get_acting_profile()
    if err:
        return err
    levels = validation.list_pending_validations_for(profile)
    items = []
    for lvl in levels:
        entry = lvl.to_dict()
        task = lvl.task
        entry["task"] = {"id": task.id, "title": task.title, "status": task.status}
        items.append(entry)
    return jsonify({"items": items, "total": len(items)}), 200
