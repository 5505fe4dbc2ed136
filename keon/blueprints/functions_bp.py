"""
Server functions blueprint.

Endpoints:
    POST   /api/v1/functions/validate-material-request
           Body: { request_id, action: "validate" | "refuse" }
           The decision is recorded under the acting profile (X-Profile-Id).
           Returns: { success, task_id?, message }
    POST   /api/v1/functions/process-recurrence
           Body: { now? }  (ISO timestamp, defaults to the current time)
           Returns: { processed, results }
    GET    /api/v1/recurrence-runs?process_template_id=
           Recurrence audit log, newest first.

The whole blueprint is rate limited (RECURRENCE_TRIGGER_RATE_LIMIT).
"""

import logging

from flask import Blueprint, jsonify, request

from keon.blueprints import get_acting_profile, get_json_body, paginate_query
from keon.services import material_request, recurrence
from keon.utils.errors import E, api_error
from keon.utils.helpers import parse_datetime, parse_int

logger = logging.getLogger(__name__)

functions_bp = Blueprint("functions", __name__, url_prefix="/api/v1")


@functions_bp.route("/functions/validate-material-request", methods=["POST"])
def validate_material_request():
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    request_id = parse_int(data.get("request_id"))
    action = (data.get("action") or "").strip()
    if request_id is None or not action:
        return api_error(E.VALIDATION_REQUIRED, "request_id and action required")
    if action not in material_request.MATERIAL_ACTIONS:
        return api_error(E.VALIDATION_INVALID, "Invalid action")

    outcome = material_request.validate_material_request(request_id, action, validator_id=profile.id)
    return jsonify(outcome), 200


@functions_bp.route("/functions/process-recurrence", methods=["POST"])
def process_recurrence():
    data = request.get_json(silent=True) or {}
    now = None
    if data.get("now"):
        now = parse_datetime(data["now"])
        if now is None:
            return api_error(E.VALIDATION_INVALID, "now must be an ISO timestamp")
    outcome = recurrence.process_recurrence(now=now)
    return jsonify(outcome), 200


@functions_bp.route("/recurrence-runs", methods=["GET"])
def list_recurrence_runs():
    query = recurrence.list_recurrence_runs(request.args.get("process_template_id", type=int))
    items, total = paginate_query(query)
    return jsonify({"items": [r.to_dict() for r in items], "total": total}), 200
