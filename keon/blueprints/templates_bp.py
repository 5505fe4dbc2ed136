"""
Template Blueprint.

Endpoints:
    GET    /api/v1/process-templates                         list (category_id, subcategory_id filters)
    POST   /api/v1/process-templates                         create
    GET    /api/v1/process-templates/<id>                    read with sub-processes + task templates
    PUT    /api/v1/process-templates/<id>                    update (creator or template manager)
    POST   /api/v1/process-templates/<id>/sub-processes      create sub-process template
    POST   /api/v1/task-templates                            create task template
    GET    /api/v1/process-templates/<id>/resolved-tasks     ordered task templates a request would generate
"""

import logging

from flask import Blueprint, jsonify, request

from keon.blueprints import get_acting_profile, get_json_body, paginate_query
from keon.services import template_service
from keon.services.template_resolver import resolve_task_templates

logger = logging.getLogger(__name__)

templates_bp = Blueprint("templates", __name__, url_prefix="/api/v1")


@templates_bp.route("/process-templates", methods=["GET"])
def list_process_templates():
    query = template_service.list_process_templates(
        category_id=request.args.get("category_id", type=int),
        subcategory_id=request.args.get("subcategory_id", type=int),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [t.to_dict() for t in items], "total": total}), 200


@templates_bp.route("/process-templates", methods=["POST"])
def create_process_template():
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    tpl = template_service.create_process_template(data, profile)
    return jsonify(tpl.to_dict()), 201


@templates_bp.route("/process-templates/<int:template_id>", methods=["GET"])
def get_process_template(template_id):
    tpl = template_service.get_process_template(template_id)
    return jsonify(tpl.to_dict(include_children=True)), 200


@templates_bp.route("/process-templates/<int:template_id>", methods=["PUT"])
def update_process_template(template_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    tpl = template_service.update_process_template(template_id, data, profile)
    return jsonify(tpl.to_dict()), 200


@templates_bp.route("/process-templates/<int:template_id>/sub-processes", methods=["POST"])
def create_sub_process(template_id):
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    sp = template_service.create_sub_process(template_id, data, profile)
    return jsonify(sp.to_dict()), 201


@templates_bp.route("/task-templates", methods=["POST"])
def create_task_template():
    profile, err = get_acting_profile()
    if err:
        return err
    data, err = get_json_body()
    if err:
        return err
    task_tpl = template_service.create_task_template(data, profile)
    return jsonify(task_tpl.to_dict()), 201


@templates_bp.route("/process-templates/<int:template_id>/resolved-tasks", methods=["GET"])
def resolved_tasks(template_id):
    """Task templates that a request on this process (or sub-process) would materialise."""
    templates = resolve_task_templates(
        template_id, request.args.get("sub_process_template_id", type=int),
    )
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)}), 200
