"""
KEON Task Manager
Notification & Scheduling Blueprint.

Provides:
    - Notifications of the acting profile (and its department)
    - Scheduled job management (list, trigger, toggle)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from keon.blueprints import get_acting_profile
from keon.services.notification import NotificationService
from keon.services.scheduler_service import SchedulerService, get_registered_jobs
from keon.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    profile, err = get_acting_profile()
    if err:
        return err
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_profile(
        profile, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(profile),
    }), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    profile, err = get_acting_profile()
    if err:
        return err
    notif = NotificationService.mark_read(notification_id, profile)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    profile, err = get_acting_profile()
    if err:
        return err
    count = NotificationService.mark_all_read(profile)
    return jsonify({"marked_read": count}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()}), 200


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    outcome = SchedulerService.run_job(job_name)
    status = 200 if outcome["status"] == "success" else 500
    return jsonify(outcome), status


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "enabled is required")
    job = SchedulerService.toggle_job(job_name, bool(data["enabled"]))
    if job is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(job), 200
