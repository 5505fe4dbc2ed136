"""
KEON Task Manager
Scheduled Jobs.

Jobs:
    - process_recurrence: one recurrence tick (due process/sub-process templates)
    - overdue_task_scanner: notifies assignees of open tasks past their due date
"""

from __future__ import annotations

import logging
from typing import Any

from keon.models import db
from keon.models.task import Task
from keon.services.notification import NotificationService
from keon.services.recurrence import process_recurrence
from keon.services.scheduler_service import register_job
from keon.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = ("done", "cancelled", "validated", "refused")


@register_job("process_recurrence")
def run_recurrence(app) -> dict[str, Any]:
    """Generate the requests of every due recurring process template."""
    outcome = process_recurrence()
    errors = sum(1 for r in outcome["results"] if r["status"] == "error")
    return {"processed": outcome["processed"], "errors": errors}


@register_job("overdue_task_scanner")
def scan_overdue_tasks(app) -> dict[str, Any]:
    """Notify assignees (or the target department) of overdue open tasks."""
    today = utcnow().date()
    overdue = (
        Task.query
        .filter(
            Task.type == "task",
            Task.due_date.isnot(None),
            Task.due_date < today,
            Task.status.notin_(_CLOSED_STATUSES),
        )
        .order_by(Task.due_date.asc(), Task.id.asc())
        .all()
    )

    results = {"tasks_overdue": len(overdue), "notifications_created": 0}
    for task in overdue:
        if task.assignee_id is None and task.target_department_id is None:
            continue
        NotificationService.notify_task_overdue(task)
        results["notifications_created"] += 1

    db.session.commit()
    logger.info("Overdue scanner: %s", results)
    return results
