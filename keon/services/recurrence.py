"""
Recurrence Scheduler

One tick (``process_recurrence``) creates a request for every process and
sub-process template whose recurrence is due, logs a RecurrenceRun per
attempt and advances ``recurrence_next_run_at``.

Each template is isolated: its request, run log and schedule update are
written in one SAVEPOINT. A failure rolls that back, records an ``error``
run and the tick moves on to the next template.

Triggered by the HTTP function endpoint, the ``flask process-recurrence``
CLI command and the ``process_recurrence`` scheduled job.
"""

import calendar
import logging
from datetime import datetime, timedelta

from flask import current_app

from keon.core.exceptions import ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.recurrence import RecurrenceRun
from keon.models.task import Task
from keon.models.template import RECURRENCE_UNITS, ProcessTemplate, SubProcessTemplate
from keon.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_DELAY_DAYS = 7


# ── Date arithmetic ──────────────────────────────────────────────────────────


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_next_recurrence(current: datetime, interval: int, unit: str) -> datetime:
    """
    Next occurrence ``interval`` units after ``current``.

    Month and year steps keep the day of month, clamped to the last day of
    the target month (31 Jan + 1 month → 28/29 Feb).

    Raises:
        ValidationError: interval below 1 or unknown unit.
    """
    if interval is None or interval < 1:
        raise ValidationError(
            "Recurrence interval must be at least 1", details={"interval": interval},
        )
    if unit == "days":
        return current + timedelta(days=interval)
    if unit == "weeks":
        return current + timedelta(weeks=interval)
    if unit == "months":
        return _add_months(current, interval)
    if unit == "years":
        return _add_months(current, 12 * interval)
    raise ValidationError(
        f"Unknown recurrence unit '{unit}'", details={"unit": unit, "valid_units": list(RECURRENCE_UNITS)},
    )


def _default_delay():
    return current_app.config.get("RECURRENCE_DEFAULT_DELAY_DAYS", DEFAULT_DELAY_DAYS)


def build_recurrence_title(template: ProcessTemplate, start: datetime) -> str:
    """Title from ``settings.title_pattern`` (``{process}``, ``{date}``) or the template name."""
    pattern = (template.settings or {}).get("title_pattern")
    if not pattern:
        return template.name
    return pattern.replace("{process}", template.name).replace("{date}", start.strftime("%d/%m/%Y"))


def _create_recurring_request(process: ProcessTemplate, *, title, description, delay_days, now) -> Task:
    settings = process.settings or {}
    request_task = Task(
        title=title,
        description=description,
        type="request",
        status="todo",
        priority=settings.get("default_priority") or "medium",
        creator_id=process.creator_id,
        requester_id=process.creator_id,
        category_id=process.category_id,
        subcategory_id=process.subcategory_id,
        target_department_id=process.target_department_id,
        source_process_template_id=process.id,
        start_date=now,
        due_date=(now + timedelta(days=delay_days)).date(),
    )
    db.session.add(request_task)
    db.session.flush()
    write_event(
        event_type="request_created",
        entity_type="request",
        entity_id=request_task.id,
        payload={"process_template_id": process.id, "source": "recurrence"},
    )
    return request_task


def _record_error(process_template_id, sub_process_template_id, scheduled_at, exc):
    db.session.add(RecurrenceRun(
        process_template_id=process_template_id,
        sub_process_template_id=sub_process_template_id,
        scheduled_at=scheduled_at,
        status="error",
        error_message=str(exc),
    ))
    db.session.flush()


# ── Tick ─────────────────────────────────────────────────────────────────────


def _run_process_template(tpl: ProcessTemplate, now: datetime) -> int:
    scheduled_at = as_utc(tpl.recurrence_next_run_at)
    request_task = _create_recurring_request(
        tpl,
        title=build_recurrence_title(tpl, now),
        description=f'Demande récurrente générée automatiquement depuis le processus "{tpl.name}".',
        delay_days=tpl.recurrence_delay_days or _default_delay(),
        now=now,
    )
    db.session.add(RecurrenceRun(
        process_template_id=tpl.id,
        request_id=request_task.id,
        scheduled_at=scheduled_at,
        status="success",
    ))
    tpl.recurrence_next_run_at = compute_next_recurrence(
        scheduled_at, tpl.recurrence_interval, tpl.recurrence_unit,
    )
    db.session.flush()
    return request_task.id


def _run_sub_process_template(sp: SubProcessTemplate, now: datetime) -> int:
    scheduled_at = as_utc(sp.recurrence_next_run_at)
    parent = sp.process_template
    if parent is None:
        raise ValidationError("Parent process not found", details={"sub_process_template_id": sp.id})
    request_task = _create_recurring_request(
        parent,
        title=f"{parent.name} - {sp.name} (récurrence)",
        description=f'Demande récurrente générée automatiquement depuis le sous-processus "{sp.name}".',
        delay_days=sp.recurrence_delay_days or _default_delay(),
        now=now,
    )
    request_task.source_sub_process_template_id = sp.id
    db.session.add(RecurrenceRun(
        process_template_id=parent.id,
        sub_process_template_id=sp.id,
        request_id=request_task.id,
        scheduled_at=scheduled_at,
        status="success",
    ))
    sp.recurrence_next_run_at = compute_next_recurrence(
        scheduled_at, sp.recurrence_interval, sp.recurrence_unit,
    )
    db.session.flush()
    return request_task.id


def _due(model, now):
    return (
        model.query
        .filter(
            model.recurrence_enabled.is_(True),
            model.recurrence_next_run_at.isnot(None),
            model.recurrence_next_run_at <= now,
        )
        .order_by(model.recurrence_next_run_at.asc(), model.id.asc())
        .all()
    )


def process_recurrence(now: datetime | None = None) -> dict:
    """
    Generate the requests of every due recurrence.

    Returns:
        ``{"processed": n, "results": [{template_id, kind, status, request_id | error}]}``
    """
    now = as_utc(now) if now else utcnow()
    results = []

    for tpl in _due(ProcessTemplate, now):
        scheduled_at = tpl.recurrence_next_run_at
        try:
            with db.session.begin_nested():
                request_id = _run_process_template(tpl, now)
            results.append({"template_id": tpl.id, "kind": "process", "status": "success",
                            "request_id": request_id})
        except Exception as exc:
            logger.warning("Recurrence failed for process template %s: %s", tpl.id, exc)
            _record_error(tpl.id, None, scheduled_at, exc)
            results.append({"template_id": tpl.id, "kind": "process", "status": "error", "error": str(exc)})

    for sp in _due(SubProcessTemplate, now):
        scheduled_at = sp.recurrence_next_run_at
        try:
            with db.session.begin_nested():
                request_id = _run_sub_process_template(sp, now)
            results.append({"template_id": sp.id, "kind": "sub_process", "status": "success",
                            "request_id": request_id})
        except Exception as exc:
            logger.warning("Recurrence failed for sub-process template %s: %s", sp.id, exc)
            _record_error(sp.process_template_id, sp.id, scheduled_at, exc)
            results.append({"template_id": sp.id, "kind": "sub_process", "status": "error", "error": str(exc)})

    db.session.commit()
    if results:
        logger.info(
            "Recurrence tick: %d processed, %d error(s)",
            len(results), sum(1 for r in results if r["status"] == "error"),
        )
    return {"processed": len(results), "results": results}


def list_recurrence_runs(process_template_id: int | None = None):
    q = RecurrenceRun.query
    if process_template_id is not None:
        q = q.filter_by(process_template_id=process_template_id)
    return q.order_by(RecurrenceRun.created_at.desc(), RecurrenceRun.id.desc())
