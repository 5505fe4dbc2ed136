"""
KEON Task Manager
Workflow audit model.

Models:
    - WorkflowEvent: immutable, append-only trail of workflow events.
"""

from datetime import datetime, timezone

from keon.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EVENT_TYPES = {
    # Requests
    "request_created",
    "request_validated",
    "request_refused",
    # Tasks
    "task_created",
    "task_status_changed",
    "task_assigned",
    # Validation
    "validation_requested",
    "validation_decided",
    # Checklist
    "checklist_item_completed",
}

ENTITY_TYPES = {"task", "request", "validation_level", "checklist_item"}


class WorkflowEvent(db.Model):
    """
    Immutable trail of workflow events.

    One row per event. ``payload`` carries event-specific detail
    (old/new status, created task id, decision comment, ...).
    """

    __tablename__ = "workflow_events"
    __table_args__ = (
        db.Index("idx_workflow_event_entity", "entity_type", "entity_id"),
        db.Index("idx_workflow_event_type", "event_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False, comment="task | request | validation_level | …")
    entity_id = db.Column(db.Integer, nullable=False)
    triggered_by = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
        comment="Acting profile (NULL for scheduler-triggered events)",
    )
    payload = db.Column(db.JSON, default=dict)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "triggered_by": self.triggered_by,
            "payload": self.payload or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowEvent {self.id}: {self.event_type} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    triggered_by: int | None = None,
    payload: dict | None = None,
) -> WorkflowEvent:
    """
    Append a single workflow event.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) WorkflowEvent instance.
    """
    event = WorkflowEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        triggered_by=triggered_by,
        payload=payload or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
