"""
KEON Task Manager
Recurrence audit model.

Models:
    - RecurrenceRun: append-only log of every recurrence attempt
"""

from datetime import datetime, timezone

from keon.models import db


RUN_STATUSES = ("success", "error")


class RecurrenceRun(db.Model):
    """
    One attempt to generate a recurring request.

    Rows are never updated; a failed attempt is recorded with ``status='error'``
    and the message of the exception that aborted it.
    """

    __tablename__ = "recurrence_runs"
    __table_args__ = (
        db.Index("ix_recurrence_runs_template", "process_template_id", "scheduled_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    process_template_id = db.Column(
        db.Integer, db.ForeignKey("process_templates.id", ondelete="CASCADE"), nullable=False,
    )
    sub_process_template_id = db.Column(
        db.Integer, db.ForeignKey("sub_process_templates.id", ondelete="CASCADE"), nullable=True,
    )
    request_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(10), nullable=False, comment="success | error")
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "process_template_id": self.process_template_id,
            "sub_process_template_id": self.sub_process_template_id,
            "request_id": self.request_id,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<RecurrenceRun {self.id}: template={self.process_template_id} {self.status}>"
