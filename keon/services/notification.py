"""
KEON Task Manager
Notification Service.

Central service for creating and querying in-app notifications.
Writers only ``add`` + ``flush``; the calling workflow owns the commit.
"""

from datetime import datetime, timezone

from keon.models import db
from keon.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient_id=None, department_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            recipient_id=recipient_id,
            department_id=department_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _visible_to(profile):
        cond = Notification.recipient_id == profile.id
        if profile.department_id is not None:
            cond = cond | (
                (Notification.recipient_id.is_(None))
                & (Notification.department_id == profile.department_id)
            )
        return Notification.query.filter(cond)

    @staticmethod
    def list_for_profile(profile, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications addressed to a profile or its department, newest first.
        """
        q = NotificationService._visible_to(profile)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(profile):
        return NotificationService._visible_to(profile).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, profile):
        """Mark a single notification as read. None when the profile cannot see it."""
        notif = (
            NotificationService._visible_to(profile)
            .filter(Notification.id == notification_id)
            .first()
        )
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(profile):
        q = NotificationService._visible_to(profile).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    # ── Workflow helpers ──────────────────────────────────────────────────

    @staticmethod
    def notify_pending_assignments(*, request_id, count, target_manager_id=None,
                                   target_department_id=None):
        """Tell the target manager (or the whole department) that tasks await dispatch."""
        if count <= 0:
            return None
        plural = "s" if count > 1 else ""
        return NotificationService.create(
            title=f"{count} tâche{plural} à affecter",
            message=f"La demande #{request_id} a généré {count} tâche{plural} en attente d'affectation.",
            category="assignment",
            severity="info",
            recipient_id=target_manager_id,
            department_id=None if target_manager_id else target_department_id,
            entity_type="request",
            entity_id=request_id,
        )

    @staticmethod
    def notify_validation_requested(level, task):
        """Notify the validator (profile or department) of a level awaiting decision."""
        return NotificationService.create(
            title=f"Validation niveau {level.level} demandée",
            message=f"{task.title}",
            category="validation",
            severity="info",
            recipient_id=level.validator_id,
            department_id=None if level.validator_id else level.validator_department_id,
            entity_type="task",
            entity_id=task.id,
        )

    @staticmethod
    def notify_task_assigned(task):
        return NotificationService.create(
            title="Nouvelle tâche affectée",
            message=f"{task.title}",
            category="assignment",
            severity="info",
            recipient_id=task.assignee_id,
            entity_type="task",
            entity_id=task.id,
        )

    @staticmethod
    def notify_task_refused(task, comment):
        """Tell the assignee their task was refused at validation."""
        if task.assignee_id is None:
            return None
        return NotificationService.create(
            title="Tâche refusée",
            message=f"{task.title} — {comment}",
            category="validation",
            severity="warning",
            recipient_id=task.assignee_id,
            entity_type="task",
            entity_id=task.id,
        )

    @staticmethod
    def notify_task_overdue(task):
        return NotificationService.create(
            title="Tâche en retard",
            message=f"{task.title} — échéance {task.due_date}.",
            category="deadline",
            severity="warning",
            recipient_id=task.assignee_id,
            department_id=None if task.assignee_id else task.target_department_id,
            entity_type="task",
            entity_id=task.id,
        )
