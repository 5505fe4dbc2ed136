"""Checklist items of a task: add, rename, toggle, delete."""

import logging

from keon.core.exceptions import NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import write_event
from keon.models.task import ChecklistItem
from keon.services.cache_service import TaskCache
from keon.services.task_lifecycle import get_task
from keon.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _get_item(item_id: int) -> ChecklistItem:
    item = db.session.get(ChecklistItem, item_id)
    if item is None:
        raise NotFoundError(resource="ChecklistItem", resource_id=item_id)
    return item


def list_items(task_id: int) -> list[ChecklistItem]:
    get_task(task_id)
    return (
        ChecklistItem.query
        .filter_by(task_id=task_id)
        .order_by(ChecklistItem.order_index.asc(), ChecklistItem.id.asc())
        .all()
    )


def add_item(task_id: int, title: str) -> ChecklistItem:
    """Append an item after the last one."""
    get_task(task_id)
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"field": "title"})
    last = (
        db.session.query(db.func.max(ChecklistItem.order_index))
        .filter(ChecklistItem.task_id == task_id)
        .scalar()
    )
    item = ChecklistItem(task_id=task_id, title=title, order_index=0 if last is None else last + 1)
    db.session.add(item)
    db.session.commit()
    return item


def rename_item(item_id: int, title: str) -> ChecklistItem:
    item = _get_item(item_id)
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"field": "title"})
    item.title = title
    db.session.commit()
    return item


def toggle_item(item_id: int, actor_id: int | None = None) -> ChecklistItem:
    """Flip completion; completing stamps who and when, un-completing clears both."""
    item = _get_item(item_id)
    if item.is_completed:
        item.is_completed = False
        item.completed_at = None
        item.completed_by = None
    else:
        item.is_completed = True
        item.completed_at = utcnow()
        item.completed_by = actor_id
        write_event(
            event_type="checklist_item_completed",
            entity_type="checklist_item",
            entity_id=item.id,
            triggered_by=actor_id,
            payload={"task_id": item.task_id},
        )
    db.session.commit()
    TaskCache.invalidate(item.task_id)
    return item


def delete_item(item_id: int) -> None:
    item = _get_item(item_id)
    db.session.delete(item)
    db.session.commit()
