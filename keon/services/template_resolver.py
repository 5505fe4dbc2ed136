"""Template resolution: which task templates a request materialises."""

from keon.core.exceptions import NotFoundError
from keon.models import db
from keon.models.org import Subcategory
from keon.models.template import ProcessTemplate, TaskTemplate


def resolve_task_templates(process_template_id: int, sub_process_template_id: int | None = None) -> list[TaskTemplate]:
    """
    Ordered task templates for a process or one of its sub-processes.

    With a sub-process id, that sub-process's templates are returned; when
    it has none (or no sub-process was given) the templates attached directly
    to the process are used. An empty list is a valid result.

    Raises:
        NotFoundError: unknown process template.
    """
    if db.session.get(ProcessTemplate, process_template_id) is None:
        raise NotFoundError(resource="ProcessTemplate", resource_id=process_template_id)

    if sub_process_template_id is not None:
        templates = (
            TaskTemplate.query
            .filter_by(sub_process_template_id=sub_process_template_id)
            .order_by(TaskTemplate.order_index.asc(), TaskTemplate.id.asc())
            .all()
        )
        if templates:
            return templates

    return (
        TaskTemplate.query
        .filter_by(process_template_id=process_template_id, sub_process_template_id=None)
        .order_by(TaskTemplate.order_index.asc(), TaskTemplate.id.asc())
        .all()
    )


def get_process_template_for_subcategory(subcategory_id: int) -> int | None:
    sub = db.session.get(Subcategory, subcategory_id)
    if sub is None:
        return None
    return sub.default_process_template_id
