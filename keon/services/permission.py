"""
Workflow access policy.

Single place where "who may do what" is decided. Services call the
``check_*`` variants, which raise PermissionDenied; blueprints and list
queries use the boolean predicates.

Usage:
    from keon.services.permission import can_validate, check_can_validate

    if can_validate(profile, level.validator_id, level.validator_department_id):
        ...

    # Raises PermissionDenied if not allowed
    check_can_manage_template(profile, template)
"""

from keon.core.exceptions import PermissionDenied


def can_validate(profile, validator_id: int | None, validator_department_id: int | None) -> bool:
    """
    True iff the profile is the named validator or belongs to the validating
    department.

    Args:
        profile: Acting Profile (or None for anonymous callers).
        validator_id: Named validator of the level, if any.
        validator_department_id: Validating department of the level, if any.
    """
    if profile is None:
        return False
    if validator_id is not None and profile.id == validator_id:
        return True
    if validator_department_id is not None and profile.department_id == validator_department_id:
        return True
    return False


def check_can_validate(profile, level) -> None:
    """Raise PermissionDenied unless ``profile`` may decide ``level``."""
    if not can_validate(profile, level.validator_id, level.validator_department_id):
        raise PermissionDenied(
            getattr(profile, "id", None),
            "validation_decide",
            f"not a validator of level {level.level} on task {level.task_id}",
        )


def can_manage_template(profile, creator_id: int | None) -> bool:
    """Template creators and profiles holding the manage-templates capability may edit."""
    if profile is None:
        return False
    if creator_id is not None and profile.id == creator_id:
        return True
    return bool(profile.can_manage_templates)


def check_can_manage_template(profile, template) -> None:
    if not can_manage_template(profile, template.creator_id):
        raise PermissionDenied(getattr(profile, "id", None), "template_manage")


def can_assign(profile, task) -> bool:
    """The pre-assigned manager or any member of the target department may dispatch."""
    if profile is None:
        return False
    if task.assignee_id is not None and task.assignee_id == profile.id:
        return True
    return task.target_department_id is not None and task.target_department_id == profile.department_id


def check_can_assign(profile, task) -> None:
    if not can_assign(profile, task):
        raise PermissionDenied(getattr(profile, "id", None), "task_assign", f"task {task.id}")
