"""
Validation orchestrator tests.

    - can_validate: named validator, validating department, anyone else
    - validate_level / refuse_level decisions and their effect on the task
    - decided levels cannot be decided again (409)
    - request_validation / mark_task_as_validated
    - HTTP endpoints under /validation-levels and /tasks/<id>
"""

import pytest

from keon.core.exceptions import (
    ConflictError,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from keon.models import db
from keon.models.audit import WorkflowEvent
from keon.models.notification import Notification
from keon.models.org import Profile
from keon.models.task import Task, TaskValidationLevel
from keon.services import validation
from keon.services.permission import can_validate


def _task_with_levels(status="pending_validation_1", levels=((1, None, None),), assignee_id=None):
    task = Task(
        title="Contrat de travail", type="task", status=status,
        requires_validation=True, assignee_id=assignee_id,
    )
    db.session.add(task)
    db.session.flush()
    created = []
    for level, validator_id, department_id in levels:
        lvl = TaskValidationLevel(
            task_id=task.id, level=level, validator_id=validator_id,
            validator_department_id=department_id, status="pending",
        )
        db.session.add(lvl)
        created.append(lvl)
    db.session.commit()
    return task, created


class TestCanValidate:
    def test_named_validator(self, manager):
        assert can_validate(manager, manager.id, None) is True

    def test_department_member(self, member, department):
        assert can_validate(member, None, department.id) is True

    def test_other_profile(self, outsider, manager, department):
        assert can_validate(outsider, manager.id, department.id) is False

    def test_nobody_when_level_has_no_validator(self, manager):
        assert can_validate(manager, None, None) is False

    def test_anonymous(self, manager):
        assert can_validate(None, manager.id, None) is False


class TestValidateLevel:
    def test_validate_first_of_two(self, manager, department):
        task, (l1, l2) = _task_with_levels(levels=((1, manager.id, None), (2, None, department.id)))
        assert validation.validate_level(l1.id, manager, "OK") is True

        l1 = db.session.get(TaskValidationLevel, l1.id)
        assert l1.status == "validated"
        assert l1.comment == "OK"
        assert l1.decided_by_id == manager.id
        assert l1.validated_at is not None
        task = db.session.get(Task, task.id)
        # task status is not advanced by a level decision
        assert task.status == "pending_validation_1"
        assert task.current_validation_level == 2
        assert validation.get_current_pending_level(task.id).id == l2.id
        notif = Notification.query.filter_by(category="validation").one()
        assert notif.department_id == department.id

    def test_department_validator_decides(self, member, department):
        task, (l1,) = _task_with_levels(levels=((1, None, department.id),))
        validation.validate_level(l1.id, member)
        assert db.session.get(TaskValidationLevel, l1.id).decided_by_id == member.id

    def test_non_validator_forbidden(self, manager, outsider):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        with pytest.raises(PermissionDenied):
            validation.validate_level(l1.id, outsider)
        assert db.session.get(TaskValidationLevel, l1.id).status == "pending"

    def test_second_decision_conflicts(self, manager):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        validation.validate_level(l1.id, manager)
        with pytest.raises(ConflictError):
            validation.validate_level(l1.id, manager)
        with pytest.raises(ConflictError):
            validation.refuse_level(l1.id, manager, "trop tard")

    def test_decision_event(self, manager):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        validation.validate_level(l1.id, manager, "OK")
        event = WorkflowEvent.query.filter_by(event_type="validation_decided").one()
        assert event.entity_id == l1.id
        assert event.payload["decision"] == "validated"


class TestRefuseLevel:
    @pytest.mark.parametrize("refused_level", [1, 2])
    def test_refusal_refuses_task(self, manager, member, refused_level):
        task, levels = _task_with_levels(
            status=f"pending_validation_{refused_level}",
            levels=((1, manager.id, None), (2, manager.id, None)),
            assignee_id=member.id,
        )
        if refused_level == 2:
            validation.validate_level(levels[0].id, manager)

        validation.refuse_level(levels[refused_level - 1].id, manager, "Pièce manquante")

        task = db.session.get(Task, task.id)
        assert task.status == "refused"
        assert task.validation_comment == "Pièce manquante"
        assert db.session.get(TaskValidationLevel, levels[refused_level - 1].id).status == "refused"
        notif = Notification.query.filter_by(recipient_id=member.id, category="validation").one()
        assert "Pièce manquante" in notif.message

    def test_refusal_from_any_status(self, manager):
        task, (l1,) = _task_with_levels(status="in-progress", levels=((1, manager.id, None),))
        validation.refuse_level(l1.id, manager, "Non")
        assert db.session.get(Task, task.id).status == "refused"

    def test_comment_required(self, manager):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        with pytest.raises(ValidationError):
            validation.refuse_level(l1.id, manager, "   ")
        assert db.session.get(TaskValidationLevel, l1.id).status == "pending"


class TestRequestValidation:
    def test_request_validation(self, manager, member):
        task, (l1,) = _task_with_levels(status="in-progress", levels=((1, manager.id, None),))
        validation.request_validation(task.id, member)

        task = db.session.get(Task, task.id)
        assert task.status == "pending_validation_1"
        assert task.validation_requested_at is not None
        assert task.current_validation_level == 1
        assert Notification.query.filter_by(recipient_id=manager.id).count() == 1

    def test_request_validation_needs_pending_level(self, member):
        task, _ = _task_with_levels(status="in-progress", levels=())
        with pytest.raises(ValidationError):
            validation.request_validation(task.id, member)

    def test_request_validation_from_todo_rejected(self, manager, member):
        task, _ = _task_with_levels(status="todo", levels=((1, manager.id, None),))
        with pytest.raises(InvalidTransition):
            validation.request_validation(task.id, member)


class TestMarkValidated:
    def test_all_levels_validated(self, manager):
        task, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        validation.validate_level(l1.id, manager)
        validation.mark_task_as_validated(task.id, manager, "RAS")

        task = db.session.get(Task, task.id)
        assert task.status == "validated"
        assert task.validator_id == manager.id
        assert task.validated_at is not None

    def test_pending_level_blocks(self, manager):
        task, _ = _task_with_levels(levels=((1, manager.id, None),))
        with pytest.raises(ValidationError):
            validation.mark_task_as_validated(task.id, manager)


class TestPendingValidations:
    def test_inbox(self, manager, member, department):
        _task_with_levels(levels=((1, manager.id, None),))
        _task_with_levels(levels=((1, None, department.id),))
        _task_with_levels(status="cancelled", levels=((1, manager.id, None),))

        # manager: named on one, member of the department on the other
        assert len(validation.list_pending_validations_for(manager)) == 2
        assert len(validation.list_pending_validations_for(member)) == 1

    def test_outsider_sees_nothing(self, outsider, manager):
        _task_with_levels(levels=((1, manager.id, None),))
        assert validation.list_pending_validations_for(outsider) == []


class TestValidationAPI:
    def test_validate_endpoint(self, client, manager, headers_for):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        res = client.post(f"/api/v1/validation-levels/{l1.id}/validate", json={}, headers=headers_for(manager))
        assert res.status_code == 200
        assert res.get_json()["status"] == "validated"

        again = client.post(f"/api/v1/validation-levels/{l1.id}/validate", json={}, headers=headers_for(manager))
        assert again.status_code == 409
        assert again.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_refuse_requires_comment(self, client, manager, headers_for):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        res = client.post(f"/api/v1/validation-levels/{l1.id}/refuse", json={}, headers=headers_for(manager))
        assert res.status_code == 400

    def test_refuse_forbidden(self, client, manager, outsider, headers_for):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        res = client.post(
            f"/api/v1/validation-levels/{l1.id}/refuse",
            json={"comment": "Non"},
            headers=headers_for(outsider),
        )
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_unknown_level(self, client, manager, headers_for):
        res = client.post("/api/v1/validation-levels/9999/validate", json={}, headers=headers_for(manager))
        assert res.status_code == 404

    def test_levels_listing(self, client, manager):
        task, _ = _task_with_levels(levels=((2, manager.id, None), (1, manager.id, None)))
        body = client.get(f"/api/v1/tasks/{task.id}/validation-levels").get_json()
        assert [lvl["level"] for lvl in body["items"]] == [1, 2]
        assert body["current_pending_level"]["level"] == 1

    def test_pending_listing(self, client, manager, headers_for):
        task, _ = _task_with_levels(levels=((1, manager.id, None),))
        body = client.get("/api/v1/validations/pending", headers=headers_for(manager)).get_json()
        assert body["total"] == 1
        assert body["items"][0]["task"]["id"] == task.id

    def test_inactive_profile_rejected(self, client, manager, headers_for):
        _, (l1,) = _task_with_levels(levels=((1, manager.id, None),))
        db.session.get(Profile, manager.id).is_active = False
        db.session.commit()
        res = client.post(f"/api/v1/validation-levels/{l1.id}/validate", json={}, headers=headers_for(manager))
        assert res.status_code == 401
