"""Material request validation: service and /functions/validate-material-request."""

import pytest

from keon.core.exceptions import ConflictError, InvalidTransition, NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import WorkflowEvent
from keon.models.material import FULFILMENT_CHECKLIST, MaterialRequestLine
from keon.models.task import ChecklistItem, Task
from keon.models.template import ProcessTemplate
from keon.services.material_request import validate_material_request
from keon.services.task_lifecycle import transition_task

URL = "/api/v1/functions/validate-material-request"


def _material_request(settings=None, lines=("Portable 14 pouces", "Souris")):
    tpl = ProcessTemplate(name="Demande de matériel", settings=settings or {})
    db.session.add(tpl)
    db.session.flush()
    req = Task(
        title="Matériel Alice", type="request", status="todo",
        request_validation_status="pending", source_process_template_id=tpl.id,
    )
    db.session.add(req)
    db.session.flush()
    for designation in lines:
        db.session.add(MaterialRequestLine(request_id=req.id, designation=designation))
    db.session.commit()
    return req


class TestValidate:
    def test_validate_creates_fulfilment_task(self, manager):
        req = _material_request()
        outcome = validate_material_request(req.id, "validate", validator_id=manager.id)

        assert outcome["success"] is True
        assert outcome["message"] == "Demande validée, tâche créée"
        task = db.session.get(Task, outcome["task_id"])
        assert task.parent_request_id == req.id
        assert task.status == "todo"
        assert task.title.endswith("Matériel Alice")

        items = ChecklistItem.query.filter_by(task_id=task.id).order_by(ChecklistItem.order_index).all()
        assert tuple(i.title for i in items) == FULFILMENT_CHECKLIST

        req = db.session.get(Task, req.id)
        assert req.status == "validated"
        assert req.request_validation_status == "validated"
        assert req.validator_id == manager.id

        states = {line.order_state for line in MaterialRequestLine.query.filter_by(request_id=req.id)}
        assert states == {"Demande de devis"}

        event = WorkflowEvent.query.filter_by(event_type="request_validated").one()
        assert event.payload["created_task_id"] == task.id

    def test_assignee_from_template_settings(self, member):
        req = _material_request(settings={"default_material_assignee_id": member.id})
        outcome = validate_material_request(req.id, "validate")
        assert db.session.get(Task, outcome["task_id"]).assignee_id == member.id

    def test_assignee_from_config(self, app, member):
        req = _material_request()
        app.config["MATERIAL_DEFAULT_ASSIGNEE_ID"] = member.id
        try:
            outcome = validate_material_request(req.id, "validate")
        finally:
            app.config["MATERIAL_DEFAULT_ASSIGNEE_ID"] = None
        assert db.session.get(Task, outcome["task_id"]).assignee_id == member.id

    def test_refuse(self, manager):
        req = _material_request()
        outcome = validate_material_request(req.id, "refuse", validator_id=manager.id)

        assert outcome == {"success": True, "message": "Demande refusée"}
        req = db.session.get(Task, req.id)
        assert req.status == "refused"
        assert req.request_validation_status == "refused"
        assert Task.query.filter_by(parent_request_id=req.id).count() == 0
        states = {line.order_state for line in MaterialRequestLine.query.filter_by(request_id=req.id)}
        assert states == {"En attente validation"}

    def test_unknown_action(self):
        req = _material_request()
        with pytest.raises(ValidationError):
            validate_material_request(req.id, "approve")

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            validate_material_request(9999, "validate")

    def test_plain_task_is_not_a_request(self):
        task = Task(title="Ranger", type="task", status="todo", request_validation_status="pending")
        db.session.add(task)
        db.session.commit()
        with pytest.raises(NotFoundError):
            validate_material_request(task.id, "validate")


class TestDecidedOnce:
    @pytest.mark.parametrize("action", ["validate", "refuse"])
    def test_cancelled_request_stays_cancelled(self, manager, action):
        req = _material_request()
        transition_task(req.id, "cancelled")

        with pytest.raises(InvalidTransition):
            validate_material_request(req.id, action, validator_id=manager.id)

        db.session.expire_all()
        req = db.session.get(Task, req.id)
        assert req.status == "cancelled"
        assert req.request_validation_status == "pending"
        assert Task.query.filter_by(parent_request_id=req.id).count() == 0
        assert WorkflowEvent.query.filter(
            WorkflowEvent.event_type.in_(["request_validated", "request_refused"])
        ).count() == 0

    def test_second_validate_creates_no_second_task(self, manager):
        req = _material_request()
        validate_material_request(req.id, "validate", validator_id=manager.id)

        with pytest.raises(ConflictError):
            validate_material_request(req.id, "validate", validator_id=manager.id)

        db.session.expire_all()
        assert Task.query.filter_by(parent_request_id=req.id).count() == 1
        assert ChecklistItem.query.count() == len(FULFILMENT_CHECKLIST)
        assert WorkflowEvent.query.filter_by(event_type="request_validated").count() == 1

    def test_refuse_after_validate_rejected(self, manager):
        req = _material_request()
        validate_material_request(req.id, "validate", validator_id=manager.id)

        with pytest.raises(ConflictError):
            validate_material_request(req.id, "refuse", validator_id=manager.id)

        db.session.expire_all()
        assert db.session.get(Task, req.id).status == "validated"

    def test_request_without_material_lines(self, manager):
        req = Task(title="Congés", type="request", status="todo")
        db.session.add(req)
        db.session.commit()
        with pytest.raises(ConflictError):
            validate_material_request(req.id, "validate", validator_id=manager.id)


class TestValidateAPI:
    def test_validate(self, client, manager, headers_for):
        req = _material_request()
        res = client.post(URL, json={"request_id": req.id, "action": "validate"}, headers=headers_for(manager))
        assert res.status_code == 200
        body = res.get_json()
        assert body["success"] is True
        assert "task_id" in body

    def test_decision_recorded_under_acting_profile(self, client, manager, headers_for):
        req = _material_request()
        res = client.post(
            URL, json={"request_id": req.id, "action": "refuse", "validator_id": 999},
            headers=headers_for(manager),
        )
        assert res.status_code == 200
        assert db.session.get(Task, req.id).validator_id == manager.id

    def test_requires_profile(self, client):
        req = _material_request()
        res = client.post(URL, json={"request_id": req.id, "action": "refuse", "validator_id": 999})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"
        assert db.session.get(Task, req.id).status == "todo"

    def test_repeated_decision_is_409(self, client, manager, headers_for):
        req = _material_request()
        payload = {"request_id": req.id, "action": "validate"}
        assert client.post(URL, json=payload, headers=headers_for(manager)).status_code == 200
        res = client.post(URL, json=payload, headers=headers_for(manager))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_cancelled_request_is_422(self, client, manager, headers_for):
        req = _material_request()
        transition_task(req.id, "cancelled")
        res = client.post(URL, json={"request_id": req.id, "action": "validate"}, headers=headers_for(manager))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_missing_fields(self, client, manager, headers_for):
        res = client.post(URL, json={"action": "validate"}, headers=headers_for(manager))
        assert res.status_code == 400
        assert res.get_json()["error"] == "request_id and action required"

    def test_invalid_action(self, client, manager, headers_for):
        req = _material_request()
        res = client.post(URL, json={"request_id": req.id, "action": "approve"}, headers=headers_for(manager))
        assert res.status_code == 400
        assert res.get_json()["error"] == "Invalid action"

    def test_unknown_request(self, client, manager, headers_for):
        res = client.post(URL, json={"request_id": 9999, "action": "refuse"}, headers=headers_for(manager))
        assert res.status_code == 404
