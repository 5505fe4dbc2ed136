"""
Request → task generation tests.

Covers:
    - template resolution (sub-process templates, fallback to direct templates)
    - generate_pending_assignments: due dates, checklist copy, validation
      levels, provenance, notification, per-template isolation
    - submit_request service + POST /requests
"""

from datetime import date
from unittest import mock

import pytest

from keon.core.exceptions import NotFoundError, ValidationError
from keon.models import db
from keon.models.audit import WorkflowEvent
from keon.models.material import MaterialRequestLine
from keon.models.notification import Notification
from keon.models.org import Category, Subcategory
from keon.models.task import ChecklistItem, Task, TaskValidationLevel
from keon.models.template import (
    ProcessTemplate,
    SubProcessTemplate,
    TaskTemplate,
    TaskTemplateChecklist,
    TemplateValidationLevel,
)
from keon.services import request_workflow
from keon.services.template_resolver import resolve_task_templates


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _process(name="Onboarding", **kw):
    p = ProcessTemplate(name=name, settings=kw.pop("settings", {}), **kw)
    db.session.add(p)
    db.session.flush()
    return p


def _sub_process(process, name="Informatique", **kw):
    sp = SubProcessTemplate(process_template_id=process.id, name=name, **kw)
    db.session.add(sp)
    db.session.flush()
    return sp


def _task_template(process, title, order_index=0, sub_process=None, duration=None,
                   checklist=(), levels=()):
    tpl = TaskTemplate(
        process_template_id=process.id,
        sub_process_template_id=sub_process.id if sub_process else None,
        title=title,
        order_index=order_index,
        default_duration_days=duration,
        requires_validation=bool(levels),
    )
    db.session.add(tpl)
    db.session.flush()
    for idx, item in enumerate(checklist):
        db.session.add(TaskTemplateChecklist(task_template_id=tpl.id, title=item, order_index=idx))
    for level, profile_id, department_id in levels:
        db.session.add(TemplateValidationLevel(
            task_template_id=tpl.id, level=level,
            validator_profile_id=profile_id, validator_department_id=department_id,
        ))
    db.session.flush()
    return tpl


def _request(process, title="Onboarding Alice"):
    r = Task(title=title, type="request", status="todo", source_process_template_id=process.id)
    db.session.add(r)
    db.session.commit()
    return r


@pytest.fixture()
def onboarding():
    """Process with three direct templates of 1, 3 and 5 days (created out of order)."""
    process = _process()
    _task_template(process, "Créer le compte", order_index=1, duration=3)
    _task_template(process, "Préparer le poste", order_index=0, duration=1, checklist=("Écran", "Clavier"))
    _task_template(process, "Accueil", order_index=2, duration=5)
    db.session.commit()
    return process


# ═════════════════════════════════════════════════════════════════════════════
# Resolver
# ═════════════════════════════════════════════════════════════════════════════


class TestResolver:
    def test_direct_templates_in_order(self, onboarding):
        titles = [t.title for t in resolve_task_templates(onboarding.id)]
        assert titles == ["Préparer le poste", "Créer le compte", "Accueil"]

    def test_sub_process_templates(self, onboarding):
        sp = _sub_process(onboarding)
        _task_template(onboarding, "Installer VPN", sub_process=sp)
        db.session.commit()
        titles = [t.title for t in resolve_task_templates(onboarding.id, sp.id)]
        assert titles == ["Installer VPN"]

    def test_direct_templates_exclude_sub_process_ones(self, onboarding):
        sp = _sub_process(onboarding)
        _task_template(onboarding, "Installer VPN", sub_process=sp)
        db.session.commit()
        assert "Installer VPN" not in [t.title for t in resolve_task_templates(onboarding.id)]

    def test_empty_sub_process_falls_back(self, onboarding):
        sp = _sub_process(onboarding)
        db.session.commit()
        assert len(resolve_task_templates(onboarding.id, sp.id)) == 3

    def test_no_templates_is_empty(self):
        process = _process("Vide")
        db.session.commit()
        assert resolve_task_templates(process.id) == []

    def test_unknown_process(self):
        with pytest.raises(NotFoundError):
            resolve_task_templates(9999)

    def test_resolved_tasks_endpoint(self, client, onboarding):
        res = client.get(f"/api/v1/process-templates/{onboarding.id}/resolved-tasks")
        assert res.status_code == 200
        assert res.get_json()["total"] == 3


# ═════════════════════════════════════════════════════════════════════════════
# Generator
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerator:
    def test_onboarding_scenario(self, onboarding, manager, department):
        request_task = _request(onboarding)
        created = request_workflow.generate_pending_assignments(
            request_task.id, onboarding.id, department.id,
            target_manager_id=manager.id, today=date(2025, 1, 1),
        )
        assert created == 3

        tasks = Task.query.filter_by(parent_request_id=request_task.id).order_by(Task.due_date).all()
        assert [t.due_date for t in tasks] == [date(2025, 1, 2), date(2025, 1, 4), date(2025, 1, 6)]
        for t in tasks:
            assert t.status == "to_assign"
            assert t.type == "task"
            assert t.assignee_id == manager.id
            assert t.target_department_id == department.id
            assert t.source_process_template_id == onboarding.id

        first = tasks[0]
        items = ChecklistItem.query.filter_by(task_id=first.id).order_by(ChecklistItem.order_index).all()
        assert [i.title for i in items] == ["Écran", "Clavier"]
        assert not any(i.is_completed for i in items)

        notif = Notification.query.filter_by(entity_type="request", entity_id=request_task.id).one()
        assert notif.recipient_id == manager.id
        assert notif.category == "assignment"

    def test_no_duration_no_due_date(self):
        process = _process()
        _task_template(process, "Sans échéance")
        request_task = _request(process)
        request_workflow.generate_pending_assignments(request_task.id, process.id, None)
        assert Task.query.filter_by(parent_request_id=request_task.id).one().due_date is None

    def test_no_templates_creates_nothing(self):
        process = _process("Vide")
        request_task = _request(process)
        created = request_workflow.generate_pending_assignments(request_task.id, process.id, None)
        assert created == 0
        assert Task.query.filter_by(parent_request_id=request_task.id).count() == 0
        assert Notification.query.count() == 0

    def test_department_notified_without_manager(self, department):
        process = _process()
        _task_template(process, "Tâche")
        request_task = _request(process)
        request_workflow.generate_pending_assignments(request_task.id, process.id, department.id)
        notif = Notification.query.one()
        assert notif.recipient_id is None
        assert notif.department_id == department.id

    def test_two_validation_levels(self, manager, department):
        process = _process()
        _task_template(process, "Contrat", levels=((1, manager.id, None), (2, None, department.id)))
        request_task = _request(process)
        request_workflow.generate_pending_assignments(request_task.id, process.id, department.id)

        task = Task.query.filter_by(parent_request_id=request_task.id).one()
        assert task.requires_validation is True
        assert task.validator_level_1_id == manager.id
        levels = TaskValidationLevel.query.filter_by(task_id=task.id).order_by(TaskValidationLevel.level).all()
        assert [(lvl.level, lvl.status) for lvl in levels] == [(1, "pending"), (2, "pending")]
        assert levels[1].validator_department_id == department.id

    def test_sub_process_provenance(self, onboarding):
        sp = _sub_process(onboarding)
        _task_template(onboarding, "Installer VPN", sub_process=sp)
        request_task = _request(onboarding)
        created = request_workflow.generate_pending_assignments(
            request_task.id, onboarding.id, None, sub_process_template_id=sp.id,
        )
        assert created == 1
        task = Task.query.filter_by(parent_request_id=request_task.id).one()
        assert task.source_sub_process_template_id == sp.id

    def test_failing_template_is_isolated(self, onboarding):
        request_task = _request(onboarding)
        real = request_workflow._materialise_task

        def _flaky(tpl, **kw):
            if tpl.title == "Créer le compte":
                raise RuntimeError("boom")
            return real(tpl, **kw)

        with mock.patch.object(request_workflow, "_materialise_task", side_effect=_flaky):
            created = request_workflow.generate_pending_assignments(request_task.id, onboarding.id, None)

        assert created == 2
        titles = sorted(t.title for t in Task.query.filter_by(parent_request_id=request_task.id))
        assert titles == ["Accueil", "Préparer le poste"]

    def test_late_failure_rolls_back_flushed_rows(self, manager, department):
        process = _process("Arrivée")
        contrat = _task_template(
            process, "Contrat", order_index=0, checklist=("Rédiger", "Signer"),
            levels=((1, manager.id, None), (2, None, department.id)),
        )
        _task_template(process, "Badge", order_index=1, checklist=("Photo",))
        request_task = _request(process)
        real = request_workflow.write_event

        def _failing_event(**kw):
            if kw["payload"].get("task_template_id") == contrat.id:
                raise RuntimeError("event store unavailable")
            return real(**kw)

        with mock.patch.object(request_workflow, "write_event", side_effect=_failing_event):
            created = request_workflow.generate_pending_assignments(request_task.id, process.id, department.id)

        assert created == 1
        tasks = Task.query.filter_by(parent_request_id=request_task.id).all()
        assert [t.title for t in tasks] == ["Badge"]
        assert Task.query.filter_by(title="Contrat").count() == 0
        assert [c.title for c in ChecklistItem.query.all()] == ["Photo"]
        assert TaskValidationLevel.query.count() == 0
        assert WorkflowEvent.query.filter_by(event_type="task_created").count() == 1

    def test_task_created_events(self, onboarding):
        request_task = _request(onboarding)
        request_workflow.generate_pending_assignments(request_task.id, onboarding.id, None)
        assert WorkflowEvent.query.filter_by(event_type="task_created").count() == 3


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


class TestSubmitRequest:
    def test_submit_generates_tasks(self, onboarding, member, manager, department):
        onboarding.target_department_id = department.id
        db.session.commit()
        request_task, created = request_workflow.submit_request(
            {"process_template_id": onboarding.id, "title": "Onboarding Alice"}, actor_id=member.id,
        )
        assert created == 3
        assert request_task.type == "request"
        assert request_task.requester_id == member.id
        # department manager becomes the dispatcher
        children = Task.query.filter_by(parent_request_id=request_task.id).all()
        assert {t.assignee_id for t in children} == {manager.id}
        assert WorkflowEvent.query.filter_by(event_type="request_created").count() == 1

    def test_title_defaults_to_process_name(self, onboarding):
        request_task, _ = request_workflow.submit_request({"process_template_id": onboarding.id})
        assert request_task.title == "Onboarding"

    def test_default_priority_from_settings(self):
        process = _process(settings={"default_priority": "high"})
        db.session.commit()
        request_task, created = request_workflow.submit_request({"process_template_id": process.id})
        assert request_task.priority == "high"
        assert created == 0
        assert db.session.get(Task, request_task.id) is not None

    def test_process_from_subcategory(self, onboarding):
        cat = Category(name="RH")
        db.session.add(cat)
        db.session.flush()
        sub = Subcategory(category_id=cat.id, name="Arrivée", default_process_template_id=onboarding.id)
        db.session.add(sub)
        db.session.commit()
        request_task, created = request_workflow.submit_request({"subcategory_id": sub.id})
        assert request_task.source_process_template_id == onboarding.id
        assert created == 3

    def test_missing_process(self):
        with pytest.raises(ValidationError):
            request_workflow.submit_request({"title": "Orpheline"})

    def test_foreign_sub_process_rejected(self, onboarding):
        other = _process("Offboarding")
        sp = _sub_process(other)
        db.session.commit()
        with pytest.raises(ValidationError):
            request_workflow.submit_request(
                {"process_template_id": onboarding.id, "sub_process_template_id": sp.id},
            )

    def test_material_lines(self):
        process = _process("Matériel")
        db.session.commit()
        request_task, _ = request_workflow.submit_request({
            "process_template_id": process.id,
            "material_lines": [
                {"ref": "LAP-14", "designation": "Portable 14 pouces", "quantity": 2},
                {"designation": "Souris"},
            ],
        })
        assert request_task.request_validation_status == "pending"
        lines = MaterialRequestLine.query.filter_by(request_id=request_task.id).all()
        assert len(lines) == 2
        assert {line.order_state for line in lines} == {"En attente validation"}

    @pytest.mark.parametrize("lines", [
        ["Souris"],
        "Souris",
        [{"designation": "Clavier"}, {"ref": "MS-01"}],
    ])
    def test_bad_material_lines_write_nothing(self, lines):
        process = _process("Matériel")
        db.session.commit()
        with pytest.raises(ValidationError):
            request_workflow.submit_request({"process_template_id": process.id, "material_lines": lines})
        db.session.rollback()
        assert Task.query.filter_by(type="request").count() == 0
        assert MaterialRequestLine.query.count() == 0


class TestRequestAPI:
    def test_post_request(self, client, onboarding, member, headers_for):
        res = client.post(
            "/api/v1/requests",
            json={"process_template_id": onboarding.id, "title": "Onboarding Bob"},
            headers=headers_for(member),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["tasks_created"] == 3

        detail = client.get(f"/api/v1/requests/{body['request']['id']}").get_json()
        assert len(detail["tasks"]) == 3
        assert detail["material_lines"] == []

    def test_post_request_unknown_process(self, client, member, headers_for):
        res = client.post("/api/v1/requests", json={"process_template_id": 9999}, headers=headers_for(member))
        assert res.status_code == 404

    def test_post_request_without_body(self, client, member, headers_for):
        res = client.post("/api/v1/requests", headers=headers_for(member))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_post_request_malformed_material_lines(self, client, member, headers_for):
        process = _process("Matériel")
        db.session.commit()
        res = client.post(
            "/api/v1/requests",
            json={"process_template_id": process.id, "material_lines": ["Souris"]},
            headers=headers_for(member),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert Task.query.filter_by(type="request").count() == 0

    def test_get_request_rejects_plain_task(self, client):
        t = Task(title="Tâche simple", type="task", status="todo")
        db.session.add(t)
        db.session.commit()
        assert client.get(f"/api/v1/requests/{t.id}").status_code == 404

    def test_pending_assignment_endpoints(self, client, onboarding, manager, member, department, headers_for):
        onboarding.target_department_id = department.id
        db.session.commit()
        client.post("/api/v1/requests", json={"process_template_id": onboarding.id},
                    headers=headers_for(member))

        res = client.get("/api/v1/pending-assignments", headers=headers_for(manager))
        assert res.get_json()["total"] == 3
        grouped = client.get("/api/v1/pending-assignments/requests", headers=headers_for(manager)).get_json()
        assert grouped["items"][0]["count"] == 3
