"""Template CRUD: process / sub-process / task templates and their permissions."""

import pytest

from keon.core.exceptions import PermissionDenied, ValidationError
from keon.models import db
from keon.models.template import TaskTemplate
from keon.services import template_service


class TestProcessTemplates:
    def test_create(self, client, member, headers_for):
        res = client.post(
            "/api/v1/process-templates",
            json={"name": "Onboarding", "settings": {"default_priority": "high"}},
            headers=headers_for(member),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["creator_id"] == member.id
        assert body["settings"]["default_priority"] == "high"

    def test_create_missing_name(self, client, member, headers_for):
        res = client.post("/api/v1/process-templates", json={}, headers=headers_for(member))
        assert res.status_code == 422

    def test_list_and_get(self, client, member, headers_for):
        created = client.post(
            "/api/v1/process-templates", json={"name": "Onboarding"}, headers=headers_for(member),
        ).get_json()
        assert client.get("/api/v1/process-templates").get_json()["total"] == 1
        detail = client.get(f"/api/v1/process-templates/{created['id']}").get_json()
        assert detail["sub_processes"] == []
        assert detail["task_templates"] == []

    def test_creator_can_update(self, member):
        tpl = template_service.create_process_template({"name": "Onboarding"}, member)
        template_service.update_process_template(tpl.id, {"name": "Arrivée"}, member)
        assert tpl.name == "Arrivée"

    def test_template_manager_can_update(self, member, manager):
        tpl = template_service.create_process_template({"name": "Onboarding"}, member)
        template_service.update_process_template(tpl.id, {"description": "v2"}, manager)
        assert tpl.description == "v2"

    def test_other_profile_cannot_update(self, member, outsider):
        tpl = template_service.create_process_template({"name": "Onboarding"}, member)
        with pytest.raises(PermissionDenied):
            template_service.update_process_template(tpl.id, {"name": "Pirate"}, outsider)

    def test_update_forbidden_http(self, client, member, outsider, headers_for):
        tpl = template_service.create_process_template({"name": "Onboarding"}, member)
        res = client.put(
            f"/api/v1/process-templates/{tpl.id}", json={"name": "Pirate"}, headers=headers_for(outsider),
        )
        assert res.status_code == 403

    def test_recurrence_next_run_defaults_to_start(self, member):
        tpl = template_service.create_process_template({
            "name": "Inventaire",
            "recurrence_enabled": True,
            "recurrence_interval": 1,
            "recurrence_unit": "months",
            "recurrence_start_date": "2025-01-31T09:00:00",
        }, member)
        assert tpl.recurrence_next_run_at == tpl.recurrence_start_date

    @pytest.mark.parametrize("data", [
        {"recurrence_unit": "fortnights", "recurrence_interval": 1},
        {"recurrence_unit": "days", "recurrence_interval": 0},
        {"recurrence_unit": "days", "recurrence_interval": 1, "recurrence_delay_days": -1},
    ])
    def test_recurrence_rejected(self, member, data):
        with pytest.raises(ValidationError):
            template_service.create_process_template({"name": "X", "recurrence_enabled": True, **data}, member)


class TestTaskTemplates:
    @pytest.fixture()
    def process(self, member):
        return template_service.create_process_template({"name": "Onboarding"}, member)

    def test_create_with_checklist_and_levels(self, client, member, manager, department, process, headers_for):
        res = client.post("/api/v1/task-templates", json={
            "process_template_id": process.id,
            "title": "Contrat",
            "default_duration_days": 3,
            "requires_validation": True,
            "checklist": ["Rédiger", {"title": "Signer"}],
            "validation_levels": [
                {"level": 1, "validator_profile_id": manager.id},
                {"level": 2, "validator_department_id": department.id},
            ],
        }, headers=headers_for(member))
        assert res.status_code == 201
        body = res.get_json()
        assert [c["title"] for c in body["checklist"]] == ["Rédiger", "Signer"]
        assert len(body["validation_levels"]) == 2

    def test_requires_validation_needs_level(self, member, process):
        with pytest.raises(ValidationError):
            template_service.create_task_template(
                {"process_template_id": process.id, "title": "Contrat", "requires_validation": True}, member,
            )
        assert TaskTemplate.query.count() == 0

    def test_level_must_be_one_or_two(self, member, manager, process):
        with pytest.raises(ValidationError):
            template_service.create_task_template({
                "process_template_id": process.id, "title": "Contrat", "requires_validation": True,
                "validation_levels": [{"level": 3, "validator_profile_id": manager.id}],
            }, member)

    def test_level_needs_validator(self, member, process):
        with pytest.raises(ValidationError):
            template_service.create_task_template({
                "process_template_id": process.id, "title": "Contrat", "requires_validation": True,
                "validation_levels": [{"level": 1}],
            }, member)

    def test_sub_process_of_other_process_rejected(self, member, process):
        other = template_service.create_process_template({"name": "Offboarding"}, member)
        sp = template_service.create_sub_process(other.id, {"name": "IT"}, member)
        with pytest.raises(ValidationError):
            template_service.create_task_template(
                {"process_template_id": process.id, "sub_process_template_id": sp.id, "title": "X"}, member,
            )

    def test_sub_process_endpoint(self, client, member, process, headers_for):
        res = client.post(
            f"/api/v1/process-templates/{process.id}/sub-processes",
            json={"name": "Informatique", "order_index": 1},
            headers=headers_for(member),
        )
        assert res.status_code == 201
        assert res.get_json()["process_template_id"] == process.id

    def test_outsider_cannot_add_task_template(self, outsider, process):
        with pytest.raises(PermissionDenied):
            template_service.create_task_template(
                {"process_template_id": process.id, "title": "X"}, outsider,
            )
        db.session.rollback()
