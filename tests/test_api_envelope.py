"""
App-level behaviour: health probes, error envelope, acting profile header,
request id / timing headers and the CLI commands.
"""

import json
import logging

from flask import g

from keon.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["status"] == "ok"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["cache"] == {"status": "ok", "backend": "memory"}


class TestErrorEnvelope:
    def test_unknown_api_route(self, client):
        res = client.get("/api/v1/does-not-exist")
        assert res.status_code == 404
        body = res.get_json()
        assert body["code"] == "ERR_NOT_FOUND"
        assert body["details"]["path"] == "/api/v1/does-not-exist"

    def test_method_not_allowed(self, client):
        res = client.delete("/api/v1/process-templates")
        assert res.status_code == 405

    def test_missing_profile_header(self, client):
        res = client.post("/api/v1/tasks", json={"title": "X"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_unknown_profile(self, client):
        res = client.post("/api/v1/tasks", json={"title": "X"}, headers={"X-Profile-Id": "9999"})
        assert res.status_code == 401

    def test_business_rule_is_422(self, client, member, headers_for):
        res = client.post("/api/v1/tasks", json={"title": ""}, headers=headers_for(member))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert body["details"] == {"field": "title"}

    def test_list_filter_rejects_unknown_status(self, client):
        res = client.get("/api/v1/tasks?status=archived")
        assert res.status_code == 400


class TestHeaders:
    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/live", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"


class TestCli:
    def test_process_recurrence_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["process-recurrence"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"processed": 0, "results": []}

    def test_run_job_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["run-job", "overdue_task_scanner"])
        assert result.exit_code == 0
        assert json.loads(result.output)["status"] == "success"


class TestLogging:
    def _record(self):
        return logging.LogRecord("keon.services.validation", logging.INFO, __file__, 1,
                                 "Level %s validated", (3,), None)

    def test_request_context_stamped_on_records(self, app):
        record = self._record()
        with app.test_request_context("/api/v1/tasks", headers={"X-Profile-Id": "12"}):
            g.request_id = "req-42"
            RequestContextFilter().filter(record)
        assert record.request_id == "req-42"
        assert record.profile_id == "12"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["msg"] == "Level 3 validated"
        assert entry["request_id"] == "req-42"
        assert entry["profile_id"] == "12"

    def test_outside_request_nothing_stamped(self):
        record = self._record()
        assert RequestContextFilter().filter(record) is True
        assert not hasattr(record, "request_id")
        entry = json.loads(JSONFormatter().format(record))
        assert "request_id" not in entry

    def test_readable_line_carries_request_id(self, app):
        record = self._record()
        with app.test_request_context("/api/v1/tasks"):
            g.request_id = "req-42"
            RequestContextFilter().filter(record)
        line = ReadableFormatter().format(record)
        assert "[req-42]" in line
        assert line.endswith("Level 3 validated")
