"""Tests for printwatch.rest_api -- FastAPI wrapper around FleetMonitor.

Uses FastAPI's ``TestClient`` against a monitor whose registry is filled
by hand; no background threads run unless a test starts them.
"""

from __future__ import annotations

from unittest import mock

import pytest
from fastapi.testclient import TestClient

from printwatch import __version__
from printwatch.events import EventType
from printwatch.models import PrinterStatus
from printwatch.rest_api import create_app, run_rest_server
from printwatch.service import FleetMonitor

from helpers import make_job, make_record


@pytest.fixture
def monitor():
    m = FleetMonitor()
    m.registry.upsert(make_record("abc-1", name="UM3-Lab", status=PrinterStatus.PRINTING, job=make_job(42)))
    m.registry.upsert(make_record("abc-2", name="S5-Office"))
    return m


@pytest.fixture
def api(monitor):
    return TestClient(create_app(monitor))


class TestHealth:
    def test_health(self, api):
        resp = api.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["version"] == __version__
        assert body["printers"] == 2
        assert body["status"] == "stopped"


class TestPrinters:
    def test_list(self, api):
        resp = api.get("/printers")
        assert resp.status_code == 200
        body = resp.json()
        assert [p["id"] for p in body] == ["abc-1", "abc-2"]
        assert body[0]["status"] == "printing"
        assert body[0]["current_job"]["progress_percent"] == 42
        assert body[1]["current_job"] is None

    def test_list_empty(self):
        api = TestClient(create_app(FleetMonitor()))
        assert api.get("/printers").json() == []

    def test_get_one(self, api):
        resp = api.get("/printers/abc-2")
        assert resp.status_code == 200
        assert resp.json()["name"] == "S5-Office"

    def test_get_is_case_insensitive(self, api):
        assert api.get("/printers/ABC-1").json()["id"] == "abc-1"

    def test_get_unknown_is_404(self, api):
        resp = api.get("/printers/ghost")
        assert resp.status_code == 404
        assert "ghost" in resp.json()["detail"]


class TestDiscover:
    def test_discover_returns_immediately(self, api, monitor):
        with mock.patch.object(monitor, "trigger_discovery", return_value=True) as trigger:
            resp = api.post("/printers/discover")
        assert resp.status_code == 202
        assert resp.json() == {"message": "Discovery initiated"}
        trigger.assert_called_once_with()

    def test_discover_when_not_running(self, api):
        resp = api.post("/printers/discover")
        assert resp.status_code == 202
        assert resp.json() == {"message": "Discovery initiated"}


class TestEvents:
    def test_recent_events(self, api, monitor):
        monitor.bus.publish(EventType.PRINTER_ADDED, {"id": "abc-1"}, source="notifier")
        monitor.bus.publish(EventType.PRINTER_REMOVED, {"id": "abc-2"}, source="notifier")
        body = api.get("/events").json()
        assert body["count"] == 2
        assert [e["type"] for e in body["events"]] == ["printer.removed", "printer.added"]

    def test_filter_by_type(self, api, monitor):
        monitor.bus.publish(EventType.PRINTER_ADDED, {"id": "abc-1"})
        monitor.bus.publish(EventType.PRINTER_REMOVED, {"id": "abc-2"})
        body = api.get("/events", params={"type": "printer.added"}).json()
        assert [e["data"]["id"] for e in body["events"]] == ["abc-1"]

    def test_unknown_type_is_400(self, api):
        resp = api.get("/events", params={"type": "job.queued"})
        assert resp.status_code == 400
        assert "printer.added" in resp.json()["detail"]

    def test_limit_validated(self, api):
        assert api.get("/events", params={"limit": 0}).status_code == 422


class TestRunServer:
    def test_uses_config_defaults(self, monitor):
        with mock.patch("printwatch.rest_api.uvicorn.run") as run:
            run_rest_server(monitor)
        _, kwargs = run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 8421

    def test_explicit_host_and_port(self, monitor):
        with mock.patch("printwatch.rest_api.uvicorn.run") as run:
            run_rest_server(monitor, host="127.0.0.1", port=9001)
        _, kwargs = run.call_args
        assert (kwargs["host"], kwargs["port"]) == ("127.0.0.1", 9001)
