"""Tests for printwatch.cli.main -- CLI commands using Click's CliRunner."""

from __future__ import annotations

import json
import os
import socket
from unittest.mock import MagicMock, patch

import pytest
import requests
import responses
from click.testing import CliRunner
from zeroconf import DNSAddress

from printwatch.cli.main import cli
from printwatch.config import MonitorConfig

from helpers import (
    PRINT_JOB_RESPONSE,
    PRINTER_GUID,
    PRINTER_IDLE_RESPONSE,
    PRINTER_IP,
    PRINTER_PRINTING_RESPONSE,
    SYSTEM_RESPONSE,
    FakeQuerierFactory,
    payload,
)

BASE = f"http://{PRINTER_IP}"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Never read the developer's own ~/.printwatch/config.yaml."""
    for name in list(os.environ):
        if name.startswith("PRINTWATCH_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("PRINTWATCH_CONFIG", str(tmp_path / "absent.yaml"))


def _write_config(tmp_path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestGroup:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "discover", "status", "config"):
            assert command in result.output


class TestConfigCommand:
    def test_defaults_json(self, runner):
        result = runner.invoke(cli, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["poll_interval"] == 10.0
        assert data["synthetic"]["enabled"] is False

    def test_explicit_file(self, runner, tmp_path):
        path = _write_config(tmp_path, "polling:\n  interval: 4\nsimulation:\n  enabled: true\n")
        result = runner.invoke(cli, ["--config", path, "config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["poll_interval"] == 4.0
        assert data["synthetic"]["enabled"] is True

    def test_unknown_key(self, runner, tmp_path):
        path = _write_config(tmp_path, "bogus: 1\n")
        result = runner.invoke(cli, ["--config", path, "config", "--json"])
        assert result.exit_code == 1
        error = json.loads(result.output)["error"]
        assert error["code"] == "CONFIG_ERROR"
        assert "bogus" in error["message"]

    def test_invalid_values(self, runner, tmp_path):
        path = _write_config(tmp_path, "discovery:\n  interval: 5\n  window: 10\n")
        result = runner.invoke(cli, ["--config", path, "config", "--json"])
        assert result.exit_code == 1
        assert "discovery_window" in json.loads(result.output)["error"]["message"]

    def test_human_output(self, runner):
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0
        assert "poll_interval" in result.output


class TestStatusCommand:
    @responses.activate
    def test_idle_json(self, runner):
        responses.add(responses.GET, f"{BASE}/api/v1/printer", json=payload(PRINTER_IDLE_RESPONSE))
        result = runner.invoke(cli, ["status", PRINTER_IP, "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["ip_address"] == PRINTER_IP
        assert data["printer"]["status"] == "idle"
        assert data["job"] is None
        assert len(responses.calls) == 1

    @responses.activate
    def test_printing_includes_job(self, runner):
        responses.add(responses.GET, f"{BASE}/api/v1/printer", json=payload(PRINTER_PRINTING_RESPONSE))
        responses.add(responses.GET, f"{BASE}/api/v1/print_job", json=payload(PRINT_JOB_RESPONSE))
        result = runner.invoke(cli, ["status", PRINTER_IP, "--json"])
        assert result.exit_code == 0
        job = json.loads(result.output)["data"]["job"]
        assert job["name"] == "bracket_v2"
        assert job["progress_percent"] == 42
        assert job["time_remaining"] == 1740.0

    @responses.activate
    def test_human_output(self, runner):
        responses.add(responses.GET, f"{BASE}/api/v1/printer", json=payload(PRINTER_PRINTING_RESPONSE))
        responses.add(responses.GET, f"{BASE}/api/v1/print_job", json=payload(PRINT_JOB_RESPONSE))
        result = runner.invoke(cli, ["status", PRINTER_IP])
        assert result.exit_code == 0
        assert PRINTER_IP in result.output
        assert "bracket_v2" in result.output

    @responses.activate
    def test_unreachable(self, runner):
        responses.add(
            responses.GET,
            f"{BASE}/api/v1/printer",
            body=requests.exceptions.ConnectionError("refused"),
        )
        result = runner.invoke(cli, ["status", PRINTER_IP, "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["error"]["code"] == "PRINTER_UNREACHABLE"

    def test_bad_timeout(self, runner):
        result = runner.invoke(cli, ["status", PRINTER_IP, "--timeout", "0", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["error"]["code"] == "USAGE_ERROR"


class TestDiscoverCommand:
    @responses.activate
    def test_finds_printer(self, runner):
        responses.add(responses.GET, f"{BASE}/api/v1/system", json=payload(SYSTEM_RESPONSE))
        factory = FakeQuerierFactory([[DNSAddress("ultimaker.local.", 1, 1, 120, socket.inet_aton(PRINTER_IP))]])

        with patch("printwatch.discovery.MdnsQuerier", factory):
            result = runner.invoke(cli, ["discover", "--timeout", "0.01", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["count"] == 1
        assert data["printers"][0]["id"] == PRINTER_GUID
        assert data["printers"][0]["ip_address"] == PRINTER_IP
        assert factory.last.closed is True

    def test_nothing_found(self, runner):
        with patch("printwatch.discovery.MdnsQuerier", FakeQuerierFactory()):
            result = runner.invoke(cli, ["discover", "--timeout", "0.01"])
        assert result.exit_code == 0
        assert "No Ultimaker printers found" in result.output
        assert "printwatch status" in result.output

    def test_bad_timeout(self, runner):
        result = runner.invoke(cli, ["discover", "--timeout", "0", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["error"]["code"] == "USAGE_ERROR"


class TestServeCommand:
    def test_flags_override_config(self, runner, tmp_path):
        path = _write_config(tmp_path, "polling:\n  interval: 7\nrest:\n  port: 9000\n")
        monitor = MagicMock()
        with patch("printwatch.cli.main.configure_logging") as configure, patch(
            "printwatch.service.FleetMonitor", return_value=monitor
        ) as monitor_cls, patch("printwatch.rest_api.run_rest_server") as run:
            result = runner.invoke(
                cli,
                [
                    "--config",
                    path,
                    "serve",
                    "--port",
                    "9100",
                    "--host",
                    "127.0.0.1",
                    "--simulate",
                    "--log-level",
                    "debug",
                ],
            )

        assert result.exit_code == 0, result.output
        configure.assert_called_once_with(level="DEBUG")
        cfg: MonitorConfig = monitor_cls.call_args.args[0]
        assert cfg.poll_interval == 7.0
        assert cfg.rest.port == 9100
        assert cfg.rest.host == "127.0.0.1"
        assert cfg.synthetic.enabled is True
        monitor.start.assert_called_once_with()
        run.assert_called_once_with(monitor)
        monitor.stop.assert_called_once_with()

    def test_monitor_stopped_when_server_fails(self, runner):
        monitor = MagicMock()
        with patch("printwatch.cli.main.configure_logging"), patch(
            "printwatch.service.FleetMonitor", return_value=monitor
        ), patch("printwatch.rest_api.run_rest_server", side_effect=OSError("address in use")):
            result = runner.invoke(cli, ["serve"])
        assert result.exit_code != 0
        monitor.stop.assert_called_once_with()

    def test_invalid_config_exits(self, runner):
        with patch("printwatch.cli.main.configure_logging"), patch(
            "printwatch.rest_api.run_rest_server"
        ) as run:
            result = runner.invoke(cli, ["serve", "--poll-interval", "0"])
        assert result.exit_code == 1
        assert "CONFIG_ERROR" in result.output
        run.assert_not_called()
