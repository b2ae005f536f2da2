"""Tests for the web interface."""

import asyncio
import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from startup_guard.main import StartupGuardApp


@pytest.fixture
def guard(guard_config):
    app = StartupGuardApp(config=guard_config)
    asyncio.run(app.initialize())
    return app


@pytest.fixture
def client(guard):
    with TestClient(guard.web_interface.app) as test_client:
        yield test_client


def test_health_before_startup(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database_connected"] is True
    assert body["safe_mode_active"] is False
    assert body["last_validation_valid"] is None
    assert body["crash_log_watched"] is False


def test_validation_endpoint_records_last_result(client, guard):
    response = client.get("/api/validation")

    assert response.status_code == 200
    body = response.json()
    assert body["component"] == "StartupValidator"
    assert body["is_valid"] is True
    assert guard.last_validation is not None


def test_safe_mode_round_trip(client, guard):
    activated = client.post("/api/safe-mode/activate", json={"reason": "Operator request"})
    assert activated.status_code == 200
    assert activated.json()["is_active"] is True
    assert activated.json()["reason"] == "Operator request"
    assert client.get("/api/health").json()["status"] == "degraded"

    deactivated = client.post("/api/safe-mode/deactivate", json={"exit_reason": "Fixed"})
    assert deactivated.json()["changed"] is True
    assert deactivated.json()["status"]["is_active"] is False
    assert guard.analytics.get_safe_mode_stats().exit_reasons == {"Fixed": 1}

    again = client.post("/api/safe-mode/deactivate")
    assert again.json()["changed"] is False


def test_activate_without_body_uses_default_reason(client):
    response = client.post("/api/safe-mode/activate")

    assert response.status_code == 200
    assert response.json()["reason"] == "Manual activation"
    assert client.get("/api/safe-mode").json()["is_active"] is True


def test_recovery_plan_then_run(client, guard_config):
    plan = client.get("/api/recovery/plan").json()
    assert plan["actions"] == ["CreateMissingDirectories", "CreateDefaultConfiguration"]

    results = client.post("/api/recovery/run").json()
    assert all(r["succeeded"] for r in results)
    assert (guard_config["app_data_path"] / "settings.json").exists()

    assert client.get("/api/recovery/plan").json()["actions"] == ["NoActionNeeded"]
    summary = client.get("/api/analytics/summary")
    assert summary.headers["content-type"].startswith("text/plain")
    assert "Overall Success Rate: 100.0%" in summary.text


def test_factory_reset(client, guard_config):
    client.post("/api/recovery/run")
    notes = guard_config["app_data_path"] / "notes.json"
    notes.write_text(json.dumps({"notes": [{"title": "Mine"}]}))

    result = client.post("/api/recovery/factory-reset").json()

    assert result["action"] == "ResetToFactoryDefaults"
    assert result["succeeded"] is True
    assert "Mine" not in notes.read_text()


def test_analytics_report_and_cleanup(client):
    report = client.get("/api/analytics/report")
    assert report.status_code == 200
    assert report.json()["crash_frequency"]["total_crashes"] == 0

    cleanup = client.post("/api/analytics/cleanup")
    assert cleanup.json() == {"removed": {"memory": 0, "database": 0}}


def test_recent_crashes_are_diagnosed(client, guard_config):
    log = guard_config["crash_log_path"]
    log.parent.mkdir(parents=True)
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    log.write_text(
        f"{stamp} ERROR (MainThread) [startup_guard.settings] Failed to load settings\n"
        "Traceback (most recent call last):\n"
        '  File "/opt/app/startup_guard/settings.py", line 3, in load\n'
        "PermissionError: [Errno 13] Permission denied: 'settings.json'\n"
    )

    diagnoses = client.get("/api/crashes/recent", params={"hours": 1}).json()

    assert len(diagnoses) == 1
    assert diagnoses[0]["report"]["cause_type"] == "PermissionError"
    assert diagnoses[0]["likely_cause"].startswith("Permission issue")
    assert diagnoses[0]["suggested_actions"][-1] == "Start application in safe mode"


def test_recent_crashes_without_log(client):
    response = client.get("/api/crashes/recent")

    assert response.status_code == 200
    assert response.json() == []
