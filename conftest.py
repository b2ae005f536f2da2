"""Shared fixtures for the Startup Guard tests."""

import pytest


@pytest.fixture
def guard_config(tmp_path):
    app_data_path = tmp_path / "appdata"
    return {
        "app_data_path": app_data_path,
        "database_path": str(tmp_path / "db" / "analytics.db"),
        "crash_log_path": tmp_path / "logs" / "application.log",
        "app_name": "startup_guard",
        "app_version": "1.0.0-test",
        "log_level": "INFO",
        "web_port": 8080,
        "analytics_retention_days": 30,
        "watch_crash_log": False,
    }
