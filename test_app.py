"""End-to-end tests of the guarded startup sequence."""

import json

from startup_guard.catalog import ESSENTIAL_SERVICES, NON_ESSENTIAL_SERVICES
from startup_guard.database import Database
from startup_guard.main import StartupGuardApp
from startup_guard.models import CrashReport, RecoveryOutcome, utc_now
from startup_guard.services import ServiceRegistry


def write_valid_configuration(app_dir):
    for sub in ("backups", "logs"):
        (app_dir / sub).mkdir(parents=True, exist_ok=True)
    (app_dir / "notes.json").write_text(json.dumps({"notes": []}))
    (app_dir / "settings.json").write_text(json.dumps({"theme": "Dark"}))
    (app_dir / "snippets.json").write_text("[]")
    (app_dir / "templates.json").write_text("[]")


async def start_guard(config, registry=None):
    guard = StartupGuardApp(config=config, registry=registry)
    await guard.initialize()
    return guard


async def test_first_startup_creates_defaults(guard_config):
    guard = await start_guard(guard_config)
    outcome = await guard.run_startup_sequence()

    assert outcome.validation.is_valid
    assert not outcome.safe_mode.is_active
    assert outcome.recovered_count == 4
    assert outcome.failed_count == 0
    assert outcome.previous_startup_crash is None
    assert not (guard_config["app_data_path"] / "startup-marker.txt").exists()
    assert guard.analytics.get_recovery_success_stats().overall_success_rate == 100.0
    assert (await guard.database.get_stats())["recovery_attempts"] == 4


async def test_corrupted_notes_activates_safe_mode_and_repairs(guard_config):
    app_dir = guard_config["app_data_path"]
    write_valid_configuration(app_dir)
    (app_dir / "notes.json").write_text("{ invalid json")

    guard = await start_guard(guard_config)
    outcome = await guard.run_startup_sequence()

    assert not outcome.validation.is_valid
    assert outcome.safe_mode.is_active
    assert "1 critical" in outcome.safe_mode.reason
    assert outcome.safe_mode.triggering_issues
    repaired = [r for r in outcome.recovery_results if r.outcome == RecoveryOutcome.RECOVERED]
    assert [r.action.value for r in repaired] == ["BackupCorruptedConfiguration"]
    assert list(app_dir.glob("notes.json.backup_*"))


async def test_next_clean_startup_leaves_safe_mode(guard_config):
    app_dir = guard_config["app_data_path"]
    write_valid_configuration(app_dir)
    (app_dir / "notes.json").write_text("{ invalid json")
    first = await start_guard(guard_config)
    await first.run_startup_sequence()

    second = await start_guard(guard_config)
    assert second.safe_mode.is_active
    outcome = await second.run_startup_sequence()

    assert outcome.validation.is_valid
    assert not outcome.safe_mode.is_active
    stats = second.analytics.get_safe_mode_stats()
    assert stats.total_sessions == 1
    assert stats.normal_startup_success_rate == 100.0


async def test_stale_marker_is_recorded_as_crash(guard_config):
    app_dir = guard_config["app_data_path"]
    write_valid_configuration(app_dir)
    (app_dir / "startup-marker.txt").write_text("2020-01-01T00:00:00+00:00\nStorage\n")

    guard = await start_guard(guard_config)
    outcome = await guard.run_startup_sequence()

    assert outcome.previous_startup_crash.component == "Storage"
    assert guard.analytics.crash_count == 1
    assert (await guard.database.get_stats())["crash_reports"] == 1


async def test_missing_essential_services_trigger_minimal_mode(guard_config):
    write_valid_configuration(guard_config["app_data_path"])
    registry = ServiceRegistry({name: object() for name in NON_ESSENTIAL_SERVICES})
    registry.register("file_system", object())

    guard = await start_guard(guard_config, registry=registry)
    outcome = await guard.run_startup_sequence()

    assert outcome.safe_mode.is_active
    assert registry.names() == ["file_system"]


async def test_healthy_registry_keeps_normal_mode(guard_config):
    write_valid_configuration(guard_config["app_data_path"])
    registry = ServiceRegistry({name: object() for name in ESSENTIAL_SERVICES + NON_ESSENTIAL_SERVICES})

    guard = await start_guard(guard_config, registry=registry)
    outcome = await guard.run_startup_sequence()

    assert not outcome.safe_mode.is_active
    assert registry.is_registered("cloud_sync")


async def test_history_is_restored_from_database(guard_config):
    guard = await start_guard(guard_config)
    await guard.record_crash(CrashReport(timestamp=utc_now(), cause_type="KeyError", component="theme"))

    restarted = await start_guard(guard_config)

    assert restarted.analytics.crash_count == 1
    assert restarted.analytics.get_session_summary().crashes_this_session == 0


async def test_unusable_database_falls_back_to_memory(guard_config, monkeypatch):
    async def broken_initialize(self):
        raise OSError("disk I/O error")

    monkeypatch.setattr(Database, "initialize", broken_initialize)

    guard = await start_guard(guard_config)
    await guard.record_crash(CrashReport(timestamp=utc_now()))

    assert guard.database is None
    assert guard.analytics.crash_count == 1
    assert guard.web_interface is not None


async def test_cleanup_reports_both_stores(guard_config):
    guard = await start_guard(guard_config)
    assert await guard.cleanup_old_data() == {"memory": 0, "database": 0}


def test_crash_logged_without_loop_is_recorded(guard_config):
    guard = StartupGuardApp(config=guard_config)
    guard._on_crash_logged(CrashReport(timestamp=utc_now(), cause_type="IOError"))

    assert guard.analytics.crash_count == 1


async def test_analyze_reports_data_directory(guard_config):
    guard = await start_guard(guard_config)
    await guard.run_startup_sequence()

    text = guard.analyze(hours_back=1)

    assert text.startswith("=== Startup Guard Crash Analysis ===")
    assert "[OK] No previous startup crash detected" in text
    assert "[OK] notes.json exists and is valid" in text
    assert "--- System Information ---" in text
