"""Tests for the recovery manager."""

import json
import os
import threading

import pytest

from startup_guard.catalog import parse_configuration
from startup_guard.file_system import FileSystem
from startup_guard.models import RecoveryAction, RecoveryOutcome
from startup_guard.recovery import RecoveryManager, recovery_attempts_for

CONFIG_NAMES = ["notes.json", "settings.json", "snippets.json", "templates.json"]


class ReadOnlyFileSystem(FileSystem):
    def write_text(self, path, content):
        raise PermissionError(13, "Permission denied", str(path))

    def create_directory(self, path):
        raise PermissionError(13, "Permission denied", str(path))


@pytest.fixture
def app_dir(tmp_path):
    return tmp_path / "appdata"


@pytest.fixture
def manager(app_dir):
    return RecoveryManager(app_dir)


def backups_of(path):
    return sorted(path.parent.glob(f"{path.name}.backup_*"))


def test_missing_configuration_is_created_then_left_alone(manager, app_dir):
    path = app_dir / "settings.json"

    first = manager.recover_missing_configuration(path)
    assert first.action == RecoveryAction.CREATE_DEFAULT_CONFIGURATION
    assert first.succeeded
    parse_configuration(str(path), path.read_text())

    second = manager.recover_missing_configuration(path)
    assert second.action == RecoveryAction.NO_ACTION_NEEDED
    assert second.outcome == RecoveryOutcome.NO_ACTION_NEEDED
    assert not second.succeeded
    assert "already exists" in second.message


def test_unknown_file_gets_empty_object(manager, app_dir):
    path = app_dir / "nested" / "custom.json"
    result = manager.recover_missing_configuration(path)

    assert result.succeeded
    assert json.loads(path.read_text()) == {}


def test_empty_path_fails_without_raising(manager):
    result = manager.recover_missing_configuration("")

    assert result.outcome == RecoveryOutcome.FAILED
    assert not result.succeeded
    assert result.message


def test_corrupted_configuration_is_backed_up_and_replaced(manager, app_dir):
    app_dir.mkdir()
    path = app_dir / "notes.json"
    path.write_text("{ invalid json")

    result = manager.recover_corrupted_configuration(path)

    assert result.action == RecoveryAction.BACKUP_CORRUPTED_CONFIGURATION
    assert result.succeeded
    backups = backups_of(path)
    assert len(backups) == 1
    assert backups[0].read_text() == "{ invalid json"
    parse_configuration(str(path), path.read_text())


def test_valid_configuration_is_not_touched(manager, app_dir):
    app_dir.mkdir()
    path = app_dir / "settings.json"
    content = json.dumps({"theme": "Light", "custom_key": 42})
    path.write_text(content)

    result = manager.recover_corrupted_configuration(path)

    assert result.outcome == RecoveryOutcome.NO_ACTION_NEEDED
    assert path.read_text() == content
    assert backups_of(path) == []


def test_corrupted_recovery_delegates_when_missing(manager, app_dir):
    result = manager.recover_corrupted_configuration(app_dir / "snippets.json")

    assert result.action == RecoveryAction.CREATE_DEFAULT_CONFIGURATION
    assert result.succeeded


def test_missing_directories_created_with_intermediates(manager, app_dir):
    target = app_dir / "a" / "b" / "c"

    result = manager.recover_missing_directories(target)
    assert result.succeeded
    assert target.is_dir()

    again = manager.recover_missing_directories(target)
    assert again.action == RecoveryAction.NO_ACTION_NEEDED
    assert not again.succeeded


def test_backups_are_unique_in_quick_succession(manager, app_dir):
    app_dir.mkdir()
    path = app_dir / "settings.json"
    path.write_bytes(b'{"theme": "Dark"}\n')

    first = manager.create_configuration_backup(path)
    second = manager.create_configuration_backup(path)

    assert first != second
    assert first.read_bytes() == path.read_bytes()
    assert second.read_bytes() == path.read_bytes()


def test_backup_of_missing_file_is_none(manager, app_dir):
    assert manager.create_configuration_backup(app_dir / "nope.json") is None


def test_dry_run_reports_without_changing_anything(manager, app_dir):
    actions = manager.identify_required_recovery_actions()

    assert actions == [RecoveryAction.CREATE_MISSING_DIRECTORIES, RecoveryAction.CREATE_DEFAULT_CONFIGURATION]
    assert not app_dir.exists()


def test_dry_run_detects_corruption(manager, app_dir):
    manager.perform_comprehensive_recovery()
    (app_dir / "templates.json").write_text("oops")

    assert manager.identify_required_recovery_actions() == [RecoveryAction.BACKUP_CORRUPTED_CONFIGURATION]


def test_comprehensive_recovery_then_idempotent(manager, app_dir):
    results = manager.perform_comprehensive_recovery()

    assert all(r.succeeded for r in results)
    assert len(results) == 3 + len(CONFIG_NAMES)
    for name in CONFIG_NAMES:
        parse_configuration(name, (app_dir / name).read_text())

    again = manager.perform_comprehensive_recovery()
    assert all(r.action == RecoveryAction.NO_ACTION_NEEDED for r in again)
    assert manager.identify_required_recovery_actions() == [RecoveryAction.NO_ACTION_NEEDED]


def test_comprehensive_recovery_preserves_user_content(manager, app_dir):
    manager.perform_comprehensive_recovery()
    notes = app_dir / "notes.json"
    user_content = json.dumps({"notes": [{"title": "Mine", "content": "keep me"}]})
    notes.write_text(user_content)

    manager.perform_comprehensive_recovery()

    assert notes.read_text() == user_content


def test_factory_reset_backs_up_and_overwrites(manager, app_dir):
    manager.perform_comprehensive_recovery()
    notes = app_dir / "notes.json"
    notes.write_text(json.dumps({"notes": [{"title": "Mine"}]}))

    result = manager.reset_to_factory_defaults()

    assert result.action == RecoveryAction.RESET_TO_FACTORY_DEFAULTS
    assert result.succeeded
    assert "Mine" not in notes.read_text()
    saved = list((app_dir / "backups").glob("factory_reset_backup_*/notes.json"))
    assert len(saved) == 1
    assert "Mine" in saved[0].read_text()


def test_permission_failure_mentions_permission(app_dir):
    manager = RecoveryManager(app_dir, file_system=ReadOnlyFileSystem())

    result = manager.recover_missing_configuration(app_dir / "notes.json")
    assert result.outcome == RecoveryOutcome.FAILED
    assert "permission" in result.message.lower()

    reset = manager.reset_to_factory_defaults()
    assert not reset.succeeded
    assert "permission" in reset.message.lower()


def test_recovery_attempts_skip_no_action_results(manager, app_dir):
    results = manager.perform_comprehensive_recovery()
    results += manager.perform_comprehensive_recovery()

    attempts = recovery_attempts_for(results, triggering_issue="test")

    assert len(attempts) == 3 + len(CONFIG_NAMES)
    assert all(a.was_successful for a in attempts)
    assert {a.recovery_action for a in attempts} == {"CreateMissingDirectories", "CreateDefaultConfiguration"}


@pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="permission bits are not enforced")
def test_read_only_directory_reports_permission(manager, app_dir):
    app_dir.mkdir()
    app_dir.chmod(0o500)
    try:
        result = manager.recover_missing_configuration(app_dir / "settings.json")
    finally:
        app_dir.chmod(0o700)

    assert not result.succeeded
    assert "permission" in result.message.lower()


def test_concurrent_repairs_of_one_file_are_serialized(manager, app_dir):
    app_dir.mkdir()
    path = app_dir / "settings.json"
    path.write_text("{ broken")
    results = []
    start = threading.Barrier(8)

    def repair():
        start.wait()
        results.append(manager.recover_corrupted_configuration(path))

    threads = [threading.Thread(target=repair) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert sum(1 for r in results if r.succeeded) == 1
    assert sum(1 for r in results if r.outcome == RecoveryOutcome.NO_ACTION_NEEDED) == 7
    assert len(backups_of(path)) == 1
    parse_configuration(str(path), path.read_text())
