"""Tests for incomplete-startup detection."""

from datetime import datetime, timedelta, timezone

from startup_guard.startup_marker import StartupMarker

START = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self):
        self.now = START

    def __call__(self):
        return self.now


def test_no_marker_means_no_crash(tmp_path):
    assert StartupMarker(tmp_path / "startup-marker.txt").check_previous_startup() is None


def test_completed_startup_leaves_no_marker(tmp_path):
    marker = StartupMarker(tmp_path / "startup-marker.txt")
    marker.mark_component("storage")
    marker.mark_complete()

    assert not (tmp_path / "startup-marker.txt").exists()
    assert marker.check_previous_startup() is None


def test_stale_marker_reports_last_component(tmp_path):
    clock = ManualClock()
    marker = StartupMarker(tmp_path / "state" / "startup-marker.txt", clock=clock)
    marker.mark_component("note_data")

    clock.now = START + timedelta(minutes=10)
    report = marker.check_previous_startup()

    assert report.cause_type == "IncompleteStartup"
    assert report.component == "note_data"
    assert report.timestamp == START


def test_fresh_marker_is_not_a_crash(tmp_path):
    clock = ManualClock()
    marker = StartupMarker(tmp_path / "startup-marker.txt", clock=clock)
    marker.mark_component("theme")

    clock.now = START + timedelta(minutes=2)
    assert marker.check_previous_startup() is None


def test_garbled_marker_is_ignored(tmp_path):
    path = tmp_path / "startup-marker.txt"
    path.write_text("not a timestamp\nstorage\n")
    assert StartupMarker(path).check_previous_startup() is None

    path.write_text("only one line")
    assert StartupMarker(path).check_previous_startup() is None


def test_mark_complete_without_marker_is_harmless(tmp_path):
    StartupMarker(tmp_path / "startup-marker.txt").mark_complete()


def test_naive_clock_readings_are_taken_as_utc(tmp_path):
    readings = iter([datetime(2024, 6, 1, 8, 0), datetime(2024, 6, 1, 8, 30)])
    marker = StartupMarker(tmp_path / "startup-marker.txt", clock=lambda: next(readings))
    marker.mark_component("storage")

    report = marker.check_previous_startup()

    assert report.component == "storage"
    assert report.timestamp == START
