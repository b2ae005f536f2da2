"""Tests for the in-memory crash analytics store."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from startup_guard.analytics import MAX_CRASHES, CrashAnalyticsStore, normalize_cause
from startup_guard.models import CrashReport, CrashTrend, RecoveryAttempt, SafeModeUsage

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return CrashAnalyticsStore(clock=lambda: NOW)


def crash(ago=timedelta(0), cause="IOError", component="storage", stack=""):
    return CrashReport(timestamp=NOW - ago, cause_type=cause, component=component, stack_summary=stack)


def test_empty_store_reports_zeros(store):
    stats = store.get_crash_frequency_stats()
    assert stats.total_crashes == 0
    assert stats.average_crashes_per_day == 0.0
    assert stats.most_recent_crash is None
    assert stats.crash_trend == CrashTrend.STABLE

    recovery = store.get_recovery_success_stats()
    assert recovery.overall_success_rate == 0.0
    assert recovery.most_successful_action == "None"

    assert store.get_safe_mode_stats().total_sessions == 0
    assert store.analyze_failure_patterns().common_patterns == []


def test_recent_crashes_fall_in_every_window(store):
    for minutes in (1, 10, 30, 59):
        store.record_crash(crash(timedelta(minutes=minutes)))

    stats = store.get_crash_frequency_stats()
    assert stats.total_crashes == 4
    assert stats.crashes_last_24_hours == 4
    assert stats.crashes_last_7_days == 4
    assert stats.crashes_last_30_days == 4
    assert stats.most_recent_crash == NOW - timedelta(minutes=1)


def test_windows_are_inclusive_and_nested(store):
    store.record_crash(crash(timedelta(days=1)))
    store.record_crash(crash(timedelta(days=3)))
    store.record_crash(crash(timedelta(days=20)))
    store.record_crash(crash(timedelta(days=45)))

    stats = store.get_crash_frequency_stats()
    assert stats.crashes_last_24_hours == 1
    assert stats.crashes_last_7_days == 2
    assert stats.crashes_last_30_days == 3
    assert stats.total_crashes == 4
    assert stats.average_crashes_per_day == pytest.approx(4 / 45)


def test_crash_trend_detects_increase_and_decrease():
    increasing = CrashAnalyticsStore(clock=lambda: NOW)
    increasing.record_crash(crash(timedelta(days=10)))
    for hours in (1, 2, 3):
        increasing.record_crash(crash(timedelta(hours=hours)))
    assert increasing.get_crash_frequency_stats().crash_trend == CrashTrend.INCREASING

    decreasing = CrashAnalyticsStore(clock=lambda: NOW)
    for days in (8, 9, 10):
        decreasing.record_crash(crash(timedelta(days=days)))
    assert decreasing.get_crash_frequency_stats().crash_trend == CrashTrend.DECREASING

    stable = CrashAnalyticsStore(clock=lambda: NOW)
    stable.record_crash(crash(timedelta(days=1)))
    stable.record_crash(crash(timedelta(days=9)))
    assert stable.get_crash_frequency_stats().crash_trend == CrashTrend.STABLE


def test_causes_are_normalized():
    assert normalize_cause("System.IO.FileNotFoundException") == "FileNotFoundException"
    assert normalize_cause("") == "Unknown"

    store = CrashAnalyticsStore(clock=lambda: NOW)
    store.record_crash(crash(cause="System.IO.FileNotFoundException"))
    store.record_crash(crash(cause="FileNotFoundException"))
    assert store.get_crash_frequency_stats().crashes_by_cause == {"FileNotFoundException": 2}


def test_record_none_is_rejected(store):
    with pytest.raises(ValueError):
        store.record_crash(None)
    with pytest.raises(ValueError):
        store.record_recovery_attempt(None)
    with pytest.raises(ValueError):
        store.record_safe_mode_usage(None)


def test_crash_history_is_capped(store):
    for i in range(MAX_CRASHES + 5):
        store.record_crash(crash(timedelta(seconds=MAX_CRASHES + 5 - i), component=f"c{i}"))

    assert store.crash_count == MAX_CRASHES
    components = store.get_crash_frequency_stats().crashes_by_component
    assert "c0" not in components
    assert f"c{MAX_CRASHES + 4}" in components


def test_recovery_success_rates(store):
    store.record_recovery_attempt(RecoveryAttempt(recovery_action="CreateDefaultConfiguration",
                                                  was_successful=True, duration=timedelta(seconds=1)))
    store.record_recovery_attempt(RecoveryAttempt(recovery_action="CreateDefaultConfiguration",
                                                  was_successful=True, duration=timedelta(seconds=3)))
    store.record_recovery_attempt(RecoveryAttempt(recovery_action="ResetToFactoryDefaults",
                                                  was_successful=False))

    stats = store.get_recovery_success_stats()
    assert stats.overall_success_rate == pytest.approx(200 / 3)
    assert stats.success_rate_by_action == {"CreateDefaultConfiguration": 100.0, "ResetToFactoryDefaults": 0.0}
    assert stats.most_successful_action == "CreateDefaultConfiguration"
    assert stats.average_recovery_time == timedelta(seconds=2)


def test_all_successful_attempts_give_full_rate(store):
    for _ in range(4):
        store.record_recovery_attempt(RecoveryAttempt(recovery_action="CreateMissingDirectories",
                                                      was_successful=True))
    assert store.get_recovery_success_stats().overall_success_rate == 100.0


def test_safe_mode_stats(store):
    store.record_safe_mode_usage(SafeModeUsage(
        entry_reason="Startup failure", start_time=NOW - timedelta(hours=2),
        end_time=NOW - timedelta(hours=1), exit_reason="User restarted",
        attempted_normal_startup=True, normal_startup_successful=True))
    store.record_safe_mode_usage(SafeModeUsage(
        entry_reason="Startup failure", start_time=NOW - timedelta(days=40),
        end_time=NOW - timedelta(days=40) + timedelta(hours=3), exit_reason="User restarted",
        attempted_normal_startup=True, normal_startup_successful=False))
    store.record_safe_mode_usage(SafeModeUsage(entry_reason="Manual", start_time=NOW))

    stats = store.get_safe_mode_stats()
    assert stats.total_sessions == 3
    assert stats.sessions_last_30_days == 2
    assert stats.average_session_duration == timedelta(hours=2)
    assert stats.longest_session_duration == timedelta(hours=3)
    assert stats.exit_reasons == {"User restarted": 2}
    assert stats.normal_startup_success_rate == 50.0


def test_failure_patterns_group_by_cause_and_component(store):
    for minutes in range(6):
        store.record_crash(crash(timedelta(hours=10, minutes=minutes), cause="KeyError",
                                 component="Theme", stack=f"stack {minutes}"))
    store.record_crash(crash(timedelta(hours=5), cause="System.KeyError", component="theme"))
    store.record_crash(crash(timedelta(hours=1), cause="IOError", component="storage"))

    analysis = store.analyze_failure_patterns()

    top = analysis.common_patterns[0]
    assert top.pattern_key == "keyerror:theme"
    assert top.frequency == 7
    assert len(top.example_stack_summaries) == 5
    assert sum(analysis.failures_by_hour.values()) == 8
    assert sum(analysis.failures_by_weekday.values()) == 8
    assert analysis.component_failure_rates["storage"] == pytest.approx(12.5)

    recurring = analysis.recurring_issues
    assert len(recurring) == 1
    assert recurring[0].frequency == 7
    assert recurring[0].average_time_between > timedelta(0)


def test_correlated_failures_need_two_occurrences(store):
    for hours in (30, 20, 10):
        store.record_crash(crash(timedelta(hours=hours), component="storage"))
        store.record_crash(crash(timedelta(hours=hours, minutes=-20), component="theme"))
    store.record_crash(crash(timedelta(hours=2), component="hotkeys"))
    store.record_crash(crash(timedelta(hours=1, minutes=30), component="search"))

    correlated = store.analyze_failure_patterns().correlated_failures

    assert len(correlated) == 1
    assert correlated[0].primary_component == "storage"
    assert correlated[0].secondary_component == "theme"
    assert correlated[0].correlation_strength == 3


def test_crashes_further_apart_than_an_hour_are_not_correlated(store):
    for days in (1, 2, 3):
        store.record_crash(crash(timedelta(days=days, hours=2), component="storage"))
        store.record_crash(crash(timedelta(days=days), component="theme"))

    assert store.analyze_failure_patterns().correlated_failures == []


def test_cleanup_removes_only_expired_records(store):
    store.record_crash(crash(timedelta(days=40)))
    store.record_crash(crash(timedelta(days=1)))
    store.record_recovery_attempt(RecoveryAttempt(recovery_action="x", was_successful=True,
                                                  timestamp=NOW - timedelta(days=31)))
    store.record_safe_mode_usage(SafeModeUsage(entry_reason="y", start_time=NOW - timedelta(days=29)))

    removed = store.cleanup_old_data(timedelta(days=30))

    assert removed == 2
    assert store.crash_count == 1
    assert store.get_safe_mode_stats().total_sessions == 1
    assert store.cleanup_old_data(timedelta(days=30)) == 0


def test_restored_history_is_not_part_of_the_session(store):
    store.restore(crashes=[crash(timedelta(days=2)), crash(timedelta(days=1))])
    store.record_crash(crash())

    summary = store.get_session_summary()
    assert summary.crashes_this_session == 1
    assert store.crash_count == 3


def test_report_summary_mentions_each_section(store):
    for minutes in (5, 10, 15):
        store.record_crash(crash(timedelta(minutes=minutes), cause="KeyError", component="theme"))
    store.record_recovery_attempt(RecoveryAttempt(recovery_action="CreateDefaultConfiguration",
                                                  was_successful=True))

    report = store.generate_analytics_report()
    summary = report.get_summary()

    assert report.generated_at == NOW
    assert report.session_summary.crashes_this_session == 3
    assert "Total Crashes: 3" in summary
    assert "Overall Success Rate: 100.0%" in summary
    assert "Recurring Issues:" in summary
    assert "KeyError in theme (3x)" in summary


def test_naive_clock_is_treated_as_utc():
    naive_now = datetime(2024, 6, 15, 12)
    store = CrashAnalyticsStore(clock=lambda: naive_now)
    store.record_crash(CrashReport(timestamp=naive_now - timedelta(minutes=5)))
    store.record_crash(CrashReport(timestamp=naive_now - timedelta(days=3)))
    store.record_safe_mode_usage(SafeModeUsage(entry_reason="x", start_time=naive_now - timedelta(days=2)))

    stats = store.get_crash_frequency_stats()
    assert stats.crashes_last_24_hours == 1
    assert stats.crashes_last_7_days == 2
    assert store.get_safe_mode_stats().sessions_last_30_days == 1
    assert store.generate_analytics_report().generated_at == NOW
    assert store.cleanup_old_data(timedelta(days=1)) == 2
    assert store.crash_count == 1


def test_concurrent_writers_and_readers_stay_consistent(store):
    per_thread = 200
    errors = []

    def writer(index):
        try:
            for i in range(per_thread):
                store.record_crash(crash(timedelta(seconds=i), component=f"worker{index}"))
                if i % 20 == 0:
                    report = store.generate_analytics_report()
                    assert report.crash_frequency.total_crashes <= 4 * per_thread
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.crash_count == 4 * per_thread
    assert store.get_session_summary().crashes_this_session == 4 * per_thread
    assert sum(store.get_crash_frequency_stats().crashes_by_component.values()) == 4 * per_thread
