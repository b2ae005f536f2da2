"""In-memory crash analytics with windowed statistics and retention."""

import logging
import threading
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import (
    CorrelatedFailure,
    CrashAnalyticsReport,
    CrashFrequencyStats,
    CrashReport,
    CrashTrend,
    FailurePattern,
    FailurePatternAnalysis,
    RecoveryAttempt,
    RecoverySuccessStats,
    RecurringIssue,
    SafeModeStats,
    SafeModeUsage,
    SessionSummary,
    utc_clock,
)

logger = logging.getLogger(__name__)

MAX_CRASHES = 1000
MAX_RECOVERY_ATTEMPTS = 500
MAX_SAFE_MODE_SESSIONS = 200

TREND_BAND = 0.2
CORRELATION_WINDOW = timedelta(hours=1)
MIN_CORRELATION_STRENGTH = 2
RECURRING_THRESHOLD = 3
TOP_N = 10
EXAMPLE_STACKS = 5


def normalize_cause(cause_type: str) -> str:
    """``System.IO.FileNotFoundException`` and ``FileNotFoundException`` are the same cause."""
    return (cause_type or "Unknown").strip().rsplit(".", 1)[-1] or "Unknown"


def _pattern_key(report: CrashReport) -> Tuple[str, str]:
    return normalize_cause(report.cause_type).lower(), report.component.lower()


def _mean(deltas: List[timedelta]) -> timedelta:
    if not deltas:
        return timedelta(0)
    return sum(deltas, timedelta(0)) / len(deltas)


class CrashAnalyticsStore:
    """Append-only record store; every aggregate runs on a snapshot."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = utc_clock(clock)
        self._lock = threading.Lock()
        self._crashes: List[CrashReport] = []
        self._attempts: List[RecoveryAttempt] = []
        self._usages: List[SafeModeUsage] = []
        self._session = SessionSummary(session_start_time=self.clock())
        self._session_crashes = 0
        self._session_attempts = 0
        self._session_usages = 0

    @staticmethod
    def _append_capped(records: list, record, cap: int):
        records.append(record)
        if len(records) > cap:
            del records[: len(records) - cap]

    def record_crash(self, report: CrashReport):
        if report is None:
            raise ValueError("report is required")
        with self._lock:
            self._append_capped(self._crashes, report, MAX_CRASHES)
            self._session_crashes += 1
        logger.info(f"Recorded crash {report.cause_type} in {report.component}")

    def record_recovery_attempt(self, attempt: RecoveryAttempt):
        if attempt is None:
            raise ValueError("attempt is required")
        with self._lock:
            self._append_capped(self._attempts, attempt, MAX_RECOVERY_ATTEMPTS)
            self._session_attempts += 1
        logger.debug(f"Recorded recovery attempt {attempt.recovery_action} (success={attempt.was_successful})")

    def record_safe_mode_usage(self, usage: SafeModeUsage):
        if usage is None:
            raise ValueError("usage is required")
        with self._lock:
            self._append_capped(self._usages, usage, MAX_SAFE_MODE_SESSIONS)
            self._session_usages += 1
        logger.debug(f"Recorded safe mode session: {usage.entry_reason}")

    def restore(self, crashes: Iterable[CrashReport] = (),
                attempts: Iterable[RecoveryAttempt] = (),
                usages: Iterable[SafeModeUsage] = ()):
        """Load persisted history; restored records do not count toward the current session."""
        with self._lock:
            for report in sorted(crashes, key=lambda c: c.timestamp):
                self._append_capped(self._crashes, report, MAX_CRASHES)
            for attempt in sorted(attempts, key=lambda a: a.timestamp):
                self._append_capped(self._attempts, attempt, MAX_RECOVERY_ATTEMPTS)
            for usage in sorted(usages, key=lambda u: u.start_time):
                self._append_capped(self._usages, usage, MAX_SAFE_MODE_SESSIONS)
            counts = (len(self._crashes), len(self._attempts), len(self._usages))
        logger.info(f"Restored analytics history: {counts[0]} crashes, {counts[1]} attempts, {counts[2]} sessions")

    def _snapshot(self) -> Tuple[List[CrashReport], List[RecoveryAttempt], List[SafeModeUsage]]:
        with self._lock:
            return list(self._crashes), list(self._attempts), list(self._usages)

    @property
    def crash_count(self) -> int:
        with self._lock:
            return len(self._crashes)

    # Crash frequency

    def get_crash_frequency_stats(self) -> CrashFrequencyStats:
        crashes, _, _ = self._snapshot()
        now = self.clock()
        if not crashes:
            return CrashFrequencyStats()

        def since(delta: timedelta) -> int:
            cutoff = now - delta
            return sum(1 for c in crashes if c.timestamp >= cutoff)

        oldest = min(c.timestamp for c in crashes)
        days = (now - oldest).total_seconds() / 86400
        return CrashFrequencyStats(
            total_crashes=len(crashes),
            crashes_last_24_hours=since(timedelta(days=1)),
            crashes_last_7_days=since(timedelta(days=7)),
            crashes_last_30_days=since(timedelta(days=30)),
            average_crashes_per_day=len(crashes) / days if days > 0 else 0.0,
            most_recent_crash=max(c.timestamp for c in crashes),
            crashes_by_component=dict(Counter(c.component for c in crashes)),
            crashes_by_cause=dict(Counter(normalize_cause(c.cause_type) for c in crashes)),
            crash_trend=self._crash_trend(crashes, now),
        )

    @staticmethod
    def _crash_trend(crashes: List[CrashReport], now: datetime) -> CrashTrend:
        if len(crashes) < 2:
            return CrashTrend.STABLE
        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)
        recent = sum(1 for c in crashes if c.timestamp >= week_ago)
        previous = sum(1 for c in crashes if two_weeks_ago <= c.timestamp < week_ago)
        if recent > previous * (1 + TREND_BAND):
            return CrashTrend.INCREASING
        if recent < previous * (1 - TREND_BAND):
            return CrashTrend.DECREASING
        return CrashTrend.STABLE

    # Failure patterns

    def analyze_failure_patterns(self) -> FailurePatternAnalysis:
        crashes, _, _ = self._snapshot()
        crashes.sort(key=lambda c: c.timestamp)
        analysis = FailurePatternAnalysis(analyzed_at=self.clock())
        if not crashes:
            return analysis

        groups: Dict[Tuple[str, str], List[CrashReport]] = defaultdict(list)
        for report in crashes:
            groups[_pattern_key(report)].append(report)

        patterns = []
        for key, reports in groups.items():
            patterns.append(FailurePattern(
                pattern_key=":".join(key),
                cause_type=normalize_cause(reports[0].cause_type),
                component=reports[0].component,
                frequency=len(reports),
                first_occurrence=reports[0].timestamp,
                last_occurrence=reports[-1].timestamp,
                example_stack_summaries=[r.stack_summary for r in reports[-EXAMPLE_STACKS:]],
            ))
        patterns.sort(key=lambda p: p.frequency, reverse=True)
        analysis.common_patterns = patterns[:TOP_N]

        analysis.failures_by_hour = dict(Counter(c.timestamp.hour for c in crashes))
        analysis.failures_by_weekday = dict(Counter(c.timestamp.strftime("%A") for c in crashes))
        total = len(crashes)
        analysis.component_failure_rates = {
            component: count / total * 100
            for component, count in Counter(c.component for c in crashes).items()
        }
        analysis.correlated_failures = self._correlated_failures(crashes)

        recurring = []
        for reports in groups.values():
            if len(reports) < RECURRING_THRESHOLD:
                continue
            gaps = [b.timestamp - a.timestamp for a, b in zip(reports, reports[1:])]
            recurring.append(RecurringIssue(
                cause_type=normalize_cause(reports[0].cause_type),
                component=reports[0].component,
                frequency=len(reports),
                first_occurrence=reports[0].timestamp,
                last_occurrence=reports[-1].timestamp,
                average_time_between=_mean(gaps),
            ))
        recurring.sort(key=lambda r: r.frequency, reverse=True)
        analysis.recurring_issues = recurring[:TOP_N]
        return analysis

    @staticmethod
    def _correlated_failures(crashes: List[CrashReport]) -> List[CorrelatedFailure]:
        """Ordered component pairs where the second failed within an hour after the first."""
        pairs: Counter = Counter()
        for i, first in enumerate(crashes):
            for second in crashes[i + 1:]:
                if second.timestamp - first.timestamp > CORRELATION_WINDOW:
                    break
                if first.component != second.component:
                    pairs[(first.component, second.component)] += 1

        return [
            CorrelatedFailure(
                primary_component=primary,
                secondary_component=secondary,
                correlation_strength=count,
                description=f"{primary} failures often followed by {secondary} failures",
            )
            for (primary, secondary), count in pairs.most_common()
            if count >= MIN_CORRELATION_STRENGTH
        ][:TOP_N]

    # Recovery and safe mode

    def get_recovery_success_stats(self) -> RecoverySuccessStats:
        _, attempts, _ = self._snapshot()
        if not attempts:
            return RecoverySuccessStats()

        succeeded = sum(1 for a in attempts if a.was_successful)
        by_action: Dict[str, List[RecoveryAttempt]] = defaultdict(list)
        for attempt in attempts:
            by_action[attempt.recovery_action].append(attempt)
        rates = {
            action: sum(1 for a in group if a.was_successful) / len(group) * 100
            for action, group in by_action.items()
        }
        return RecoverySuccessStats(
            attempts=attempts,
            overall_success_rate=succeeded / len(attempts) * 100,
            success_rate_by_action=rates,
            average_recovery_time=_mean([a.duration for a in attempts if a.duration is not None]),
            most_successful_action=max(rates, key=rates.get),
        )

    def get_safe_mode_stats(self) -> SafeModeStats:
        _, _, usages = self._snapshot()
        if not usages:
            return SafeModeStats()

        cutoff = self.clock() - timedelta(days=30)
        durations = [u.duration for u in usages if u.duration is not None]
        attempted = [u for u in usages if u.attempted_normal_startup]
        return SafeModeStats(
            total_sessions=len(usages),
            sessions_last_30_days=sum(1 for u in usages if u.start_time >= cutoff),
            average_session_duration=_mean(durations),
            longest_session_duration=max(durations, default=timedelta(0)),
            exit_reasons=dict(Counter(u.exit_reason for u in usages if u.exit_reason)),
            normal_startup_success_rate=(
                sum(1 for u in attempted if u.normal_startup_successful) / len(attempted) * 100
                if attempted else 0.0
            ),
        )

    def get_session_summary(self) -> SessionSummary:
        with self._lock:
            return self._session.model_copy(update={
                "crashes_this_session": self._session_crashes,
                "recovery_attempts_this_session": self._session_attempts,
                "safe_mode_usages_this_session": self._session_usages,
            })

    def generate_analytics_report(self) -> CrashAnalyticsReport:
        return CrashAnalyticsReport(
            generated_at=self.clock(),
            crash_frequency=self.get_crash_frequency_stats(),
            failure_patterns=self.analyze_failure_patterns(),
            recovery_success=self.get_recovery_success_stats(),
            safe_mode_usage=self.get_safe_mode_stats(),
            session_summary=self.get_session_summary(),
        )

    # Retention

    def cleanup_old_data(self, retention: timedelta) -> int:
        """Drop records strictly older than ``now - retention``; returns how many were removed."""
        cutoff = self.clock() - retention
        with self._lock:
            before = len(self._crashes) + len(self._attempts) + len(self._usages)
            self._crashes = [c for c in self._crashes if c.timestamp >= cutoff]
            self._attempts = [a for a in self._attempts if a.timestamp >= cutoff]
            self._usages = [u for u in self._usages if u.start_time >= cutoff]
            removed = before - len(self._crashes) - len(self._attempts) - len(self._usages)
        if removed:
            logger.info(f"Removed {removed} analytics records older than {cutoff:%Y-%m-%d %H:%M:%S}")
        return removed
