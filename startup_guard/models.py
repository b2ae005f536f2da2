"""Data models for the Startup Guard application."""

from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Callable, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field, model_validator


def utc_now() -> datetime:
    """Default clock used when no clock is injected."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # naive timestamps from logs and old rows are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def utc_clock(clock: Optional[Callable[[], datetime]] = None) -> Callable[[], datetime]:
    """Wrap an injected clock so naive readings are taken to be UTC."""
    if clock is None:
        return utc_now
    return lambda: _as_utc(clock())


class Severity(IntEnum):
    """Ordered severity of a detected issue."""
    INFORMATION = 0
    WARNING = 1
    ERROR = 2
    CRITICAL = 3


class ValidationIssue(BaseModel):
    """A single environment defect found by a validation check."""
    model_config = ConfigDict(frozen=True)

    component: str
    severity: Severity
    description: str
    suggested_action: str = ""
    detected_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def information(cls, component: str, description: str, suggested_action: str = "") -> "ValidationIssue":
        return cls(component=component, severity=Severity.INFORMATION,
                   description=description, suggested_action=suggested_action)

    @classmethod
    def warning(cls, component: str, description: str, suggested_action: str = "") -> "ValidationIssue":
        return cls(component=component, severity=Severity.WARNING,
                   description=description, suggested_action=suggested_action)

    @classmethod
    def error(cls, component: str, description: str, suggested_action: str = "") -> "ValidationIssue":
        return cls(component=component, severity=Severity.ERROR,
                   description=description, suggested_action=suggested_action)

    @classmethod
    def critical(cls, component: str, description: str, suggested_action: str = "") -> "ValidationIssue":
        return cls(component=component, severity=Severity.CRITICAL,
                   description=description, suggested_action=suggested_action)

    @classmethod
    def from_exception(cls, component: str, exc: BaseException,
                       severity: Severity = Severity.ERROR,
                       suggested_action: str = "") -> "ValidationIssue":
        """Turn a caught fault into an issue instead of letting it escape."""
        description = str(exc) or type(exc).__name__
        return cls(component=component, severity=severity,
                   description=description, suggested_action=suggested_action)

    def __str__(self) -> str:
        stamp = self.detected_at.strftime("%H:%M:%S.%f")[:-3]
        text = f"[{stamp}] {self.severity.name} - {self.component}: {self.description}"
        if self.suggested_action:
            text += f" (Suggested: {self.suggested_action})"
        return text


class ValidationResult(BaseModel):
    """Outcome of one validation category."""
    model_config = ConfigDict(frozen=True)

    component: str
    started_at: datetime
    duration: timedelta = timedelta(0)
    issues: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == Severity.CRITICAL for issue in self.issues)

    def issues_with(self, severity: Severity) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == severity]

    @classmethod
    def combine(cls, component: str, results: List["ValidationResult"],
                started_at: datetime, duration: timedelta) -> "ValidationResult":
        """Union of several category results, in the order given."""
        issues: List[ValidationIssue] = []
        for result in results:
            issues.extend(result.issues)
        return cls(component=component, started_at=started_at, duration=duration, issues=issues)

    def to_detailed_string(self) -> str:
        status = "VALID" if self.is_valid else "INVALID"
        lines = [
            f"{self.component} Validation - {status} "
            f"({len(self.issues)} issues, {self.duration.total_seconds() * 1000:.2f}ms)"
        ]
        for issue in sorted(self.issues, key=lambda i: i.severity, reverse=True):
            lines.append(f"    {issue}")
        return "\n".join(lines)


class RecoveryAction(str, Enum):
    """Corrective operations the recovery manager can report."""
    CREATE_DEFAULT_CONFIGURATION = "CreateDefaultConfiguration"
    BACKUP_CORRUPTED_CONFIGURATION = "BackupCorruptedConfiguration"
    CREATE_MISSING_DIRECTORIES = "CreateMissingDirectories"
    RESET_TO_FACTORY_DEFAULTS = "ResetToFactoryDefaults"
    NO_ACTION_NEEDED = "NoActionNeeded"


class RecoveryOutcome(str, Enum):
    """Three-way outcome behind the boolean ``succeeded`` flag."""
    NO_ACTION_NEEDED = "no_action_needed"
    RECOVERED = "recovered"
    FAILED = "failed"


class RecoveryResult(BaseModel):
    """Result of a single recovery call."""
    model_config = ConfigDict(frozen=True)

    action: RecoveryAction
    outcome: RecoveryOutcome
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    path: Optional[str] = None

    @computed_field
    @property
    def succeeded(self) -> bool:
        # "already healthy" and "attempted and failed" both report False
        return self.outcome == RecoveryOutcome.RECOVERED


class SafeModeConfig(BaseModel):
    """Session-scoped safe mode state."""
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    reason: str = ""
    activated_at: Optional[datetime] = None
    use_default_settings: bool = True
    disable_cloud_sync: bool = True
    disable_hotkeys: bool = True
    disable_preview_rendering: bool = True
    disable_templated_content: bool = True
    triggering_issues: List[ValidationIssue] = Field(default_factory=list)

    @model_validator(mode="after")
    def _enabled_means_fully_degraded(self) -> "SafeModeConfig":
        if self.enabled and not all((
            self.use_default_settings,
            self.disable_cloud_sync,
            self.disable_hotkeys,
            self.disable_preview_rendering,
            self.disable_templated_content,
        )):
            raise ValueError("safe mode must disable every optional feature and force default settings")
        return self

    @classmethod
    def for_reason(cls, reason: str, activated_at: datetime,
                   issues: Optional[List[ValidationIssue]] = None) -> "SafeModeConfig":
        return cls(enabled=True, reason=reason, activated_at=activated_at,
                   triggering_issues=list(issues or []))


class SafeModeStatus(BaseModel):
    """Read-only projection of the safe mode state."""
    model_config = ConfigDict(frozen=True)

    is_active: bool
    reason: str = ""
    activated_at: Optional[datetime] = None
    disabled_services: List[str] = Field(default_factory=list)
    triggering_issues: List[str] = Field(default_factory=list)
    configuration_reset: bool = False

    @property
    def description(self) -> str:
        if not self.is_active:
            return "Safe mode inactive"
        since = f" (since {self.activated_at:%H:%M:%S})" if self.activated_at else ""
        return f"Safe mode active: {self.reason}{since}"


class CrashReport(BaseModel):
    """Structured record of a captured fault."""
    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    cause_type: str = "Unknown"
    message: str = ""
    stack_summary: str = ""
    component: str = "Unknown"
    app_version: str = ""
    os_description: str = ""
    runtime_version: str = ""
    memory_usage_mb: float = 0.0
    context: Dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        context = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return (
            f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] CRASH in {self.component}: {self.cause_type} - {self.message}\n"
            f"Version: {self.app_version}, OS: {self.os_description}, Runtime: {self.runtime_version}\n"
            f"Memory: {self.memory_usage_mb:.0f}MB\n"
            f"Context: {context}\n"
            f"Stack Trace:\n{self.stack_summary}"
        )


class RecoveryAttempt(BaseModel):
    """An analytics record of one recovery attempt."""
    model_config = ConfigDict(frozen=True)

    recovery_action: str
    was_successful: bool
    component: str = ""
    triggering_issue: str = ""
    duration: Optional[timedelta] = None
    error_message: Optional[str] = None
    timestamp: UtcDatetime = Field(default_factory=utc_now)


class SafeModeUsage(BaseModel):
    """One safe mode session."""
    model_config = ConfigDict(frozen=True)

    entry_reason: str
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None
    exit_reason: Optional[str] = None
    attempted_normal_startup: bool = False
    normal_startup_successful: Optional[bool] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


class CrashTrend(str, Enum):
    """Direction of the weekly crash count."""
    DECREASING = "Decreasing"
    STABLE = "Stable"
    INCREASING = "Increasing"


class CrashFrequencyStats(BaseModel):
    total_crashes: int = 0
    crashes_last_24_hours: int = 0
    crashes_last_7_days: int = 0
    crashes_last_30_days: int = 0
    average_crashes_per_day: float = 0.0
    most_recent_crash: Optional[datetime] = None
    crashes_by_component: Dict[str, int] = Field(default_factory=dict)
    crashes_by_cause: Dict[str, int] = Field(default_factory=dict)
    crash_trend: CrashTrend = CrashTrend.STABLE


class FailurePattern(BaseModel):
    pattern_key: str
    cause_type: str
    component: str
    frequency: int
    first_occurrence: datetime
    last_occurrence: datetime
    example_stack_summaries: List[str] = Field(default_factory=list)


class CorrelatedFailure(BaseModel):
    primary_component: str
    secondary_component: str
    correlation_strength: int
    description: str


class RecurringIssue(BaseModel):
    cause_type: str
    component: str
    frequency: int
    first_occurrence: datetime
    last_occurrence: datetime
    average_time_between: timedelta


class FailurePatternAnalysis(BaseModel):
    common_patterns: List[FailurePattern] = Field(default_factory=list)
    failures_by_hour: Dict[int, int] = Field(default_factory=dict)
    failures_by_weekday: Dict[str, int] = Field(default_factory=dict)
    component_failure_rates: Dict[str, float] = Field(default_factory=dict)
    correlated_failures: List[CorrelatedFailure] = Field(default_factory=list)
    recurring_issues: List[RecurringIssue] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=utc_now)


class RecoverySuccessStats(BaseModel):
    attempts: List[RecoveryAttempt] = Field(default_factory=list)
    overall_success_rate: float = 0.0
    success_rate_by_action: Dict[str, float] = Field(default_factory=dict)
    average_recovery_time: timedelta = timedelta(0)
    most_successful_action: str = "None"


class SafeModeStats(BaseModel):
    total_sessions: int = 0
    sessions_last_30_days: int = 0
    average_session_duration: timedelta = timedelta(0)
    longest_session_duration: timedelta = timedelta(0)
    exit_reasons: Dict[str, int] = Field(default_factory=dict)
    normal_startup_success_rate: float = 0.0


class SessionSummary(BaseModel):
    crashes_this_session: int = 0
    recovery_attempts_this_session: int = 0
    safe_mode_usages_this_session: int = 0
    session_start_time: datetime = Field(default_factory=utc_now)


class CrashAnalyticsReport(BaseModel):
    """Snapshot bundling every analytics view."""
    generated_at: datetime
    crash_frequency: CrashFrequencyStats = Field(default_factory=CrashFrequencyStats)
    failure_patterns: FailurePatternAnalysis = Field(default_factory=FailurePatternAnalysis)
    recovery_success: RecoverySuccessStats = Field(default_factory=RecoverySuccessStats)
    safe_mode_usage: SafeModeStats = Field(default_factory=SafeModeStats)
    session_summary: SessionSummary = Field(default_factory=SessionSummary)

    def get_summary(self) -> str:
        frequency = self.crash_frequency
        recovery = self.recovery_success
        safe_mode = self.safe_mode_usage
        session = self.session_summary
        lines = [
            f"Crash Analytics Report - Generated {self.generated_at:%Y-%m-%d %H:%M:%S}",
            "",
            "Crash Frequency:",
            f"  Total Crashes: {frequency.total_crashes}",
            f"  Last 24 Hours: {frequency.crashes_last_24_hours}",
            f"  Last 7 Days: {frequency.crashes_last_7_days}",
            f"  Last 30 Days: {frequency.crashes_last_30_days}",
            f"  Trend: {frequency.crash_trend.value}",
            "",
            "Recovery Success:",
            f"  Overall Success Rate: {recovery.overall_success_rate:.1f}%",
            f"  Total Attempts: {len(recovery.attempts)}",
            f"  Most Successful Action: {recovery.most_successful_action}",
            "",
            "Safe Mode Usage:",
            f"  Total Sessions: {safe_mode.total_sessions}",
            f"  Last 30 Days: {safe_mode.sessions_last_30_days}",
            f"  Average Session: {safe_mode.average_session_duration.total_seconds() / 60:.1f} minutes",
            "",
            "Current Session:",
            f"  Crashes: {session.crashes_this_session}",
            f"  Recovery Attempts: {session.recovery_attempts_this_session}",
            f"  Safe Mode Usages: {session.safe_mode_usages_this_session}",
        ]
        if self.failure_patterns.recurring_issues:
            lines.append("")
            lines.append("Recurring Issues:")
            for issue in self.failure_patterns.recurring_issues:
                lines.append(f"  {issue.cause_type} in {issue.component} ({issue.frequency}x)")
        return "\n".join(lines) + "\n"


class HealthStatus(BaseModel):
    """Application health status."""
    status: str
    safe_mode_active: bool
    database_connected: bool
    crash_log_watched: bool
    last_validation_valid: Optional[bool] = None
    crashes_recorded: int = 0


class StartupOutcome(BaseModel):
    """Result of one guarded startup sequence."""
    validation: ValidationResult
    safe_mode: SafeModeStatus
    recovery_results: List[RecoveryResult] = Field(default_factory=list)
    previous_startup_crash: Optional[CrashReport] = None

    @property
    def recovered_count(self) -> int:
        return sum(1 for result in self.recovery_results if result.outcome == RecoveryOutcome.RECOVERED)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.recovery_results if result.outcome == RecoveryOutcome.FAILED)
