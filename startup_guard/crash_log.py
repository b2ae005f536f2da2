"""Reading and watching the host application's crash log."""

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel, Field
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .models import CrashReport, utc_now

logger = logging.getLogger(__name__)

CRASH_LEVELS = {"ERROR", "CRITICAL", "FATAL"}

# 2024-01-15 10:30:00.123 ERROR (MainThread) [startup_guard.storage] message
LOG_PATTERN = re.compile(
    r'(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:[.,]\d{1,6})?)\s+'  # timestamp with optional fraction
    r'([A-Z]+)\s+'                                                  # log level
    r'(?:\(([^)]+)\)\s+)?'                                          # optional thread
    r'(?:\[([^\]]+)\]\s+)?'                                         # optional component
    r'(.*)'                                                         # message
)

# 2024-01-15 10:30:00,123 - startup_guard.storage - ERROR - message
PYTHON_LOG_PATTERN = re.compile(
    r'(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:[.,]\d{1,6})?)\s+-\s+'
    r'(\S+)\s+-\s+'
    r'([A-Z]+)\s+-\s+'
    r'(.*)'
)

EXCEPTION_LINE_PATTERN = re.compile(r'^([A-Za-z_][\w.]*(?:Error|Exception|Exit|Interrupt|Warning))(?::\s*(.*))?$')
EXCEPTION_NAME_PATTERN = re.compile(r'\b([A-Za-z_][\w.]*(?:Error|Exception))\b')
TRACEBACK_FILE_PATTERN = re.compile(r'File "([^"]+)"')


class LogEntry(BaseModel):
    """One parsed log record with any continuation lines."""
    timestamp: datetime
    level: str
    thread: Optional[str] = None
    component: Optional[str] = None
    message: str
    continuation: List[str] = Field(default_factory=list)


def _parse_timestamp(timestamp_str: str) -> datetime:
    """Parse a local-time log timestamp into aware UTC."""
    normalized = timestamp_str.replace(",", ".").replace("T", " ")
    if "." in normalized:
        parsed = datetime.strptime(normalized, "%Y-%m-%d %H:%M:%S.%f")
    else:
        parsed = datetime.strptime(normalized, "%Y-%m-%d %H:%M:%S")
    return parsed.astimezone(timezone.utc)


def parse_log_line(line: str) -> Optional[LogEntry]:
    """Parse the first line of a log record; ``None`` for continuation lines."""
    match = PYTHON_LOG_PATTERN.match(line)
    if match:
        timestamp_str, component, level, message = match.groups()
        return LogEntry(timestamp=_parse_timestamp(timestamp_str), level=level,
                        component=component, message=message.strip())

    match = LOG_PATTERN.match(line)
    if match:
        timestamp_str, level, thread, component, message = match.groups()
        return LogEntry(timestamp=_parse_timestamp(timestamp_str), level=level,
                        thread=thread, component=component, message=message.strip())
    return None


def parse_log_entries(lines: List[str]) -> List[LogEntry]:
    """Group raw lines into entries; unmatched lines attach to the preceding entry."""
    entries: List[LogEntry] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        try:
            entry = parse_log_line(line)
        except ValueError as e:
            logger.debug(f"Failed to parse log line: {line} - {e}")
            entry = None
        if entry is not None:
            entries.append(entry)
        elif entries:
            entries[-1].continuation.append(line)
    return entries


class CrashLogReader:
    """Best-effort, time-windowed reader of crash entries. Never writes to the log."""

    def __init__(self, log_file_path: Path, app_name: str = "startup_guard",
                 clock: Optional[Callable[[], datetime]] = None):
        self.log_file_path = Path(log_file_path)
        self.app_name = app_name.lower()
        self.clock = clock or utc_now

    def is_application_entry(self, entry: LogEntry) -> bool:
        if entry.level.upper() not in CRASH_LEVELS:
            return False
        haystack = " ".join([entry.component or "", entry.message, *entry.continuation]).lower()
        return self.app_name in haystack

    def to_crash_report(self, entry: LogEntry) -> CrashReport:
        cause_type = "LoggedError"
        message = entry.message
        for line in reversed(entry.continuation):
            match = EXCEPTION_LINE_PATTERN.match(line.strip())
            if match:
                cause_type = match.group(1)
                message = match.group(2) or entry.message
                break
        else:
            match = EXCEPTION_NAME_PATTERN.search(entry.message)
            if match:
                cause_type = match.group(1)

        return CrashReport(
            timestamp=entry.timestamp,
            cause_type=cause_type,
            message=message,
            stack_summary="\n".join(entry.continuation),
            component=entry.component or self._component_from_traceback(entry),
            context={"source": str(self.log_file_path), "level": entry.level,
                     **({"thread": entry.thread} if entry.thread else {})},
        )

    def _component_from_traceback(self, entry: LogEntry) -> str:
        for line in reversed(entry.continuation):
            match = TRACEBACK_FILE_PATTERN.search(line)
            if match and self.app_name in match.group(1).lower():
                return Path(match.group(1)).stem
        return "Unknown"

    def crash_reports_from_lines(self, lines: List[str]) -> List[CrashReport]:
        return [self.to_crash_report(entry) for entry in parse_log_entries(lines)
                if self.is_application_entry(entry)]

    def read_recent_crashes(self, hours_back: int = 24) -> List[CrashReport]:
        """Crash reports from the last ``hours_back`` hours, newest first."""
        if hours_back <= 0:
            return []
        if not self.log_file_path.exists():
            return []

        try:
            with open(self.log_file_path, "r", encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            logger.error(f"Error reading crash log {self.log_file_path}: {e}")
            return [CrashReport(
                timestamp=self.clock(),
                cause_type="CrashLogAccessError",
                message=f"Could not read crash log {self.log_file_path}: {e}",
                component="CrashLogReader",
            )]

        cutoff = self.clock() - timedelta(hours=hours_back)
        reports = [r for r in self.crash_reports_from_lines(lines) if r.timestamp >= cutoff]
        reports.sort(key=lambda r: r.timestamp, reverse=True)
        return reports


class CrashLogFileHandler(FileSystemEventHandler):
    """File system event handler for crash log changes."""

    def __init__(self, watcher: "CrashLogWatcher"):
        self.watcher = watcher

    def on_modified(self, event):
        if not event.is_directory and Path(event.src_path).resolve() == self.watcher.log_file_path.resolve():
            self.watcher.process_new_lines()


class CrashLogWatcher:
    """Tails the crash log and hands each new crash report to ``callback``.

    The callback runs on the watchdog observer thread.
    """

    def __init__(self, reader: CrashLogReader, callback: Callable[[CrashReport], None]):
        self.reader = reader
        self.callback = callback
        self.observer = None
        self.last_position = 0

    @property
    def log_file_path(self) -> Path:
        return self.reader.log_file_path

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self) -> bool:
        """Start watching; returns ``False`` when the log directory does not exist."""
        if not self.log_file_path.parent.exists():
            logger.warning(f"Crash log directory not found: {self.log_file_path.parent}")
            return False

        self.last_position = self.log_file_path.stat().st_size if self.log_file_path.exists() else 0

        self.observer = Observer()
        self.observer.schedule(CrashLogFileHandler(self), str(self.log_file_path.parent), recursive=False)
        self.observer.start()
        logger.info(f"Started watching crash log: {self.log_file_path}")
        return True

    def stop(self):
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info("Stopped crash log watching")

    def process_new_lines(self) -> int:
        """Read lines appended since the last call; returns the number of crashes reported."""
        try:
            current_size = self.log_file_path.stat().st_size
            if current_size < self.last_position:
                # File was truncated or rotated
                self.last_position = 0
            if current_size == self.last_position:
                return 0

            with open(self.log_file_path, "r", encoding="utf-8", errors="replace") as f:
                f.seek(self.last_position)
                new_lines = f.readlines()
                self.last_position = f.tell()
        except OSError as e:
            logger.error(f"Error reading new crash log lines: {e}")
            return 0

        reports = self.reader.crash_reports_from_lines(new_lines)
        for report in reports:
            try:
                self.callback(report)
            except Exception as e:
                logger.warning(f"Crash log callback failed for {report.cause_type}: {e}")
        return len(reports)
