"""Immediate crash analysis report for operators."""

import getpass
import logging
import os
import platform
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import psutil

from .catalog import CONFIG_FILES, parse_configuration
from .crash_classifier import Fault, classify, group_similar_crashes, suggest_recovery_actions
from .crash_log import CrashLogReader
from .models import utc_now
from .startup_marker import StartupMarker

logger = logging.getLogger(__name__)

MAX_CRASHES_SHOWN = 5
MAX_SUGGESTIONS_SHOWN = 3


def _data_directory_lines(app_data_path: Path) -> List[str]:
    if not app_data_path.is_dir():
        return [f"[WARN] Data directory does not exist: {app_data_path}"]
    lines = [f"[OK] Data directory exists: {app_data_path}"]
    try:
        with tempfile.NamedTemporaryFile(dir=app_data_path, prefix="write-test", suffix=".tmp"):
            pass
        lines.append("[OK] Can write to data directory")
    except OSError as e:
        lines.append(f"[FAIL] Cannot write to data directory: {e}")
    return lines


def _configuration_lines(app_data_path: Path) -> List[str]:
    lines = []
    for spec in CONFIG_FILES:
        path = app_data_path / spec.name
        if not path.exists():
            lines.append(f"[INFO] {spec.name} does not exist (will be created on first run)")
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            lines.append(f"[FAIL] Cannot read {spec.name}: {e}")
            continue
        if not content.strip():
            lines.append(f"[WARN] {spec.name} exists but is empty")
            continue
        try:
            parse_configuration(spec.name, content)
            lines.append(f"[OK] {spec.name} exists and is valid")
        except ValueError:
            lines.append(f"[FAIL] {spec.name} exists but is not valid")
    return lines


def _system_lines() -> List[str]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    memory_mb = psutil.Process().memory_info().rss // (1024 * 1024)
    return [
        f"OS: {platform.platform()}",
        f"Python: {platform.python_implementation()} {platform.python_version()}",
        f"Machine: {platform.node()}",
        f"User: {user}",
        f"Memory: {memory_mb} MB",
        f"Processor Count: {os.cpu_count()}",
    ]


def build_crash_analysis(app_data_path: Path,
                         reader: CrashLogReader,
                         marker: StartupMarker,
                         hours_back: int = 24,
                         clock: Optional[Callable[[], datetime]] = None) -> str:
    """Render a text report of recent crashes, the system and the data directory."""
    clock = clock or utc_now
    app_data_path = Path(app_data_path)
    lines = [
        "=== Startup Guard Crash Analysis ===",
        f"Analysis Time: {clock():%Y-%m-%d %H:%M:%S}",
        "",
    ]

    try:
        previous = marker.check_previous_startup()
        if previous is not None:
            lines.append(f"[WARN] Previous startup crash detected in {previous.component}")
        else:
            lines.append("[OK] No previous startup crash detected")
        lines.append("")

        lines.append("--- Recent Crashes from Crash Log ---")
        crashes = reader.read_recent_crashes(hours_back)
        if crashes:
            groups = group_similar_crashes(crashes)
            lines.append(f"Found {len(crashes)} crash(es) in {len(groups)} group(s) "
                         f"in the last {hours_back} hours:")
            lines.append("")
            for crash in crashes[:MAX_CRASHES_SHOWN]:
                fault = Fault.from_crash_report(crash)
                lines.append(f"Crash at {crash.timestamp:%Y-%m-%d %H:%M:%S}")
                lines.append(f"   Exception: {crash.cause_type}")
                lines.append(f"   Component: {crash.component}")
                lines.append(f"   Message: {crash.message}")
                lines.append(f"   Likely Cause: {classify(fault)}")
                lines.append("   Suggested Actions:")
                for suggestion in suggest_recovery_actions(fault)[:MAX_SUGGESTIONS_SHOWN]:
                    lines.append(f"     - {suggestion}")
                lines.append("")
        else:
            lines.append(f"[OK] No crashes found in crash log (last {hours_back} hours)")

        lines.append("")
        lines.append("--- System Information ---")
        lines.extend(_system_lines())

        lines.append("")
        lines.append("--- Basic System Checks ---")
        lines.extend(_data_directory_lines(app_data_path))
        lines.extend(_configuration_lines(app_data_path))
    except Exception as e:
        logger.error(f"Crash analysis failed: {e}")
        lines.append(f"[FAIL] Error during crash analysis: {e}")

    return "\n".join(lines)
