"""Marker file recording which component is starting, used to detect crashed startups."""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Tuple

from .file_system import FileSystem
from .models import CrashReport, utc_clock

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(minutes=5)


class StartupMarker:
    """A marker left behind by a startup that never completed means that startup crashed."""

    def __init__(self, marker_path: Path,
                 file_system: Optional[FileSystem] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.marker_path = Path(marker_path)
        self.file_system = file_system or FileSystem()
        self.clock = utc_clock(clock)

    def mark_component(self, component: str):
        """Record that ``component`` is starting now."""
        try:
            self.file_system.create_directory(self.marker_path.parent)
            self.file_system.write_text(self.marker_path, f"{self.clock().isoformat()}\n{component}\n")
        except OSError as e:
            logger.warning(f"Could not write startup marker {self.marker_path}: {e}")

    def mark_complete(self):
        try:
            self.file_system.delete_file(self.marker_path)
        except OSError as e:
            logger.warning(f"Could not remove startup marker {self.marker_path}: {e}")

    def _read(self) -> Optional[Tuple[datetime, str]]:
        if not self.file_system.file_exists(self.marker_path):
            return None
        lines = [line.strip() for line in self.file_system.read_text(self.marker_path).splitlines() if line.strip()]
        if len(lines) < 2:
            return None
        timestamp = datetime.fromisoformat(lines[0])
        return timestamp, lines[1]

    def check_previous_startup(self) -> Optional[CrashReport]:
        """Return a report when a stale marker shows the previous startup did not finish."""
        try:
            marker = self._read()
        except (OSError, ValueError) as e:
            logger.error(f"Could not check for previous startup crash: {e}")
            return None
        if marker is None:
            return None

        started_at, component = marker
        now = self.clock()
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=now.tzinfo)
        if now - started_at <= STALE_AFTER:
            return None

        logger.warning(f"Previous startup failed at {started_at:%Y-%m-%d %H:%M:%S} in component: {component}")
        return CrashReport(
            timestamp=started_at,
            cause_type="IncompleteStartup",
            message=f"Previous startup did not complete while starting {component}",
            component=component,
            context={"marker_path": str(self.marker_path)},
        )
