"""Main application entry point for Startup Guard."""

import asyncio
import logging
import os
import signal
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import uvicorn

from . import __version__
from .analytics import CrashAnalyticsStore
from .catalog import LOGS_DIR_NAME, SAFE_MODE_FILE_NAME, STARTUP_MARKER_FILE_NAME
from .crash_log import CrashLogReader, CrashLogWatcher
from .database import Database
from .diagnostics import build_crash_analysis
from .file_system import FileSystem
from .models import (
    CrashReport,
    RecoveryAttempt,
    SafeModeUsage,
    Severity,
    StartupOutcome,
    ValidationResult,
    utc_now,
)
from .recovery import RecoveryManager, recovery_attempts_for
from .safe_mode import SafeModeController
from .services import ServiceRegistry
from .startup_marker import StartupMarker
from .validator import StartupValidator
from .web_interface import WebInterface

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def load_config() -> dict:
    """Configuration from environment variables."""
    app_data_path = Path(os.getenv("APP_DATA_PATH", str(Path.home() / ".startup_guard"))).expanduser()
    return {
        "app_data_path": app_data_path,
        "database_path": os.getenv("DATABASE_PATH", str(app_data_path / "analytics.db")),
        "crash_log_path": Path(os.getenv("CRASH_LOG_PATH", str(app_data_path / LOGS_DIR_NAME / "application.log"))),
        "app_name": os.getenv("APP_NAME", "startup_guard"),
        "app_version": os.getenv("APP_VERSION", __version__),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "web_port": int(os.getenv("WEB_PORT", 8080)),
        "analytics_retention_days": int(os.getenv("ANALYTICS_RETENTION_DAYS", 30)),
        "watch_crash_log": os.getenv("WATCH_CRASH_LOG", "true").lower() == "true",
    }


class StartupGuardApp:
    """Main application class wiring validation, recovery, safe mode and analytics together."""

    def __init__(self, config: Optional[dict] = None,
                 registry: Optional[ServiceRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config or load_config()
        self.clock = clock or utc_now
        app_data_path = Path(self.config["app_data_path"])

        self.file_system = FileSystem()
        self.registry = registry
        self.validator = StartupValidator(app_data_path, file_system=self.file_system,
                                          registry=registry, clock=self.clock)
        self.recovery = RecoveryManager(app_data_path, file_system=self.file_system, clock=self.clock)
        self.safe_mode = SafeModeController(clock=self.clock, state_path=app_data_path / SAFE_MODE_FILE_NAME)
        self.analytics = CrashAnalyticsStore(clock=self.clock)
        self.crash_reader = CrashLogReader(self.config["crash_log_path"], app_name=self.config["app_name"],
                                           clock=self.clock)
        self.marker = StartupMarker(app_data_path / STARTUP_MARKER_FILE_NAME,
                                    file_system=self.file_system, clock=self.clock)

        self.database: Optional[Database] = None
        self.crash_watcher: Optional[CrashLogWatcher] = None
        self.web_interface: Optional[WebInterface] = None
        self.last_validation: Optional[ValidationResult] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False

    async def initialize(self):
        """Initialize persistence, load history and build the web interface."""
        logger.info("Initializing Startup Guard...")

        try:
            database = Database(self.config["database_path"])
            await database.initialize()
            self.analytics.restore(
                crashes=await database.get_crash_reports(),
                attempts=await database.get_recovery_attempts(),
                usages=await database.get_safe_mode_usages(),
            )
            self.database = database
        except Exception as e:
            logger.error(f"Analytics persistence unavailable, continuing in memory: {e}")
            self.database = None

        self.web_interface = WebInterface(self)
        logger.info("Application initialization complete")

    async def run_startup_sequence(self) -> StartupOutcome:
        """Check for a crashed startup, validate, decide safe mode and repair."""
        previous = self.marker.check_previous_startup()
        if previous is not None:
            await self.record_crash(previous)

        self.marker.mark_component("Validation")
        validation = await self.validator.validate_all_async()
        self.last_validation = validation
        activate = self.safe_mode.should_activate(validation.issues)

        self.marker.mark_component("Recovery")
        start = time.perf_counter()
        results = await asyncio.to_thread(self.recovery.perform_comprehensive_recovery)
        duration = timedelta(seconds=time.perf_counter() - start)
        for attempt in recovery_attempts_for(results, triggering_issue="Startup validation", duration=duration):
            await self.record_recovery_attempt(attempt)

        self.marker.mark_component("SafeMode")
        if activate:
            critical = len(validation.issues_with(Severity.CRITICAL))
            errors = len(validation.issues_with(Severity.ERROR))
            triggering = [i for i in validation.issues if i.severity >= Severity.ERROR]
            self.safe_mode.activate(
                f"Startup validation found {critical} critical and {errors} error issues", triggering)
            if self.registry is not None:
                self.safe_mode.configure_minimal_services(self.registry)
        elif self.safe_mode.is_active and validation.is_valid:
            self.safe_mode.deactivate(exit_reason="Startup validation passed", normal_startup_successful=True)
            if self.safe_mode.last_session is not None:
                await self.record_safe_mode_usage(self.safe_mode.last_session)

        self.marker.mark_complete()
        outcome = StartupOutcome(
            validation=validation,
            safe_mode=self.safe_mode.get_safe_mode_status(),
            recovery_results=results,
            previous_startup_crash=previous,
        )
        logger.info(f"Startup sequence complete: valid={validation.is_valid}, "
                    f"safe_mode={outcome.safe_mode.is_active}, recovered={outcome.recovered_count}, "
                    f"failed={outcome.failed_count}")
        return outcome

    async def record_crash(self, report: CrashReport):
        self.analytics.record_crash(report)
        if self.database:
            try:
                await self.database.store_crash_report(report)
            except Exception as e:
                logger.error(f"Error storing crash report: {e}")

    async def record_recovery_attempt(self, attempt: RecoveryAttempt):
        self.analytics.record_recovery_attempt(attempt)
        if self.database:
            try:
                await self.database.store_recovery_attempt(attempt)
            except Exception as e:
                logger.error(f"Error storing recovery attempt: {e}")

    async def record_safe_mode_usage(self, usage: SafeModeUsage):
        self.analytics.record_safe_mode_usage(usage)
        if self.database:
            try:
                await self.database.store_safe_mode_usage(usage)
            except Exception as e:
                logger.error(f"Error storing safe mode session: {e}")

    def _on_crash_logged(self, report: CrashReport):
        """Called on the watcher thread for each new crash log entry."""
        if self.loop is None:
            self.analytics.record_crash(report)
            return
        asyncio.run_coroutine_threadsafe(self.record_crash(report), self.loop)

    async def cleanup_old_data(self) -> dict:
        """Apply the retention period to the in-memory store and the database."""
        retention_days = self.config["analytics_retention_days"]
        removed = {"memory": self.analytics.cleanup_old_data(timedelta(days=retention_days)), "database": 0}
        if self.database:
            removed["database"] = await self.database.cleanup_old_records(retention_days, now=self.clock())
        return removed

    def analyze(self, hours_back: int = 24) -> str:
        return build_crash_analysis(Path(self.config["app_data_path"]), self.crash_reader, self.marker,
                                    hours_back=hours_back, clock=self.clock)

    async def start(self):
        """Start background services."""
        logger.info("Starting Startup Guard services...")
        self.running = True
        self.loop = asyncio.get_running_loop()

        if self.config["watch_crash_log"]:
            self.crash_watcher = CrashLogWatcher(self.crash_reader, self._on_crash_logged)
            if not self.crash_watcher.start():
                self.crash_watcher = None

        logger.info("All services started successfully")

    async def stop(self):
        """Stop all application services."""
        logger.info("Stopping Startup Guard services...")
        self.running = False

        if self.crash_watcher:
            self.crash_watcher.stop()
            self.crash_watcher = None

        logger.info("All services stopped")

    def run_web_server(self):
        """Run the web server."""
        uvicorn.run(
            self.web_interface.app,
            host="0.0.0.0",
            port=self.config["web_port"],
            log_level=self.config["log_level"].lower()
        )


# Global application instance
app_instance: Optional[StartupGuardApp] = None


async def main():
    """Main application entry point."""
    global app_instance

    try:
        app_instance = StartupGuardApp()
        await app_instance.initialize()
        await app_instance.run_startup_sequence()

        # Setup signal handlers for graceful shutdown
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            asyncio.create_task(shutdown())

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app_instance.start()

        # Run web server in a separate task
        web_task = asyncio.create_task(
            asyncio.to_thread(app_instance.run_web_server)
        )

        logger.info(f"Startup Guard is running on port {app_instance.config['web_port']}")

        # Setup periodic cleanup task
        last_cleanup = app_instance.clock()
        cleanup_interval = timedelta(hours=24)

        while app_instance.running:
            await asyncio.sleep(60)

            now = app_instance.clock()
            if now - last_cleanup >= cleanup_interval:
                try:
                    await app_instance.cleanup_old_data()
                    last_cleanup = now
                except Exception as e:
                    logger.error(f"Error during analytics cleanup: {e}")

        web_task.cancel()
        try:
            await web_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error(f"Application error: {e}")
        sys.exit(1)


async def shutdown():
    """Graceful shutdown handler."""
    if app_instance:
        await app_instance.stop()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
