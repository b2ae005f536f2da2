"""Web interface for the Startup Guard application."""

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from . import __version__
from .crash_classifier import Fault, classify, suggest_recovery_actions
from .models import (
    CrashAnalyticsReport,
    CrashReport,
    HealthStatus,
    RecoveryAction,
    RecoveryResult,
    SafeModeStatus,
    ValidationResult,
)
from .recovery import recovery_attempts_for

if TYPE_CHECKING:
    from .main import StartupGuardApp

logger = logging.getLogger(__name__)


class ActivateSafeModeRequest(BaseModel):
    reason: str = "Manual activation"


class DeactivateSafeModeRequest(BaseModel):
    exit_reason: str = "Manual deactivation"
    normal_startup_successful: Optional[bool] = None


class RecoveryPlan(BaseModel):
    actions: List[RecoveryAction]


class CrashDiagnosis(BaseModel):
    report: CrashReport
    likely_cause: str
    suggested_actions: List[str]


class WebInterface:
    """FastAPI web interface for the application."""

    def __init__(self, guard: "StartupGuardApp"):
        self.app = FastAPI(title="Startup Guard", version=__version__)
        self.guard = guard

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes."""
        guard = self.guard

        @self.app.get("/api/health")
        async def health_check() -> HealthStatus:
            """Get application health status."""
            db_connected = False
            if guard.database:
                try:
                    await guard.database.get_stats()
                    db_connected = True
                except Exception as e:
                    logger.warning(f"Database health check failed: {e}")

            safe_mode_active = guard.safe_mode.is_active
            last_valid = guard.last_validation.is_valid if guard.last_validation else None
            if safe_mode_active or last_valid is False:
                status = "degraded"
            else:
                status = "healthy"

            return HealthStatus(
                status=status,
                safe_mode_active=safe_mode_active,
                database_connected=db_connected,
                crash_log_watched=guard.crash_watcher is not None and guard.crash_watcher.is_running,
                last_validation_valid=last_valid,
                crashes_recorded=guard.analytics.crash_count,
            )

        @self.app.get("/api/validation")
        async def run_validation() -> ValidationResult:
            """Run every validation category."""
            try:
                result = await guard.validator.validate_all_async()
                guard.last_validation = result
                return result
            except Exception as e:
                logger.error(f"Error running validation: {e}")
                raise HTTPException(status_code=500, detail="Validation failed")

        @self.app.get("/api/safe-mode")
        async def get_safe_mode() -> SafeModeStatus:
            return guard.safe_mode.get_safe_mode_status()

        @self.app.post("/api/safe-mode/activate")
        async def activate_safe_mode(request: Optional[ActivateSafeModeRequest] = None) -> SafeModeStatus:
            request = request or ActivateSafeModeRequest()
            guard.safe_mode.activate(request.reason)
            if guard.registry is not None:
                guard.safe_mode.configure_minimal_services(guard.registry)
            return guard.safe_mode.get_safe_mode_status()

        @self.app.post("/api/safe-mode/deactivate")
        async def deactivate_safe_mode(request: Optional[DeactivateSafeModeRequest] = None) -> dict:
            request = request or DeactivateSafeModeRequest()
            changed = guard.safe_mode.deactivate(request.exit_reason, request.normal_startup_successful)
            if changed and guard.safe_mode.last_session is not None:
                await guard.record_safe_mode_usage(guard.safe_mode.last_session)
            return {"changed": changed, "status": guard.safe_mode.get_safe_mode_status()}

        @self.app.get("/api/recovery/plan")
        async def get_recovery_plan() -> RecoveryPlan:
            """Dry run of comprehensive recovery."""
            actions = await asyncio.to_thread(guard.recovery.identify_required_recovery_actions)
            return RecoveryPlan(actions=actions)

        @self.app.post("/api/recovery/run")
        async def run_recovery() -> List[RecoveryResult]:
            try:
                results = await asyncio.to_thread(guard.recovery.perform_comprehensive_recovery)
            except Exception as e:
                logger.error(f"Error during recovery: {e}")
                raise HTTPException(status_code=500, detail="Recovery failed")
            for attempt in recovery_attempts_for(results, triggering_issue="Manual recovery"):
                await guard.record_recovery_attempt(attempt)
            return results

        @self.app.post("/api/recovery/factory-reset")
        async def factory_reset() -> RecoveryResult:
            result = await asyncio.to_thread(guard.recovery.reset_to_factory_defaults)
            for attempt in recovery_attempts_for([result], triggering_issue="Manual factory reset"):
                await guard.record_recovery_attempt(attempt)
            return result

        @self.app.get("/api/analytics/report")
        async def get_analytics_report() -> CrashAnalyticsReport:
            try:
                return guard.analytics.generate_analytics_report()
            except Exception as e:
                logger.error(f"Error generating analytics report: {e}")
                raise HTTPException(status_code=500, detail="Failed to generate analytics report")

        @self.app.get("/api/analytics/summary", response_class=PlainTextResponse)
        async def get_analytics_summary() -> str:
            try:
                return guard.analytics.generate_analytics_report().get_summary()
            except Exception as e:
                logger.error(f"Error generating analytics summary: {e}")
                raise HTTPException(status_code=500, detail="Failed to generate analytics summary")

        @self.app.post("/api/analytics/cleanup")
        async def cleanup_analytics() -> dict:
            try:
                return {"removed": await guard.cleanup_old_data()}
            except Exception as e:
                logger.error(f"Error during analytics cleanup: {e}")
                raise HTTPException(status_code=500, detail="Cleanup failed")

        @self.app.get("/api/crashes/recent")
        async def get_recent_crashes(hours: int = 24) -> List[CrashDiagnosis]:
            """Recent crash log entries with their likely cause."""
            if guard.crash_reader is None:
                raise HTTPException(status_code=503, detail="Crash log reader not available")
            try:
                reports = await asyncio.to_thread(guard.crash_reader.read_recent_crashes, hours)
            except Exception as e:
                logger.error(f"Error reading crash log: {e}")
                raise HTTPException(status_code=500, detail="Failed to read crash log")

            diagnoses = []
            for report in reports:
                fault = Fault.from_crash_report(report)
                diagnoses.append(CrashDiagnosis(
                    report=report,
                    likely_cause=classify(fault),
                    suggested_actions=suggest_recovery_actions(fault),
                ))
            return diagnoses
