"""Safe mode state machine and activation heuristics."""

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .catalog import ESSENTIAL_SERVICES, NON_ESSENTIAL_SERVICES
from .models import SafeModeConfig, SafeModeStatus, SafeModeUsage, Severity, ValidationIssue, utc_now
from .services import ServiceRegistry

logger = logging.getLogger(__name__)

ERROR_THRESHOLD = 3

HIGH_RISK_PATTERNS = tuple(re.compile(phrase, re.IGNORECASE) for phrase in (
    r"service initialization",
    r"dependency injection",
    r"configuration corruption",
    r"resource loading",
    r"critical service",
))


def should_activate(issues: Sequence[ValidationIssue]) -> bool:
    """Decide whether the given issues warrant safe mode. No side effects."""
    if any(issue.severity == Severity.CRITICAL for issue in issues):
        return True
    if sum(1 for issue in issues if issue.severity == Severity.ERROR) >= ERROR_THRESHOLD:
        return True
    return any(pattern.search(issue.description)
               for issue in issues for pattern in HIGH_RISK_PATTERNS)


class SafeModeController:
    """Owns the single SafeModeConfig of the process.

    Transitions swap the whole config object under a lock, so concurrent
    readers see either the old or the new state.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 state_path: Optional[Path] = None):
        self.clock = clock or utc_now
        self.state_path = Path(state_path) if state_path else None
        self._lock = threading.Lock()
        self._config = self._load_state()
        self._session: Optional[SafeModeUsage] = None
        self._last_session: Optional[SafeModeUsage] = None
        if self._config.enabled:
            self._session = SafeModeUsage(entry_reason=self._config.reason,
                                          start_time=self._config.activated_at or self.clock())

    def _load_state(self) -> SafeModeConfig:
        if self.state_path is None or not self.state_path.exists():
            return SafeModeConfig()
        try:
            config = SafeModeConfig.model_validate_json(self.state_path.read_text(encoding="utf-8"))
            logger.info(f"Loaded safe mode state from {self.state_path} (enabled={config.enabled})")
            return config
        except Exception as e:
            logger.error(f"Could not load safe mode state from {self.state_path}: {e}")
            return SafeModeConfig()

    def _save_state(self, config: SafeModeConfig):
        if self.state_path is None:
            return
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except Exception as e:
            logger.error(f"Could not save safe mode state to {self.state_path}: {e}")

    @property
    def config(self) -> SafeModeConfig:
        with self._lock:
            return self._config

    @property
    def is_active(self) -> bool:
        return self.config.enabled

    @property
    def last_session(self) -> Optional[SafeModeUsage]:
        with self._lock:
            return self._last_session

    should_activate = staticmethod(should_activate)

    def activate(self, reason: str, issues: Iterable[ValidationIssue] = ()):
        """Enter safe mode; re-activating refreshes the reason and activation time."""
        now = self.clock()
        config = SafeModeConfig.for_reason(reason, now, list(issues))
        with self._lock:
            self._config = config
            if self._session is None:
                self._session = SafeModeUsage(entry_reason=reason, start_time=now)
            self._save_state(config)
        logger.warning(f"Safe mode activated: {reason}")

    def deactivate(self, exit_reason: Optional[str] = None,
                   normal_startup_successful: Optional[bool] = None) -> bool:
        """Return to normal mode; ``False`` when safe mode was not active."""
        with self._lock:
            if not self._config.enabled:
                return False
            self._config = SafeModeConfig()
            if self._session is not None:
                self._last_session = self._session.model_copy(update={
                    "end_time": self.clock(),
                    "exit_reason": exit_reason or "Deactivated",
                    "attempted_normal_startup": normal_startup_successful is not None,
                    "normal_startup_successful": normal_startup_successful,
                })
                self._session = None
            self._save_state(self._config)
        logger.info(f"Safe mode deactivated: {exit_reason or 'Deactivated'}")
        return True

    @staticmethod
    def get_essential_services() -> List[str]:
        return list(ESSENTIAL_SERVICES)

    @staticmethod
    def get_non_essential_services() -> List[str]:
        return list(NON_ESSENTIAL_SERVICES)

    def configure_minimal_services(self, registry: ServiceRegistry) -> List[str]:
        """Unbind non-essential services while active; returns essential names that are missing."""
        if not self.is_active:
            return []
        for name in NON_ESSENTIAL_SERVICES:
            if registry.unregister(name):
                logger.info(f"Safe mode disabled service: {name}")
        missing = [name for name in ESSENTIAL_SERVICES if not registry.is_registered(name)]
        for name in missing:
            logger.warning(f"Essential service missing in safe mode: {name}")
        return missing

    def get_safe_mode_status(self) -> SafeModeStatus:
        config = self.config
        if not config.enabled:
            return SafeModeStatus(is_active=False)
        return SafeModeStatus(
            is_active=True,
            reason=config.reason,
            activated_at=config.activated_at,
            disabled_services=list(NON_ESSENTIAL_SERVICES),
            triggering_issues=[str(issue) for issue in config.triggering_issues],
            configuration_reset=config.use_default_settings,
        )
