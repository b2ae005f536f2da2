"""Optional lookup-by-name service registry."""

import logging
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ServiceUnavailableError(LookupError):
    """Raised when a required capability cannot be resolved."""

    def __init__(self, name: str, reason: str = "not registered"):
        super().__init__(f"Service '{name}' is unavailable: {reason}")
        self.name = name
        self.reason = reason


class ServiceRegistry:
    """Maps capability names to live service objects."""

    def __init__(self, services: Optional[Dict[str, Any]] = None):
        self._services: Dict[str, Any] = dict(services or {})
        self._lock = threading.Lock()

    def register(self, name: str, service: Any):
        with self._lock:
            self._services[name] = service
        logger.debug(f"Registered service {name}")

    def unregister(self, name: str) -> bool:
        with self._lock:
            removed = name in self._services
            self._services.pop(name, None)
        if removed:
            logger.debug(f"Unregistered service {name}")
        return removed

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._services

    def names(self) -> List[str]:
        with self._lock:
            return list(self._services)

    def resolve(self, name: str) -> Any:
        """Return the service registered under ``name`` (may be ``None``)."""
        with self._lock:
            if name not in self._services:
                raise ServiceUnavailableError(name)
            return self._services[name]

    @staticmethod
    def is_disposed(service: Any) -> bool:
        """A service counts as torn down when it reports itself disposed or closed."""
        return bool(getattr(service, "disposed", False) or getattr(service, "closed", False))
