"""Startup validation of directories, configuration, dependencies, services and resources."""

import asyncio
import importlib.util
import json
import logging
import sys
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .catalog import (
    BUNDLED_RESOURCES,
    CONFIG_FILES,
    ESSENTIAL_SERVICES,
    MIN_PYTHON,
    NON_ESSENTIAL_SERVICES,
    OPTIONAL_MODULES,
    REQUIRED_MODULES,
    RESOURCE_ROOT,
    AppData,
    AppSettings,
    parse_configuration,
    required_directories,
)
from .file_system import FileSystem
from .models import Severity, ValidationIssue, ValidationResult, utc_now
from .services import ServiceRegistry, ServiceUnavailableError

logger = logging.getLogger(__name__)

VALID_THEMES = {"Dark", "Light"}
VALID_THEME_MODES = {"Light", "Dark", "System"}
MIN_WINDOW_WIDTH = 200
MIN_WINDOW_HEIGHT = 100

IssueList = List[ValidationIssue]


class StartupValidator:
    """Runs independent environment checks and reports every defect as an issue."""

    def __init__(self,
                 app_data_path: Path,
                 file_system: Optional[FileSystem] = None,
                 registry: Optional[ServiceRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 required_modules: Sequence[str] = REQUIRED_MODULES,
                 optional_modules: Sequence[str] = OPTIONAL_MODULES,
                 min_python: Tuple[int, int] = MIN_PYTHON,
                 resource_root: Path = RESOURCE_ROOT):
        self.app_data_path = Path(app_data_path)
        self.file_system = file_system or FileSystem()
        self.registry = registry
        self.clock = clock or utc_now
        self.required_modules = tuple(required_modules)
        self.optional_modules = tuple(optional_modules)
        self.min_python = tuple(min_python)
        self.resource_root = Path(resource_root)

    def _run(self, component: str, check: Callable[[IssueList], None]) -> ValidationResult:
        started_at = self.clock()
        start = time.perf_counter()
        issues: IssueList = []
        try:
            check(issues)
        except Exception as e:
            logger.error(f"{component} validation failed unexpectedly: {e}")
            issues.append(ValidationIssue.from_exception(
                component, e, severity=Severity.CRITICAL,
                suggested_action="Inspect the application log for details",
            ))
        duration = timedelta(seconds=time.perf_counter() - start)
        detected_at = self.clock()
        issues = [issue.model_copy(update={"detected_at": detected_at}) for issue in issues]
        result = ValidationResult(component=component, started_at=started_at,
                                  duration=duration, issues=issues)
        logger.debug(result.to_detailed_string())
        return result

    # Directories

    def validate_directories(self) -> ValidationResult:
        return self._run("Directories", self._check_directories)

    def _check_directories(self, issues: IssueList):
        fs = self.file_system
        for directory in required_directories(self.app_data_path):
            if fs.directory_exists(directory):
                continue
            try:
                fs.create_directory(directory)
            except OSError as e:
                logger.error(f"Cannot create directory {directory}: {e}")
                issues.append(ValidationIssue.critical(
                    "Directories",
                    f"Required directory {directory} is missing and could not be created: {e}",
                    "Check folder permissions for the application data location",
                ))
                return
            logger.info(f"Created missing directory: {directory}")
            issues.append(ValidationIssue.warning(
                "Directories",
                f"Required directory {directory} was missing and has been created",
            ))

        if not fs.is_writable(self.app_data_path):
            issues.append(ValidationIssue.critical(
                "Directories",
                f"Application data directory {self.app_data_path} is not writable",
                "Check folder permissions for the application data location",
            ))

        temp_dir = tempfile.gettempdir()
        if not fs.is_writable(temp_dir):
            issues.append(ValidationIssue.warning(
                "Directories",
                f"Temporary directory {temp_dir} is not writable",
                "Free disk space or fix permissions on the temporary directory",
            ))

        if not issues:
            issues.append(ValidationIssue.information(
                "Directories", "All required directories exist and are writable"))

    # Configuration

    def validate_configuration(self) -> ValidationResult:
        return self._run("Configuration", self._check_configuration)

    def _check_configuration(self, issues: IssueList):
        fs = self.file_system
        for spec in CONFIG_FILES:
            path = self.app_data_path / spec.name
            if not fs.file_exists(path):
                issues.append(ValidationIssue.warning(
                    "Configuration",
                    f"{spec.label} file {spec.name} does not exist",
                    "A default file will be created during recovery",
                ))
                continue

            unparseable_severity = Severity.CRITICAL if spec.critical else Severity.ERROR
            try:
                content = fs.read_text(path)
            except UnicodeDecodeError as e:
                issues.append(ValidationIssue.from_exception(
                    "Configuration", e, severity=unparseable_severity,
                    suggested_action=f"Restore {spec.name} from backup or reset it to defaults",
                ))
                continue
            except OSError as e:
                logger.error(f"Cannot read {path}: {e}")
                issues.append(ValidationIssue.error(
                    "Configuration",
                    f"{spec.label} file {spec.name} could not be read: {e}",
                    "Check file permissions",
                ))
                continue

            if not content.strip():
                issues.append(ValidationIssue.warning(
                    "Configuration",
                    f"{spec.label} file {spec.name} is empty",
                    "A default file will be created during recovery",
                ))
                continue

            try:
                parsed = parse_configuration(spec.name, content)
            except ValueError as e:
                issues.append(ValidationIssue(
                    component="Configuration",
                    severity=unparseable_severity,
                    description=f"{spec.label} file {spec.name} is corrupted: {e}",
                    suggested_action=f"Restore {spec.name} from backup or reset it to defaults",
                ))
                continue

            if isinstance(parsed, AppData):
                self._check_settings(spec.name, parsed.app_settings, issues)
            elif isinstance(parsed, AppSettings):
                self._check_settings(spec.name, parsed, issues)

        if not issues:
            issues.append(ValidationIssue.information(
                "Configuration", "All configuration files are valid"))

    def _check_settings(self, file_name: str, settings: AppSettings, issues: IssueList):
        def out_of_range(description: str):
            issues.append(ValidationIssue.warning(
                "Configuration", f"{file_name}: {description}", "Reset the setting to its default value"))

        if not 0.2 <= settings.default_opacity <= 1.0:
            out_of_range(f"opacity {settings.default_opacity} is outside 0.2-1.0")
        if not 8 <= settings.default_font_size <= 72:
            out_of_range(f"font size {settings.default_font_size} is outside 8-72")
        if settings.theme not in VALID_THEMES:
            out_of_range(f"unknown theme '{settings.theme}'")
        if settings.theme_mode not in VALID_THEME_MODES:
            out_of_range(f"unknown theme mode '{settings.theme_mode}'")
        if settings.default_width < MIN_WINDOW_WIDTH or settings.default_height < MIN_WINDOW_HEIGHT:
            out_of_range(
                f"window size {settings.default_width}x{settings.default_height} "
                f"is below {MIN_WINDOW_WIDTH}x{MIN_WINDOW_HEIGHT}"
            )

    # Dependencies

    def validate_dependencies(self) -> ValidationResult:
        return self._run("Dependencies", self._check_dependencies)

    def _check_dependencies(self, issues: IssueList):
        running = sys.version_info[:2]
        if running < self.min_python:
            required = ".".join(str(part) for part in self.min_python)
            issues.append(ValidationIssue.error(
                "Dependencies",
                f"Python {running[0]}.{running[1]} is older than the required {required}",
                f"Install Python {required} or newer",
            ))

        for name in self.required_modules:
            if not self._module_available(name):
                issues.append(ValidationIssue.error(
                    "Dependencies",
                    f"Required module '{name}' is not installed",
                    f"Install the '{name}' package",
                ))

        for name in self.optional_modules:
            if not self._module_available(name):
                issues.append(ValidationIssue.warning(
                    "Dependencies",
                    f"Optional module '{name}' is not installed",
                    f"Install the '{name}' package to enable related features",
                ))

        if not issues:
            issues.append(ValidationIssue.information(
                "Dependencies", "Runtime and all required modules are available"))

    @staticmethod
    def _module_available(name: str) -> bool:
        try:
            return importlib.util.find_spec(name) is not None
        except (ImportError, ValueError) as e:
            logger.debug(f"Module lookup for {name} failed: {e}")
            return False

    # Services

    def validate_services(self) -> ValidationResult:
        return self._run("Services", self._check_services)

    def _check_services(self, issues: IssueList):
        if self.registry is None:
            issues.append(ValidationIssue.information(
                "Services", "No service registry available; service validation skipped"))
            return

        for name in ESSENTIAL_SERVICES:
            problem = self._service_problem(name)
            if problem:
                issues.append(ValidationIssue.critical(
                    "Services",
                    f"Essential service '{name}' {problem}",
                    "Check critical service registration and initialization order",
                ))

        for name in NON_ESSENTIAL_SERVICES:
            problem = self._service_problem(name)
            if problem:
                issues.append(ValidationIssue.warning(
                    "Services",
                    f"Optional service '{name}' {problem}",
                    "The related feature will be unavailable",
                ))

        if not issues:
            issues.append(ValidationIssue.information("Services", "All services resolved"))

    def _service_problem(self, name: str) -> Optional[str]:
        try:
            service = self.registry.resolve(name)
        except ServiceUnavailableError:
            return "is not registered"
        except Exception as e:
            logger.error(f"Resolving service {name} failed: {e}")
            return f"failed to resolve: {e}"
        if service is None:
            return "resolved to nothing"
        if ServiceRegistry.is_disposed(service):
            return "has already been disposed"
        return None

    # Resources

    def validate_resources(self) -> ValidationResult:
        return self._run("Resources", self._check_resources)

    def _check_resources(self, issues: IssueList):
        for resource in BUNDLED_RESOURCES:
            path = self.resource_root / resource.relative_path
            problem = self._resource_problem(path)
            if problem is None:
                continue
            if resource.critical:
                issues.append(ValidationIssue.error(
                    "Resources", f"Resource {resource.relative_path} {problem}",
                    "Reinstall the application to restore bundled resources",
                ))
            else:
                issues.append(ValidationIssue.warning(
                    "Resources", f"Resource {resource.relative_path} {problem}",
                    "Built-in fallback values will be used",
                ))

        if not issues:
            issues.append(ValidationIssue.information("Resources", "All bundled resources loaded"))

    def _resource_problem(self, path: Path) -> Optional[str]:
        if not self.file_system.file_exists(path):
            return "is missing"
        try:
            data = json.loads(self.file_system.read_text(path))
        except (OSError, ValueError) as e:
            return f"could not be loaded: {e}"
        if not isinstance(data, dict) or not data:
            return "is empty or not a JSON object"
        return None

    # Aggregate

    def _categories(self) -> List[Callable[[], ValidationResult]]:
        return [
            self.validate_directories,
            self.validate_configuration,
            self.validate_dependencies,
            self.validate_services,
            self.validate_resources,
        ]

    def validate_each(self) -> List[ValidationResult]:
        return [check() for check in self._categories()]

    def validate_all(self) -> ValidationResult:
        """Run every category in sequence and return the combined result."""
        started_at = self.clock()
        start = time.perf_counter()
        results = self.validate_each()
        return self._combine(results, started_at, start)

    async def validate_all_async(self) -> ValidationResult:
        """Run every category concurrently in worker threads."""
        started_at = self.clock()
        start = time.perf_counter()
        results = await asyncio.gather(*(asyncio.to_thread(check) for check in self._categories()))
        return self._combine(list(results), started_at, start)

    def _combine(self, results: List[ValidationResult], started_at: datetime, start: float) -> ValidationResult:
        duration = timedelta(seconds=time.perf_counter() - start)
        combined = ValidationResult.combine("StartupValidator", results, started_at, duration)
        critical = len(combined.issues_with(Severity.CRITICAL))
        errors = len(combined.issues_with(Severity.ERROR))
        if combined.is_valid:
            logger.info(f"Startup validation passed ({errors} errors, {len(combined.issues)} issues)")
        else:
            logger.warning(f"Startup validation failed with {critical} critical issues")
        return combined
