"""Rule-based classification of captured faults."""

import hashlib
import json
import logging
import platform
import re
import traceback
from collections import defaultdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Pattern, Tuple

import psutil
from pydantic import BaseModel, ConfigDict, ValidationError

from . import __version__
from .models import CrashReport, utc_now
from .services import ServiceUnavailableError

logger = logging.getLogger(__name__)

UNKNOWN_CAUSE = "Unknown cause - requires detailed investigation"
SAFE_MODE_ACTION = "Start application in safe mode"
FACTORY_RESET_ACTION = "Reset all configuration to factory defaults"


class FaultCategory(str, Enum):
    """Closed set of fault kinds produced at the capture boundary."""
    MISSING_FILE = "missing_file"
    MISSING_DIRECTORY = "missing_directory"
    PERMISSION_DENIED = "permission_denied"
    DATA_PARSE_FAILURE = "data_parse_failure"
    NULL_DEPENDENCY = "null_dependency"
    MEMORY_EXHAUSTION = "memory_exhaustion"
    MISSING_MODULE = "missing_module"
    UNKNOWN = "unknown"


class _Rule(NamedTuple):
    category: FaultCategory
    cause_type_pattern: Pattern[str]
    message_pattern: Pattern[str]
    cause: str
    actions: Tuple[str, ...]


# Priority order: the first matching rule wins in classify().
_RULES: Tuple[_Rule, ...] = (
    _Rule(
        category=FaultCategory.MISSING_FILE,
        cause_type_pattern=re.compile(r"filenotfound"),
        message_pattern=re.compile(r"file.*not found|no such file"),
        cause="Missing file - configuration, resource, or dependency file not found",
        actions=(
            "Create missing configuration files with default values",
            "Verify application installation integrity",
        ),
    ),
    _Rule(
        category=FaultCategory.MISSING_DIRECTORY,
        cause_type_pattern=re.compile(r"directorynotfound|notadirectory"),
        message_pattern=re.compile(r"directory.*not found|not a directory|could not find a part of the path"),
        cause="Missing directory - application data directory may not exist",
        actions=(
            "Create missing directory structure for application data",
            "Reset application data folder structure",
        ),
    ),
    _Rule(
        category=FaultCategory.PERMISSION_DENIED,
        cause_type_pattern=re.compile(r"permission|unauthorizedaccess|accessdenied"),
        message_pattern=re.compile(r"permission|access (is )?denied|unauthorized"),
        cause="Permission issue - insufficient rights to access file or directory",
        actions=(
            "Run application as an elevated user",
            "Check file and folder permissions",
            "Verify antivirus is not blocking the application",
        ),
    ),
    _Rule(
        category=FaultCategory.DATA_PARSE_FAILURE,
        cause_type_pattern=re.compile(r"json|decode|serializ|validationerror|parse"),
        message_pattern=re.compile(r"json|parse|deserializ|corrupt|invalid format"),
        cause="Configuration corrupted - invalid or unparseable configuration data",
        actions=(
            "Reset corrupted configuration files to defaults",
            "Backup and recreate application settings",
        ),
    ),
    _Rule(
        category=FaultCategory.NULL_DEPENDENCY,
        cause_type_pattern=re.compile(r"nullreference|argumentnull|serviceunavailable|nonetype"),
        message_pattern=re.compile(r"nonetype|null reference|not registered|unavailable|not initialized"),
        cause="Dependency/service issue - required service missing or not initialized",
        actions=(
            "Verify service registration and startup order",
            "Restart application to reinitialize services",
        ),
    ),
    _Rule(
        category=FaultCategory.MEMORY_EXHAUSTION,
        cause_type_pattern=re.compile(r"memoryerror|outofmemory"),
        message_pattern=re.compile(r"out of memory|insufficient memory|memory"),
        cause="Insufficient memory - possible memory leak or resource exhaustion",
        actions=(
            "Close other applications to free memory",
            "Restart application to release leaked memory",
        ),
    ),
    _Rule(
        category=FaultCategory.MISSING_MODULE,
        cause_type_pattern=re.compile(r"modulenotfound|importerror|assembly"),
        message_pattern=re.compile(r"no module named|cannot import|assembly"),
        cause="Missing module - required library is not installed or incompatible",
        actions=(
            "Reinstall application to restore missing dependencies",
            "Verify the Python environment matches the supported version",
        ),
    ),
)

_RULES_BY_CATEGORY: Dict[FaultCategory, _Rule] = {rule.category: rule for rule in _RULES}

_COMPONENT_HINTS: Tuple[Tuple[Pattern[str], Tuple[str, ...]], ...] = (
    (re.compile(r"hotkey"), (
        "Reset hotkey configuration to defaults",
        "Check for hotkey conflicts with other applications",
    )),
    (re.compile(r"cloud|sync"), (
        "Disable cloud sync temporarily",
        "Re-authenticate cloud storage provider",
    )),
    (re.compile(r"theme"), (
        "Reset theme to default",
        "Verify theme resource files are not corrupted",
    )),
    (re.compile(r"storage"), (
        "Check free disk space and storage permissions",
        "Restore notes from the most recent backup",
    )),
)


class Fault(BaseModel):
    """A captured fault reduced to its category and text."""
    model_config = ConfigDict(frozen=True)

    category: FaultCategory = FaultCategory.UNKNOWN
    cause_type: str = "Unknown"
    message: str = ""
    component: str = "Unknown"

    @classmethod
    def from_exception(cls, exc: BaseException, component: str = "Unknown") -> "Fault":
        return cls(
            category=_category_for_exception(exc),
            cause_type=type(exc).__name__,
            message=str(exc),
            component=component,
        )

    @classmethod
    def from_crash_report(cls, report: CrashReport) -> "Fault":
        cause_type = report.cause_type.lower()
        category = FaultCategory.UNKNOWN
        for rule in _RULES:
            if rule.cause_type_pattern.search(cause_type):
                category = rule.category
                break
        return cls(
            category=category,
            cause_type=report.cause_type,
            message=report.message,
            component=report.component,
        )


def _is_missing_parent(exc: BaseException) -> bool:
    filename = getattr(exc, "filename", None)
    if not filename:
        return False
    return not Path(str(filename)).parent.exists()


def _is_none_access(exc: BaseException) -> bool:
    return "'NoneType'" in str(exc)


# Ordered exception table consulted at the capture boundary.
_EXCEPTION_CATEGORIES: Tuple[Tuple[Callable[[BaseException], bool], FaultCategory], ...] = (
    (lambda e: isinstance(e, NotADirectoryError), FaultCategory.MISSING_DIRECTORY),
    (lambda e: isinstance(e, FileNotFoundError) and _is_missing_parent(e), FaultCategory.MISSING_DIRECTORY),
    (lambda e: isinstance(e, FileNotFoundError), FaultCategory.MISSING_FILE),
    (lambda e: isinstance(e, PermissionError), FaultCategory.PERMISSION_DENIED),
    (lambda e: isinstance(e, (json.JSONDecodeError, UnicodeDecodeError, ValidationError)),
     FaultCategory.DATA_PARSE_FAILURE),
    (lambda e: isinstance(e, ServiceUnavailableError), FaultCategory.NULL_DEPENDENCY),
    (lambda e: isinstance(e, (AttributeError, TypeError)) and _is_none_access(e), FaultCategory.NULL_DEPENDENCY),
    (lambda e: isinstance(e, MemoryError), FaultCategory.MEMORY_EXHAUSTION),
    (lambda e: isinstance(e, ImportError), FaultCategory.MISSING_MODULE),
)


def _category_for_exception(exc: BaseException) -> FaultCategory:
    for matches, category in _EXCEPTION_CATEGORIES:
        if matches(exc):
            return category
    return FaultCategory.UNKNOWN


def _message_rules(fault: Fault) -> List[_Rule]:
    message = fault.message.lower()
    return [rule for rule in _RULES if rule.message_pattern.search(message)]


def classify(fault: Fault) -> str:
    """Return a human-readable likely cause; never empty."""
    if fault.category != FaultCategory.UNKNOWN:
        return _RULES_BY_CATEGORY[fault.category].cause
    matched = _message_rules(fault)
    if matched:
        return matched[0].cause
    return UNKNOWN_CAUSE


def suggest_recovery_actions(fault: Fault) -> List[str]:
    """Ordered, duplicate-free remediation list ending with the safe mode fallback."""
    actions: List[str] = []
    if fault.category != FaultCategory.UNKNOWN:
        actions.extend(_RULES_BY_CATEGORY[fault.category].actions)
    for rule in _message_rules(fault):
        actions.extend(rule.actions)

    component = fault.component.lower()
    for pattern, hints in _COMPONENT_HINTS:
        if pattern.search(component):
            actions.extend(hints)

    actions.append(FACTORY_RESET_ACTION)

    unique = list(dict.fromkeys(action for action in actions if action != SAFE_MODE_ACTION))
    unique.append(SAFE_MODE_ACTION)
    return unique


def _process_memory_mb() -> float:
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error as e:
        logger.debug(f"Could not read process memory: {e}")
        return 0.0


def build_crash_report(exc: BaseException, component: str = "Unknown",
                       context: Optional[Dict[str, Any]] = None,
                       clock: Optional[Callable[[], datetime]] = None,
                       app_version: str = __version__) -> CrashReport:
    """Capture a CrashReport from a live exception."""
    clock = clock or utc_now
    details: Dict[str, Any] = dict(context or {})

    inner = exc.__cause__ or exc.__context__
    if inner is not None:
        details.setdefault("inner_cause", f"{type(inner).__name__}: {inner}")

    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()

    return CrashReport(
        timestamp=clock(),
        cause_type=type(exc).__name__,
        message=str(exc),
        stack_summary=stack,
        component=component,
        app_version=app_version,
        os_description=platform.platform(),
        runtime_version=f"{platform.python_implementation()} {platform.python_version()}",
        memory_usage_mb=round(_process_memory_mb(), 1),
        context=details,
    )


def crash_signature(report: CrashReport) -> str:
    """Stable hash identifying crashes with the same cause, component and message prefix."""
    content = f"{report.cause_type}|{report.component}|{report.message[:100]}"
    return hashlib.md5(content.encode()).hexdigest()


def group_similar_crashes(reports: List[CrashReport]) -> List[List[CrashReport]]:
    """Group reports sharing a signature, largest groups first."""
    groups: Dict[str, List[CrashReport]] = defaultdict(list)
    for report in reports:
        groups[crash_signature(report)].append(report)
    return sorted(groups.values(), key=len, reverse=True)
