"""Automated repair of the known configuration files and directories."""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
from uuid import uuid4

from .catalog import (
    BACKUPS_DIR_NAME,
    CONFIG_FILES,
    config_file_paths,
    default_payload_for,
    parse_configuration,
    required_directories,
)
from .file_system import FileSystem
from .models import RecoveryAction, RecoveryAttempt, RecoveryOutcome, RecoveryResult, utc_now

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _describe_failure(operation: str, error: Exception) -> str:
    if isinstance(error, PermissionError):
        return f"{operation} failed: permission denied ({error})"
    return f"{operation} failed: {error}"


class RecoveryManager:
    """Performs the least destructive fix for each known artifact.

    Every public operation returns a result instead of raising; I/O faults
    are logged and reported as FAILED results.
    """

    def __init__(self, app_data_path: PathLike,
                 file_system: Optional[FileSystem] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.app_data_path = Path(app_data_path)
        self.file_system = file_system or FileSystem()
        self.clock = clock or utc_now
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, path: PathLike) -> threading.Lock:
        key = str(Path(path).absolute())
        with self._locks_guard:
            return self._locks[key]

    def _result(self, action: RecoveryAction, outcome: RecoveryOutcome, message: str,
                path: Optional[PathLike] = None) -> RecoveryResult:
        return RecoveryResult(action=action, outcome=outcome, message=message,
                              timestamp=self.clock(), path=str(path) if path is not None else None)

    def _invalid_path(self, action: RecoveryAction) -> RecoveryResult:
        return self._result(action, RecoveryOutcome.FAILED, "Invalid path: a non-empty path is required")

    def _backup_suffix(self) -> str:
        # uuid component keeps names unique even within one clock tick
        return f"{self.clock():%Y%m%d_%H%M%S_%f}_{uuid4().hex[:8]}"

    def _write_default(self, path: Path):
        self.file_system.create_directory(path.parent)
        self.file_system.write_text(path, default_payload_for(str(path)))

    def recover_missing_configuration(self, path: PathLike) -> RecoveryResult:
        action = RecoveryAction.CREATE_DEFAULT_CONFIGURATION
        if not path or not str(path).strip():
            return self._invalid_path(action)
        path = Path(path)
        with self._lock_for(path):
            return self._recover_missing_locked(path)

    def _recover_missing_locked(self, path: Path) -> RecoveryResult:
        action = RecoveryAction.CREATE_DEFAULT_CONFIGURATION
        if self.file_system.file_exists(path):
            return self._result(RecoveryAction.NO_ACTION_NEEDED, RecoveryOutcome.NO_ACTION_NEEDED,
                                f"Configuration file already exists: {path}", path)
        try:
            self._write_default(path)
        except Exception as e:
            logger.error(f"Failed to create default configuration {path}: {e}")
            return self._result(action, RecoveryOutcome.FAILED,
                                _describe_failure(f"Creating default configuration {path}", e), path)
        logger.info(f"Created default configuration file: {path}")
        return self._result(action, RecoveryOutcome.RECOVERED,
                            f"Created default configuration file: {path}", path)

    def recover_corrupted_configuration(self, path: PathLike) -> RecoveryResult:
        action = RecoveryAction.BACKUP_CORRUPTED_CONFIGURATION
        if not path or not str(path).strip():
            return self._invalid_path(action)
        path = Path(path)
        with self._lock_for(path):
            if not self.file_system.file_exists(path):
                return self._recover_missing_locked(path)

            try:
                content = self.file_system.read_text(path)
            except UnicodeDecodeError:
                content = None
            except Exception as e:
                logger.error(f"Failed to read configuration {path}: {e}")
                return self._result(action, RecoveryOutcome.FAILED,
                                    _describe_failure(f"Reading configuration {path}", e), path)

            if content is not None and self._is_valid(path, content):
                return self._result(RecoveryAction.NO_ACTION_NEEDED, RecoveryOutcome.NO_ACTION_NEEDED,
                                    f"Configuration file is valid: {path}", path)

            try:
                backup_path = self._copy_to_backup(path)
                self._write_default(path)
            except Exception as e:
                logger.error(f"Failed to replace corrupted configuration {path}: {e}")
                return self._result(action, RecoveryOutcome.FAILED,
                                    _describe_failure(f"Replacing corrupted configuration {path}", e), path)

            logger.warning(f"Replaced corrupted configuration {path}; original saved to {backup_path}")
            return self._result(action, RecoveryOutcome.RECOVERED,
                                f"Backed up corrupted configuration to {backup_path} and restored defaults",
                                path)

    @staticmethod
    def _is_valid(path: Path, content: str) -> bool:
        if not content.strip():
            return False
        try:
            parse_configuration(str(path), content)
        except ValueError:
            return False
        return True

    def recover_missing_directories(self, path: PathLike) -> RecoveryResult:
        action = RecoveryAction.CREATE_MISSING_DIRECTORIES
        if not path or not str(path).strip():
            return self._invalid_path(action)
        path = Path(path)
        with self._lock_for(path):
            if self.file_system.directory_exists(path):
                return self._result(RecoveryAction.NO_ACTION_NEEDED, RecoveryOutcome.NO_ACTION_NEEDED,
                                    f"Directory already exists: {path}", path)
            try:
                self.file_system.create_directory(path)
            except Exception as e:
                logger.error(f"Failed to create directory {path}: {e}")
                return self._result(action, RecoveryOutcome.FAILED,
                                    _describe_failure(f"Creating directory {path}", e), path)
        logger.info(f"Created directory: {path}")
        return self._result(action, RecoveryOutcome.RECOVERED, f"Created directory: {path}", path)

    def _copy_to_backup(self, path: Path) -> Path:
        backup_path = path.with_name(f"{path.name}.backup_{self._backup_suffix()}")
        self.file_system.copy_file(path, backup_path)
        return backup_path

    def create_configuration_backup(self, path: PathLike) -> Optional[Path]:
        """Copy ``path`` to a uniquely named sibling; ``None`` when the source is absent."""
        if not path or not str(path).strip():
            return None
        path = Path(path)
        with self._lock_for(path):
            if not self.file_system.file_exists(path):
                return None
            try:
                backup_path = self._copy_to_backup(path)
            except Exception as e:
                logger.error(f"Failed to back up {path}: {e}")
                return None
        logger.info(f"Created backup {backup_path}")
        return backup_path

    def identify_required_recovery_actions(self) -> List[RecoveryAction]:
        """Dry run: the distinct actions a comprehensive recovery would perform."""
        actions: List[RecoveryAction] = []

        def add(action: RecoveryAction):
            if action not in actions:
                actions.append(action)

        fs = self.file_system
        try:
            for directory in required_directories(self.app_data_path):
                if not fs.directory_exists(directory):
                    add(RecoveryAction.CREATE_MISSING_DIRECTORIES)
            for path in config_file_paths(self.app_data_path):
                if not fs.file_exists(path):
                    add(RecoveryAction.CREATE_DEFAULT_CONFIGURATION)
                    continue
                try:
                    content = fs.read_text(path)
                except UnicodeDecodeError:
                    content = ""
                if not self._is_valid(path, content):
                    add(RecoveryAction.BACKUP_CORRUPTED_CONFIGURATION)
        except Exception as e:
            logger.error(f"Recovery dry run failed: {e}")
            add(RecoveryAction.RESET_TO_FACTORY_DEFAULTS)

        if not actions:
            actions.append(RecoveryAction.NO_ACTION_NEEDED)
        return actions

    def perform_comprehensive_recovery(self) -> List[RecoveryResult]:
        """Repair every known directory and configuration file; valid files are left untouched."""
        results = [self.recover_missing_directories(directory)
                   for directory in required_directories(self.app_data_path)]
        results.extend(self.recover_corrupted_configuration(path)
                       for path in config_file_paths(self.app_data_path))

        recovered = sum(1 for r in results if r.outcome == RecoveryOutcome.RECOVERED)
        failed = sum(1 for r in results if r.outcome == RecoveryOutcome.FAILED)
        logger.info(f"Comprehensive recovery finished: {recovered} recovered, {failed} failed, "
                    f"{len(results) - recovered - failed} unchanged")
        return results

    def reset_to_factory_defaults(self) -> RecoveryResult:
        """Regenerate every known file and directory after saving existing files to a backup folder."""
        action = RecoveryAction.RESET_TO_FACTORY_DEFAULTS
        fs = self.file_system
        backup_dir = self.app_data_path / BACKUPS_DIR_NAME / f"factory_reset_backup_{self._backup_suffix()}"
        backed_up = 0
        try:
            for directory in required_directories(self.app_data_path):
                fs.create_directory(directory)
            for spec in CONFIG_FILES:
                path = self.app_data_path / spec.name
                with self._lock_for(path):
                    if fs.file_exists(path):
                        fs.create_directory(backup_dir)
                        fs.copy_file(path, backup_dir / spec.name)
                        backed_up += 1
                    self._write_default(path)
        except Exception as e:
            logger.error(f"Factory reset failed: {e}")
            return self._result(action, RecoveryOutcome.FAILED,
                                _describe_failure("Factory reset", e), self.app_data_path)

        message = "Reset all configuration to factory defaults"
        if backed_up:
            message += f"; {backed_up} previous files saved to {backup_dir}"
        logger.warning(message)
        return self._result(action, RecoveryOutcome.RECOVERED, message, self.app_data_path)


def recovery_attempts_for(results: List[RecoveryResult], triggering_issue: str = "",
                          duration: Optional[timedelta] = None) -> List[RecoveryAttempt]:
    """Analytics records for the results that actually attempted something."""
    attempted = [r for r in results if r.outcome != RecoveryOutcome.NO_ACTION_NEEDED]
    share = duration / len(attempted) if duration is not None and attempted else None
    return [
        RecoveryAttempt(
            recovery_action=result.action.value,
            was_successful=result.succeeded,
            component=Path(result.path).name if result.path else "RecoveryManager",
            triggering_issue=triggering_issue,
            duration=share,
            error_message=None if result.succeeded else result.message,
            timestamp=result.timestamp,
        )
        for result in attempted
    ]
