"""Database operations for persisting crash analytics history."""

import aiosqlite
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel

from .models import CrashReport, RecoveryAttempt, SafeModeUsage, utc_now

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_TABLES = ("crash_reports", "recovery_attempts", "safe_mode_sessions")


def _timestamp_key(value: datetime) -> str:
    """Fixed-width UTC text so that SQL string comparison orders correctly."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")


class Database:
    """SQLite store for crash reports, recovery attempts and safe mode sessions."""

    def __init__(self, db_path: str):
        # Try to use the preferred path, fallback to writable location if needed
        directory = os.path.dirname(os.path.abspath(db_path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.debug(f"Cannot create database directory {directory}: {e}")
        if os.path.isdir(directory) and os.access(directory, os.W_OK):
            self.db_path = db_path
        else:
            fallback_path = os.path.join(tempfile.gettempdir(), "startup_guard.db")
            logger.warning(f"Cannot write to {db_path}, using fallback: {fallback_path}")
            self.db_path = fallback_path

    async def initialize(self):
        """Initialize the database and create tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            for table in _TABLES:
                await db.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        stored_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                await db.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_timestamp
                    ON {table}(timestamp DESC)
                """)

            await db.commit()
            logger.info("Database initialized successfully")

    async def _insert(self, table: str, timestamp: datetime, record: BaseModel) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"INSERT INTO {table} (timestamp, payload) VALUES (?, ?)",
                (_timestamp_key(timestamp), record.model_dump_json()),
            )
            await db.commit()
            return cursor.lastrowid

    async def store_crash_report(self, report: CrashReport) -> int:
        return await self._insert("crash_reports", report.timestamp, report)

    async def store_recovery_attempt(self, attempt: RecoveryAttempt) -> int:
        return await self._insert("recovery_attempts", attempt.timestamp, attempt)

    async def store_safe_mode_usage(self, usage: SafeModeUsage) -> int:
        return await self._insert("safe_mode_sessions", usage.start_time, usage)

    async def _load(self, table: str, model: Type[ModelT], limit: int) -> List[ModelT]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            query = f"SELECT payload FROM {table} ORDER BY timestamp DESC LIMIT ?"
            async with db.execute(query, (limit,)) as cursor:
                rows = await cursor.fetchall()

        records = []
        for row in rows:
            try:
                records.append(model.model_validate_json(row["payload"]))
            except ValueError as e:
                logger.warning(f"Skipping unreadable row in {table}: {e}")
        return records

    async def get_crash_reports(self, limit: int = 1000) -> List[CrashReport]:
        """Most recent crash reports, newest first."""
        return await self._load("crash_reports", CrashReport, limit)

    async def get_recovery_attempts(self, limit: int = 500) -> List[RecoveryAttempt]:
        return await self._load("recovery_attempts", RecoveryAttempt, limit)

    async def get_safe_mode_usages(self, limit: int = 200) -> List[SafeModeUsage]:
        return await self._load("safe_mode_sessions", SafeModeUsage, limit)

    async def get_stats(self) -> dict:
        """Get database statistics."""
        stats = {}
        async with aiosqlite.connect(self.db_path) as db:
            for table in _TABLES:
                async with db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                    stats[table] = (await cursor.fetchone())[0]
        return stats

    async def cleanup_old_records(self, retention_days: int = 30, now: Optional[datetime] = None) -> int:
        """Delete records older than the retention period."""
        cutoff = _timestamp_key((now or utc_now()) - timedelta(days=retention_days))
        deleted_count = 0
        async with aiosqlite.connect(self.db_path) as db:
            for table in _TABLES:
                cursor = await db.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,))
                deleted_count += cursor.rowcount
            await db.commit()

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} old records (older than {retention_days} days)")
        return deleted_count
