#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
History store for psguard - append-only SQLite audit of every pipeline run.

Every user request is recorded with the (redacted) generated command, the
execution status and the risk level, including denied and cancelled runs.
Each operation opens and closes its own connection so concurrent pipeline
runs never share connection state; SQLite's own locking covers the rest.

Write and read failures are logged and swallowed: the audit trail must never
block or change the outcome of the command that is being recorded.
"""

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from ..safety.models import ExecutionStatus, HistoryRecord, RiskLevel
from .redaction import redact_command

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100
DEFAULT_RECENT_LIMIT = 50
DEFAULT_EXPORT_LIMIT = 1000

_SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS CommandHistory (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    Timestamp TEXT NOT NULL,            -- ISO-8601
    UserInput TEXT NOT NULL,
    GeneratedCommand TEXT NOT NULL,     -- redacted before insert
    Status INTEGER NOT NULL,            -- ExecutionStatus
    ExecutionResult TEXT,
    RiskLevel INTEGER NOT NULL          -- RiskLevel
);

CREATE INDEX IF NOT EXISTS idx_timestamp ON CommandHistory(Timestamp DESC);
"""

_COLUMNS = "Id, Timestamp, UserInput, GeneratedCommand, Status, ExecutionResult, RiskLevel"


class HistoryStoreError(Exception):
    """The history database could not be created or opened."""


def _format_timestamp(value: datetime) -> str:
    # Naive local time, fixed width, so text ordering matches chronological ordering
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


class HistoryStore:
    """SQLite-backed command history."""

    def __init__(self, db_path: str):
        """
        Open (and if needed create) the history database.

        Args:
            db_path: Path to SQLite database file

        Raises:
            HistoryStoreError: schema could not be created
        """
        self.db_path = str(db_path)
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            with closing(self._connect()) as conn:
                conn.executescript(_SCHEMA)
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize history database {self.db_path}: {e}")
            raise HistoryStoreError(f"cannot initialize history database {self.db_path}: {e}") from e
        logger.info(f"History database ready: {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> HistoryRecord:
        return HistoryRecord(
            id=row['Id'],
            timestamp=datetime.fromisoformat(row['Timestamp']),
            user_input=row['UserInput'],
            generated_command=row['GeneratedCommand'],
            status=ExecutionStatus(row['Status']),
            execution_result=row['ExecutionResult'],
            risk_level=RiskLevel(row['RiskLevel']),
        )

    def append(self, record: HistoryRecord) -> Optional[int]:
        """
        Insert a record; the command text is redacted first.

        Returns:
            The new record id, or None if the write failed
        """
        sql = """
            INSERT INTO CommandHistory
            (Timestamp, UserInput, GeneratedCommand, Status, ExecutionResult, RiskLevel)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        params = (
            _format_timestamp(record.timestamp),
            record.user_input or "",
            redact_command(record.generated_command or ""),
            int(record.status),
            record.execution_result,
            int(record.risk_level),
        )
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute(sql, params)
                return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Failed to save history record: {e}")
            return None

    def get(self, record_id: int) -> Optional[HistoryRecord]:
        """Fetch one record by id."""
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM CommandHistory WHERE Id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read history record {record_id}: {e}")
            return None
        return self._row_to_record(row) if row else None

    def query(self,
              keyword: Optional[str] = None,
              start: Optional[datetime] = None,
              end: Optional[datetime] = None,
              limit: int = DEFAULT_QUERY_LIMIT) -> List[HistoryRecord]:
        """
        Search history, newest first.

        Args:
            keyword: Substring of the user input or the command
            start: Only records at or after this time
            end: Only records at or before this time
            limit: Max records returned

        All given filters must match (AND).
        """
        conditions = []
        params: list = []

        if keyword and keyword.strip():
            conditions.append("(UserInput LIKE ? OR GeneratedCommand LIKE ?)")
            pattern = f"%{keyword.strip()}%"
            params.extend([pattern, pattern])
        if start is not None:
            conditions.append("Timestamp >= ?")
            params.append(_format_timestamp(start))
        if end is not None:
            conditions.append("Timestamp <= ?")
            params.append(_format_timestamp(end))

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = f"""
            SELECT {_COLUMNS}
            FROM CommandHistory
            {where}
            ORDER BY Timestamp DESC, Id DESC
            LIMIT ?
        """
        params.append(limit)

        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to query history: {e}")
            return []
        return [self._row_to_record(row) for row in rows]

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[HistoryRecord]:
        return self.query(limit=limit)

    def delete_one(self, record_id: int) -> bool:
        """Delete a record; True if it existed."""
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute("DELETE FROM CommandHistory WHERE Id = ?", (record_id,))
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete history record {record_id}: {e}")
            return False

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete every record strictly older than cutoff; returns the count."""
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM CommandHistory WHERE Timestamp < ?",
                        (_format_timestamp(cutoff),),
                    )
            return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Failed to delete old history records: {e}")
            return 0

    def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Retention sweep: drop records older than retention_days."""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        deleted = self.delete_older_than(cutoff)
        logger.info(f"History cleanup removed {deleted} records older than {retention_days} days")
        return deleted

    def clear(self) -> int:
        """Delete every record; returns the count."""
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute("DELETE FROM CommandHistory")
            return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Failed to clear history: {e}")
            return 0

    def count(self) -> int:
        try:
            with closing(self._connect()) as conn:
                return conn.execute("SELECT COUNT(*) FROM CommandHistory").fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to count history records: {e}")
            return 0

    def export_json(self, limit: int = DEFAULT_EXPORT_LIMIT) -> str:
        """Export the newest records as an indented JSON array."""
        records = self.recent(limit)
        return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)
