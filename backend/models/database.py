"""SQLite-backed operations tables using aiosqlite.

This module provides the OperationsDatabase class that persists the two
tables the reconciliation pipeline watches. It plays the part of the remote
data source: the startup snapshot is read from here and the outbound writer
commits here before publishing a change notification.

Tables:
    agent_sessions: One row per agent, unique on agent_id (upsert target).
    operations_events: Append-only activity events, unique on event_id.

Timestamps are stored as ISO-8601 UTC strings; payload and metadata columns
hold JSON. Rows come back as plain dicts shaped like the remote rows.

Usage:
    >>> from models.database import OperationsDatabase
    >>> db = OperationsDatabase("./data/operations.db")
    >>> await db.init()
    >>> rows = await db.fetch_active_sessions(limit=50)
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from models.domain import utcnow
from models.rows import ACTIVE_ROW_STATUSES, AgentSessionRow, OperationsEventRow

logger = structlog.get_logger(__name__)

_SESSION_COLUMNS = (
    "id",
    "agent_id",
    "session_id",
    "agent_name",
    "agent_type",
    "parent_session_id",
    "status",
    "started_at",
    "last_activity_at",
    "terminated_at",
    "channel",
    "assigned_task",
    "assigned_task_id",
    "progress_percent",
    "estimated_completion",
    "summary",
    "metadata",
    "created_at",
    "updated_at",
)

# Columns overwritten when an upsert hits an existing agent_id.
_SESSION_UPDATE_COLUMNS = tuple(
    c for c in _SESSION_COLUMNS if c not in ("id", "agent_id", "started_at", "created_at")
)

_JSON_COLUMNS = ("payload", "metadata")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _decode_row(row: aiosqlite.Row) -> dict[str, Any]:
    result = dict(row)
    for column in _JSON_COLUMNS:
        if column in result and isinstance(result[column], str):
            try:
                result[column] = json.loads(result[column])
            except json.JSONDecodeError:
                result[column] = {}
    return result


class OperationsDatabase:
    """Async SQLite store for agent sessions and operations events.

    Unlike a fire-and-forget store, every method logs and then re-raises on
    failure: callers decide whether a failure is fatal (the writer reports
    it, the pipeline degrades the connection status).

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the database wrapper.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create tables and indexes if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS agent_sessions (
                        id TEXT PRIMARY KEY,
                        agent_id TEXT NOT NULL UNIQUE,
                        session_id TEXT NOT NULL DEFAULT '',
                        agent_name TEXT NOT NULL DEFAULT '',
                        agent_type TEXT NOT NULL DEFAULT 'subagent',
                        parent_session_id TEXT,
                        status TEXT NOT NULL DEFAULT 'active',
                        started_at TEXT NOT NULL,
                        last_activity_at TEXT,
                        terminated_at TEXT,
                        channel TEXT,
                        assigned_task TEXT,
                        assigned_task_id TEXT,
                        progress_percent REAL NOT NULL DEFAULT 0,
                        estimated_completion TEXT,
                        summary TEXT,
                        metadata TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS operations_events (
                        id TEXT PRIMARY KEY,
                        event_id TEXT NOT NULL UNIQUE,
                        event_type TEXT NOT NULL,
                        agent_id TEXT NOT NULL,
                        session_id TEXT,
                        payload TEXT NOT NULL DEFAULT '{}',
                        triggered_at TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        created_by_user_id TEXT
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_agent_sessions_created_at
                    ON agent_sessions(created_at DESC)
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_operations_events_triggered_at
                    ON operations_events(triggered_at DESC)
                """)
                await db.commit()
            logger.info("operations_database_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "operations_database_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Snapshot queries
    # -----------------------------------------------------------------

    async def fetch_active_sessions(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return the newest non-terminal session rows, newest first."""
        placeholders = ", ".join("?" for _ in ACTIVE_ROW_STATUSES)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    f"""
                    SELECT * FROM agent_sessions
                    WHERE status IN ({placeholders})
                    ORDER BY created_at DESC
                    LIMIT ?
                    """,
                    (*ACTIVE_ROW_STATUSES, limit),
                )
                rows = await cursor.fetchall()
                return [_decode_row(row) for row in rows]
        except Exception as e:
            logger.error("fetch_active_sessions_failed", error=str(e))
            raise

    async def fetch_recent_events(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return the newest event rows, newest first."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    """
                    SELECT * FROM operations_events
                    ORDER BY triggered_at DESC
                    LIMIT ?
                    """,
                    (limit,),
                )
                rows = await cursor.fetchall()
                return [_decode_row(row) for row in rows]
        except Exception as e:
            logger.error("fetch_recent_events_failed", error=str(e))
            raise

    # -----------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------

    async def get_session(self, agent_id: str) -> dict[str, Any] | None:
        """Retrieve a single session row by agent id."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM agent_sessions WHERE agent_id = ?",
                    (agent_id,),
                )
                row = await cursor.fetchone()
                return _decode_row(row) if row is not None else None
        except Exception as e:
            logger.error("session_get_failed", agent_id=agent_id, error=str(e))
            raise

    async def upsert_session(
        self, row: AgentSessionRow
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """Insert a session row, or update the existing row with the same agent_id.

        On conflict every column except id, agent_id, started_at and
        created_at is overwritten.

        Returns:
            ``(new_row, old_row)``; ``old_row`` is None when the row was inserted.
        """
        now = utcnow()
        values: dict[str, Any] = {
            "id": row.id or uuid.uuid4().hex,
            "agent_id": row.agent_id,
            "session_id": row.session_id,
            "agent_name": row.agent_name,
            "agent_type": row.agent_type,
            "parent_session_id": row.parent_session_id,
            "status": row.status,
            "started_at": _iso(row.started_at or now),
            "last_activity_at": _iso(row.last_activity_at),
            "terminated_at": _iso(row.terminated_at),
            "channel": row.channel,
            "assigned_task": row.assigned_task,
            "assigned_task_id": row.assigned_task_id,
            "progress_percent": row.progress_percent or 0,
            "estimated_completion": _iso(row.estimated_completion),
            "summary": row.summary,
            "metadata": json.dumps(row.metadata or {}),
            "created_at": _iso(row.created_at or now),
            "updated_at": _iso(now),
        }
        columns = ", ".join(_SESSION_COLUMNS)
        placeholders = ", ".join("?" for _ in _SESSION_COLUMNS)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in _SESSION_UPDATE_COLUMNS)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM agent_sessions WHERE agent_id = ?",
                    (row.agent_id,),
                )
                existing = await cursor.fetchone()
                old_row = _decode_row(existing) if existing is not None else None

                await db.execute(
                    f"""
                    INSERT INTO agent_sessions ({columns})
                    VALUES ({placeholders})
                    ON CONFLICT(agent_id) DO UPDATE SET {assignments}
                    """,
                    tuple(values[c] for c in _SESSION_COLUMNS),
                )
                await db.commit()

                cursor = await db.execute(
                    "SELECT * FROM agent_sessions WHERE agent_id = ?",
                    (row.agent_id,),
                )
                stored = await cursor.fetchone()
            logger.debug(
                "session_upserted",
                agent_id=row.agent_id,
                status=row.status,
                inserted=old_row is None,
            )
            return _decode_row(stored), old_row
        except Exception as e:
            logger.error("session_upsert_failed", agent_id=row.agent_id, error=str(e))
            raise

    async def delete_session(self, agent_id: str) -> dict[str, Any] | None:
        """Delete a session row.

        Returns:
            The deleted row, or None if no row had that agent id.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM agent_sessions WHERE agent_id = ?",
                    (agent_id,),
                )
                existing = await cursor.fetchone()
                if existing is None:
                    return None
                await db.execute(
                    "DELETE FROM agent_sessions WHERE agent_id = ?",
                    (agent_id,),
                )
                await db.commit()
            logger.debug("session_deleted", agent_id=agent_id)
            return _decode_row(existing)
        except Exception as e:
            logger.error("session_delete_failed", agent_id=agent_id, error=str(e))
            raise

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    async def insert_event(self, row: OperationsEventRow) -> dict[str, Any]:
        """Append an event row.

        Raises:
            aiosqlite.IntegrityError: If the event_id already exists.
        """
        now = utcnow()
        stored = {
            "id": row.id or uuid.uuid4().hex,
            "event_id": row.event_id,
            "event_type": row.event_type,
            "agent_id": row.agent_id,
            "session_id": row.session_id,
            "payload": row.payload or {},
            "triggered_at": _iso(row.triggered_at or now),
            "created_at": _iso(row.created_at or now),
            "created_by_user_id": row.created_by_user_id,
        }
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO operations_events
                        (id, event_id, event_type, agent_id, session_id, payload,
                         triggered_at, created_at, created_by_user_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored["id"],
                        stored["event_id"],
                        stored["event_type"],
                        stored["agent_id"],
                        stored["session_id"],
                        json.dumps(stored["payload"]),
                        stored["triggered_at"],
                        stored["created_at"],
                        stored["created_by_user_id"],
                    ),
                )
                await db.commit()
            logger.debug(
                "event_inserted",
                event_id=row.event_id,
                event_type=row.event_type,
            )
            return stored
        except Exception as e:
            logger.error("event_insert_failed", event_id=row.event_id, error=str(e))
            raise
