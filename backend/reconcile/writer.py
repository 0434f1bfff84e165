"""Outbound writes: append an activity event, upsert or end an agent session.

Every write commits to OperationsDatabase first and then publishes the
committed row on the ChangeFeed, so subscribers only ever see durable rows.
Failures are reported in the returned WriteResult rather than raised.
"""

from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel

from events import ChangeFeed, ChangeType, FeedTable, RowChange
from models.database import OperationsDatabase
from models.domain import utcnow
from models.rows import TERMINAL_ROW_STATUSES, AgentSessionRow, AgentType, OperationsEventRow

logger = structlog.get_logger(__name__)


class WriteResult(BaseModel):
    """Outcome of an outbound write."""

    success: bool
    error: str | None = None
    row: dict[str, Any] | None = None


class OperationsWriter:
    """Writes rows and announces them on the change feed.

    Usage:
        >>> writer = OperationsWriter(database, feed)
        >>> result = await writer.upsert_agent_session(
        ...     agent_id="agent:sub:writer",
        ...     session_id="sess-1",
        ...     agent_name="Writer",
        ...     agent_type="subagent",
        ... )
        >>> result.success
        True
    """

    def __init__(self, database: OperationsDatabase, feed: ChangeFeed) -> None:
        self.database = database
        self.feed = feed

    async def log_operation_event(
        self,
        event_id: str,
        event_type: str,
        agent_id: str,
        session_id: str | None = None,
        payload: dict[str, Any] | None = None,
        triggered_at: datetime | None = None,
    ) -> WriteResult:
        """Append an event; ``triggered_at`` defaults to now."""
        try:
            row = OperationsEventRow(
                event_id=event_id,
                event_type=event_type,
                agent_id=agent_id,
                session_id=session_id or None,
                payload=payload or {},
                triggered_at=triggered_at or utcnow(),
            )
            stored = await self.database.insert_event(row)
        except Exception as e:
            logger.error("log_operation_event_failed", event_id=event_id, error=str(e))
            return WriteResult(success=False, error=str(e))

        await self.feed.publish(
            RowChange(
                table=FeedTable.OPERATIONS_EVENTS,
                event_type=ChangeType.INSERT,
                new=stored,
            )
        )
        logger.info("operation_event_logged", event_id=event_id, event_type=event_type)
        return WriteResult(success=True, row=stored)

    async def upsert_agent_session(
        self,
        agent_id: str,
        session_id: str,
        agent_name: str,
        agent_type: AgentType = "subagent",
        parent_session_id: str | None = None,
        status: str = "active",
        channel: str | None = None,
        assigned_task: str | None = None,
        progress_percent: float | None = 0,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WriteResult:
        """Insert or update the session keyed on ``agent_id``.

        ``last_activity_at`` is always stamped; ``terminated_at`` is stamped
        when ``status`` ends the session.
        """
        now = utcnow()
        try:
            row = AgentSessionRow(
                agent_id=agent_id,
                session_id=session_id,
                agent_name=agent_name,
                agent_type=agent_type,
                parent_session_id=parent_session_id or None,
                status=status or "active",
                channel=channel,
                assigned_task=assigned_task,
                progress_percent=progress_percent or 0,
                summary=summary,
                metadata=metadata,
                last_activity_at=now,
                terminated_at=now if status in TERMINAL_ROW_STATUSES else None,
            )
            stored, previous = await self.database.upsert_session(row)
        except Exception as e:
            logger.error("upsert_agent_session_failed", agent_id=agent_id, error=str(e))
            return WriteResult(success=False, error=str(e))

        change_type = ChangeType.INSERT if previous is None else ChangeType.UPDATE
        await self.feed.publish(
            RowChange(
                table=FeedTable.AGENT_SESSIONS,
                event_type=change_type,
                new=stored,
                old=previous,
            )
        )
        logger.info(
            "agent_session_upserted",
            agent_id=agent_id,
            status=status,
            change=change_type.value,
        )
        return WriteResult(success=True, row=stored)

    async def end_agent_session(self, agent_id: str) -> WriteResult:
        """Delete the session row and announce the deletion with the old row."""
        try:
            previous = await self.database.delete_session(agent_id)
        except Exception as e:
            logger.error("end_agent_session_failed", agent_id=agent_id, error=str(e))
            return WriteResult(success=False, error=str(e))

        if previous is None:
            return WriteResult(success=False, error=f"Agent session {agent_id} not found")

        await self.feed.publish(
            RowChange(
                table=FeedTable.AGENT_SESSIONS,
                event_type=ChangeType.DELETE,
                new=None,
                old=previous,
            )
        )
        logger.info("agent_session_ended", agent_id=agent_id)
        return WriteResult(success=True, row=previous)
