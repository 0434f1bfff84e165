"""Remote row shapes for the two change-feed tables.

These mirror the ``agent_sessions`` and ``operations_events`` tables exactly
as they arrive from a snapshot query or a change notification. Every field
other than the identifiers is optional so a partial row still validates; the
domain mapper is responsible for defaulting.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

AgentType = Literal["main", "subagent"]

# Database status values that end a session.
TERMINAL_ROW_STATUSES = frozenset({"terminated", "failed"})

# Database status values returned by the startup snapshot.
ACTIVE_ROW_STATUSES = ("initiated", "active", "idle", "working")


class AgentSessionRow(BaseModel):
    """A row of the ``agent_sessions`` table."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    agent_id: str
    session_id: str = ""
    agent_name: str = ""
    agent_type: str = "subagent"
    parent_session_id: str | None = None
    status: str = "active"
    started_at: datetime | None = None
    last_activity_at: datetime | None = None
    terminated_at: datetime | None = None
    channel: str | None = None
    assigned_task: str | None = None
    assigned_task_id: str | None = None
    progress_percent: float | None = None
    estimated_completion: datetime | None = None
    summary: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_main(self) -> bool:
        """True when the row describes the coordinator."""
        return self.agent_type == "main"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ROW_STATUSES


class OperationsEventRow(BaseModel):
    """A row of the ``operations_events`` table."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    event_id: str
    event_type: str
    agent_id: str
    session_id: str | None = None
    payload: dict[str, Any] | None = None
    triggered_at: datetime | None = None
    created_at: datetime | None = None
    created_by_user_id: str | None = None
