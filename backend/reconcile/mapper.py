"""Domain mapper: remote rows to canonical records.

Pure functions, no state. Missing optional fields are defaulted here
(absent progress becomes 0, absent timestamps become "now"), so everything
downstream can rely on fully populated records.
"""

from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from models.domain import (
    ActivityEvent,
    ActivityEventType,
    Agent,
    AgentStatus,
    SubAgent,
    SubAgentStatus,
    Task,
    TaskPriority,
    TaskStatus,
    utcnow,
)
from models.rows import AgentSessionRow, OperationsEventRow

logger = structlog.get_logger(__name__)

_AGENT_STATUS_MAP: dict[str, AgentStatus] = {
    "active": AgentStatus.ACTIVE,
    "working": AgentStatus.WORKING,
    "idle": AgentStatus.IDLE,
    "waiting": AgentStatus.WAITING,
}

_SUB_AGENT_STATUS_MAP: dict[str, SubAgentStatus] = {
    "initiated": SubAgentStatus.SPAWNED,
    "active": SubAgentStatus.ACTIVE,
    "working": SubAgentStatus.WORKING,
    "idle": SubAgentStatus.IDLE,
    "terminated": SubAgentStatus.COMPLETED,
    "failed": SubAgentStatus.FAILED,
}

# Accepts both the wire form and the camelCase form used by board UIs.
_TASK_STATUS_ALIASES: dict[str, TaskStatus] = {
    "inProgress": TaskStatus.IN_PROGRESS,
    "in-progress": TaskStatus.IN_PROGRESS,
}


def map_agent_status(db_status: str | None) -> AgentStatus:
    """Map a database status to the coordinator's status. Unknown values are idle."""
    return _AGENT_STATUS_MAP.get(db_status or "", AgentStatus.IDLE)


def map_sub_agent_status(db_status: str | None) -> SubAgentStatus:
    """Map a database status to a sub-agent status. Unknown values are idle."""
    return _SUB_AGENT_STATUS_MAP.get(db_status or "", SubAgentStatus.IDLE)


def _progress(value: float | None) -> int:
    if value is None:
        return 0
    return int(round(min(100.0, max(0.0, float(value)))))


def _deliverables(metadata: dict[str, Any] | None) -> list[str] | None:
    if not metadata:
        return None
    raw = metadata.get("deliverables")
    if not isinstance(raw, list):
        return None
    return [str(item) for item in raw]


def row_to_agent(row: AgentSessionRow, now: datetime | None = None) -> Agent:
    """Convert a session row into the coordinator record."""
    now = now or utcnow()
    return Agent(
        id=row.agent_id,
        name=row.agent_name or row.agent_id,
        status=map_agent_status(row.status),
        current_task=row.assigned_task or "",
        progress=_progress(row.progress_percent),
        started_at=row.started_at or now,
        last_activity_at=row.last_activity_at or now,
        estimated_completion=row.estimated_completion,
    )


def row_to_sub_agent(row: AgentSessionRow, now: datetime | None = None) -> SubAgent:
    """Convert a session row into a sub-agent record."""
    now = now or utcnow()
    return SubAgent(
        id=row.agent_id,
        name=row.agent_name or row.agent_id,
        status=map_sub_agent_status(row.status),
        current_task=row.assigned_task or "",
        assigned_task=row.assigned_task or "",
        progress=_progress(row.progress_percent),
        parent_session_id=row.parent_session_id or "",
        session_id=row.session_id,
        started_at=row.started_at or now,
        last_activity_at=row.last_activity_at or now,
        estimated_completion=row.estimated_completion,
        completed_at=row.terminated_at,
        summary=row.summary or None,
        deliverables=_deliverables(row.metadata),
    )


def row_to_event(row: OperationsEventRow, now: datetime | None = None) -> ActivityEvent:
    """Convert an event row into a live-feed entry."""
    return ActivityEvent(
        id=row.event_id,
        type=row.event_type,
        agent_id=row.agent_id,
        session_id=row.session_id or None,
        payload=dict(row.payload or {}),
        timestamp=row.triggered_at or now or utcnow(),
    )


def parse_session_row(raw: dict[str, Any] | None) -> AgentSessionRow | None:
    """Validate a raw session row, returning None (and logging) if unusable."""
    if not raw:
        return None
    try:
        return AgentSessionRow.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "session_row_invalid",
            agent_id=raw.get("agent_id"),
            errors=e.error_count(),
        )
        return None


def parse_event_row(raw: dict[str, Any] | None) -> OperationsEventRow | None:
    """Validate a raw event row, returning None (and logging) if unusable."""
    if not raw:
        return None
    try:
        return OperationsEventRow.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "event_row_invalid",
            event_id=raw.get("event_id"),
            errors=e.error_count(),
        )
        return None


def parse_task_status(value: Any) -> TaskStatus | None:
    if not isinstance(value, str):
        return None
    if value in _TASK_STATUS_ALIASES:
        return _TASK_STATUS_ALIASES[value]
    try:
        return TaskStatus(value)
    except ValueError:
        return None


def event_to_task(event: ActivityEvent) -> Task | None:
    """Derive a task-board card from a ``task.state_changed`` event.

    Returns None for other event types, or when the payload lacks a task id
    or a recognizable new state.
    """
    if event.type != ActivityEventType.TASK_STATE_CHANGED:
        return None

    payload = event.payload
    task_id = payload.get("task_id")
    new_status = parse_task_status(payload.get("new_state"))
    if not task_id or new_status is None:
        return None

    try:
        priority = TaskPriority(payload.get("priority") or TaskPriority.MEDIUM)
    except ValueError:
        priority = TaskPriority.MEDIUM

    return Task(
        id=str(task_id),
        title=str(payload.get("title") or task_id),
        status=new_status,
        priority=priority,
        assignee_id=event.agent_id,
        updated_at=event.timestamp,
        completed_at=event.timestamp if new_status == TaskStatus.DONE else None,
    )
