"""Canonical domain records for the Operations Room.

These are the shapes held by the state store and read by the animation
driver. They are produced only by the domain mapper (from remote rows) or by
the store's own setters; nothing else constructs them from raw input.

All records are frozen: the store swaps whole records instead of mutating
them, so a reader holding a reference never observes a half-applied update.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time, used wherever a timestamp is defaulted."""
    return datetime.now(UTC)


class AgentStatus(StrEnum):
    """Coordinator status."""

    ACTIVE = "active"
    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"


class SubAgentStatus(StrEnum):
    """Sub-agent lifecycle status."""

    SPAWNED = "spawned"
    ACTIVE = "active"
    IDLE = "idle"
    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SUB_AGENT_STATUSES = frozenset({SubAgentStatus.COMPLETED, SubAgentStatus.FAILED})


class ActivityEventType(StrEnum):
    """Well-known activity event tags.

    ActivityEvent.type is a plain string so unknown tags still flow through
    the feed; this enum only names the ones the system reacts to.
    """

    SESSION_STARTED = "agent.session.started"
    SESSION_TERMINATED = "agent.session.terminated"
    STATUS_UPDATED = "agent.status_updated"
    WORK_ACTIVITY = "agent.work_activity"
    ERROR = "agent.error"
    SUBAGENT_SPAWNED = "subagent.spawned"
    SUBAGENT_COMPLETED = "subagent.completed"
    SUBAGENT_FAILED = "subagent.failed"
    TASK_STATE_CHANGED = "task.state_changed"
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    SYSTEM_CONNECTED = "system.connected"
    SYSTEM_DISCONNECTED = "system.disconnected"


class TaskStatus(StrEnum):
    """Task board columns."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Agent(BaseModel):
    """The coordinator agent (singleton)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: AgentStatus = AgentStatus.IDLE
    current_task: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    estimated_completion: datetime | None = None


class SubAgent(BaseModel):
    """A sub-worker spawned by the coordinator."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: SubAgentStatus = SubAgentStatus.SPAWNED
    current_task: str = ""
    assigned_task: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    parent_session_id: str = ""
    session_id: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    estimated_completion: datetime | None = None
    completed_at: datetime | None = None
    summary: str | None = None
    deliverables: list[str] | None = None

    @property
    def is_terminal(self) -> bool:
        """True once the sub-agent has completed or failed."""
        return self.status in TERMINAL_SUB_AGENT_STATUSES


class ActivityEvent(BaseModel):
    """An append-only entry of the live feed."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    agent_id: str
    session_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class Task(BaseModel):
    """A card on the task board."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    status: TaskStatus = TaskStatus.BACKLOG
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: str = ""
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class TaskFlow(BaseModel):
    """Task board organized by column.

    Mutators return a new TaskFlow; a task id appears in at most one column.
    """

    model_config = ConfigDict(frozen=True)

    backlog: list[Task] = Field(default_factory=list)
    todo: list[Task] = Field(default_factory=list)
    in_progress: list[Task] = Field(default_factory=list)
    review: list[Task] = Field(default_factory=list)
    done: list[Task] = Field(default_factory=list)

    def column(self, status: TaskStatus) -> list[Task]:
        return list(getattr(self, status.value))

    def all_tasks(self) -> list[Task]:
        return [task for status in TaskStatus for task in self.column(status)]

    def find(self, task_id: str) -> Task | None:
        for task in self.all_tasks():
            if task.id == task_id:
                return task
        return None

    def without_task(self, task_id: str) -> "TaskFlow":
        return self.model_copy(
            update={
                status.value: [t for t in self.column(status) if t.id != task_id]
                for status in TaskStatus
            }
        )

    def with_task(self, task: Task) -> "TaskFlow":
        """Place ``task`` at the end of its status column, removing any older copy."""
        flow = self.without_task(task.id)
        return flow.model_copy(
            update={task.status.value: [*flow.column(task.status), task]}
        )
