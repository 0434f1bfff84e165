"""Models module: domain records, remote row shapes and API schemas.

Persistence lives in models.database and is imported from there directly.
"""

from models.domain import (
    ActivityEvent,
    ActivityEventType,
    Agent,
    AgentStatus,
    SubAgent,
    SubAgentStatus,
    Task,
    TaskFlow,
    TaskPriority,
    TaskStatus,
)
from models.rows import AgentSessionRow, OperationsEventRow
from models.schemas import (
    AgentSessionRequest,
    EventsSeenResponse,
    HealthResponse,
    HitTestResponse,
    LogResponse,
    OperationEventRequest,
    WorkstationResponse,
)

__all__ = [
    "ActivityEvent",
    "ActivityEventType",
    "Agent",
    "AgentSessionRequest",
    "AgentSessionRow",
    "AgentStatus",
    "EventsSeenResponse",
    "HealthResponse",
    "HitTestResponse",
    "LogResponse",
    "OperationEventRequest",
    "OperationsEventRow",
    "SubAgent",
    "SubAgentStatus",
    "Task",
    "TaskFlow",
    "TaskPriority",
    "TaskStatus",
    "WorkstationResponse",
]
