"""Pydantic schemas for API request/response models.

This module defines the bodies accepted by the inbound logging endpoint and
the responses of the read-only room endpoints. All models use Pydantic v2.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class OperationEventRequest(BaseModel):
    """Body of an event append posted by an agent."""

    event_id: str = Field(
        min_length=1,
        description="Client-generated unique event id",
        examples=["evt-agent.work_activity-3f2b9c1e"],
    )
    event_type: str = Field(
        min_length=1,
        description="Dotted event tag",
        examples=["agent.work_activity", "subagent.spawned"],
    )
    agent_id: str = Field(min_length=1, description="Originating agent")
    session_id: str | None = Field(default=None, description="Originating session")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary structured event data",
    )
    triggered_at: datetime | None = Field(
        default=None,
        description="When the event happened; defaults to receipt time",
    )


class AgentSessionRequest(BaseModel):
    """Body of a session upsert posted by an agent."""

    agent_id: str = Field(min_length=1, description="Stable agent identifier")
    session_id: str = Field(min_length=1, description="Agent session identifier")
    agent_name: str = Field(min_length=1, description="Display name")
    agent_type: Literal["main", "subagent"] = Field(
        default="subagent",
        description="Coordinator ('main') or sub-worker",
    )
    parent_session_id: str | None = None
    status: str = Field(
        default="active",
        description="initiated, active, idle, working, terminated or failed",
    )
    channel: str | None = None
    assigned_task: str | None = None
    progress_percent: float = Field(default=0, ge=0, le=100)
    summary: str | None = None
    metadata: dict[str, Any] | None = None


class LogResponse(BaseModel):
    """Result of a write through the logging endpoint."""

    success: bool
    error: str | None = None
    event_id: str | None = None
    agent_id: str | None = None


class HealthResponse(BaseModel):
    """Health check response with feed and room status."""

    status: Literal["healthy", "degraded"] = Field(
        description="healthy while the change feed is connected",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    is_connected: bool = Field(
        default=False,
        description="Whether the change feed subscription is live",
    )
    connection_error: str | None = Field(
        default=None,
        description="Reason for the last disconnect",
    )
    sub_agent_count: int = Field(
        default=0,
        description="Sub-agents currently held by the store",
    )
    animated_agent_count: int = Field(
        default=0,
        description="Agents currently drawn in the office",
    )


class HitTestResponse(BaseModel):
    """Agent under a point of the office floor, if any."""

    x: float
    y: float
    agent_id: str | None = None


class WorkstationResponse(BaseModel):
    """One seat of the office and its occupancy."""

    id: str
    x: float
    y: float
    type: str = Field(description="main, sub or idle")
    occupied: bool
    assigned_agent_id: str | None = None


class EventsSeenResponse(BaseModel):
    unseen_event_count: int = 0
