"""HTTP API routes for the Operations Room backend.

This module defines the inbound logging endpoint agents post to, the
read-only room endpoints (state, frame, hit-testing, workstations) and the
health check. The live room stream is handled via WebSocket in websocket.py.
"""

from __future__ import annotations

import secrets
import time
from typing import TYPE_CHECKING, Annotated, Any

import structlog
from fastapi import APIRouter, Body, Header, HTTPException, Path, Query, status
from pydantic import ValidationError

from config import settings
from models.schemas import (
    AgentSessionRequest,
    EventsSeenResponse,
    HealthResponse,
    HitTestResponse,
    LogResponse,
    OperationEventRequest,
    WorkstationResponse,
)
from office.animation import RenderableAgent
from office.layout import Point
from store.state_store import OperationsState

if TYPE_CHECKING:
    from office.driver import AnimationDriver
    from reconcile.writer import OperationsWriter
    from store.state_store import OperationsStore

logger = structlog.get_logger(__name__)

router = APIRouter()

_EVENT_REQUIRED_FIELDS = ("event_id", "event_type", "agent_id")
_SESSION_REQUIRED_FIELDS = ("agent_id", "session_id", "agent_name")

# -----------------------------------------------------------------------------
# Dependencies (set during application startup)
# -----------------------------------------------------------------------------

_store: OperationsStore | None = None
_driver: AnimationDriver | None = None
_writer: OperationsWriter | None = None


def set_operations_store(store: OperationsStore) -> None:
    """Set the state store read by the room endpoints."""
    global _store
    _store = store
    logger.info("operations_store_configured")


def set_animation_driver(driver: AnimationDriver) -> None:
    """Set the animation driver whose frames the room endpoints expose."""
    global _driver
    _driver = driver
    logger.info("animation_driver_configured")


def set_operations_writer(writer: OperationsWriter) -> None:
    """Set the writer used by the logging endpoint."""
    global _writer
    _writer = writer
    logger.info("operations_writer_configured")


def get_operations_store() -> OperationsStore:
    """Get the state store.

    Raises:
        RuntimeError: If the store has not been configured.
    """
    if _store is None:
        logger.error("operations_store_not_configured")
        raise RuntimeError(
            "OperationsStore not configured. Call set_operations_store() during startup."
        )
    return _store


def get_animation_driver() -> AnimationDriver:
    """Get the animation driver.

    Raises:
        RuntimeError: If the driver has not been configured.
    """
    if _driver is None:
        logger.error("animation_driver_not_configured")
        raise RuntimeError(
            "AnimationDriver not configured. Call set_animation_driver() during startup."
        )
    return _driver


def get_operations_writer() -> OperationsWriter:
    """Get the outbound writer.

    Raises:
        RuntimeError: If the writer has not been configured.
    """
    if _writer is None:
        logger.error("operations_writer_not_configured")
        raise RuntimeError(
            "OperationsWriter not configured. Call set_operations_writer() during startup."
        )
    return _writer


def _unavailable(e: RuntimeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(e),
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _verify_api_key(authorization: str | None) -> None:
    """Reject the request unless it carries the configured bearer key.

    An empty ``operations_api_key`` disables the check.
    """
    expected = settings.operations_api_key
    if not expected:
        return

    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not provided or not secrets.compare_digest(provided, expected):
        logger.warning("operations_api_key_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def _missing_fields(body: dict[str, Any], required: tuple[str, ...]) -> list[str]:
    return [name for name in required if not body.get(name)]


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


# -----------------------------------------------------------------------------
# Inbound logging
# -----------------------------------------------------------------------------


@router.post(
    "/api/operations/log",
    response_model=LogResponse,
    summary="Log an operations event or upsert an agent session",
    description=(
        "Bodies with an event_type are appended to the event log; bodies with "
        "an agent_name upsert the agent's session keyed on agent_id."
    ),
)
async def log_operation(
    body: Annotated[Any, Body()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> LogResponse:
    """Dispatch an agent's log request to the writer."""
    _verify_api_key(authorization)

    if not isinstance(body, dict):
        raise _bad_request("Invalid request body")

    try:
        writer = get_operations_writer()
    except RuntimeError as e:
        raise _unavailable(e) from e

    if "event_type" in body:
        missing = _missing_fields(body, _EVENT_REQUIRED_FIELDS)
        if missing:
            raise _bad_request(f"Missing required fields: {', '.join(_EVENT_REQUIRED_FIELDS)}")
        try:
            event = OperationEventRequest.model_validate(body)
        except ValidationError as e:
            raise _bad_request(f"Invalid event: {e.error_count()} validation error(s)") from e

        result = await writer.log_operation_event(
            event_id=event.event_id,
            event_type=event.event_type,
            agent_id=event.agent_id,
            session_id=event.session_id,
            payload=event.payload,
            triggered_at=event.triggered_at,
        )
        if not result.success:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to log event: {result.error}",
            )
        return LogResponse(success=True, event_id=event.event_id)

    if "agent_name" in body:
        missing = _missing_fields(body, _SESSION_REQUIRED_FIELDS)
        if missing:
            raise _bad_request(
                f"Missing required fields: {', '.join(_SESSION_REQUIRED_FIELDS)}"
            )
        try:
            session = AgentSessionRequest.model_validate(body)
        except ValidationError as e:
            raise _bad_request(f"Invalid session: {e.error_count()} validation error(s)") from e

        result = await writer.upsert_agent_session(
            agent_id=session.agent_id,
            session_id=session.session_id,
            agent_name=session.agent_name,
            agent_type=session.agent_type,
            parent_session_id=session.parent_session_id,
            status=session.status,
            channel=session.channel,
            assigned_task=session.assigned_task,
            progress_percent=session.progress_percent,
            summary=session.summary,
            metadata=session.metadata,
        )
        if not result.success:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to upsert session: {result.error}",
            )
        return LogResponse(success=True, agent_id=session.agent_id)

    raise _bad_request("Unknown request type: expected event_type or agent_name")


@router.delete(
    "/api/operations/sessions/{agent_id}",
    response_model=LogResponse,
    summary="End an agent session",
    description="Delete the agent's session row; the room keeps it until its grace period ends.",
)
async def end_session(
    agent_id: Annotated[str, Path(description="The agent ID")],
    authorization: Annotated[str | None, Header()] = None,
) -> LogResponse:
    """Delete a session row and publish the deletion."""
    _verify_api_key(authorization)

    try:
        writer = get_operations_writer()
    except RuntimeError as e:
        raise _unavailable(e) from e

    try:
        existing = await writer.database.get_session(agent_id)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to look up session: {e}",
        ) from e
    if existing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent session {agent_id} not found",
        )

    result = await writer.end_agent_session(agent_id)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to end session: {result.error}",
        )
    return LogResponse(success=True, agent_id=agent_id)


# -----------------------------------------------------------------------------
# Room state
# -----------------------------------------------------------------------------


@router.get(
    "/api/state",
    response_model=OperationsState,
    summary="Canonical state snapshot",
)
async def get_state() -> OperationsState:
    try:
        return get_operations_store().state
    except RuntimeError as e:
        raise _unavailable(e) from e


@router.post(
    "/api/events/seen",
    response_model=EventsSeenResponse,
    summary="Mark the live feed as seen",
)
async def mark_events_seen() -> EventsSeenResponse:
    try:
        store = get_operations_store()
    except RuntimeError as e:
        raise _unavailable(e) from e
    store.mark_events_seen()
    return EventsSeenResponse(unseen_event_count=store.state.unseen_event_count)


@router.get(
    "/api/frame",
    response_model=list[RenderableAgent],
    summary="Latest renderable frame",
)
async def get_frame() -> list[RenderableAgent]:
    try:
        return get_animation_driver().frame
    except RuntimeError as e:
        raise _unavailable(e) from e


@router.get(
    "/api/frame/hit",
    response_model=HitTestResponse,
    summary="Agent under a point",
    description="Returns the id of the agent drawn at (x, y) in the latest frame, or null.",
)
async def hit_test(
    x: Annotated[float, Query(description="Floor x coordinate")],
    y: Annotated[float, Query(description="Floor y coordinate")],
) -> HitTestResponse:
    try:
        driver = get_animation_driver()
    except RuntimeError as e:
        raise _unavailable(e) from e
    return HitTestResponse(x=x, y=y, agent_id=driver.hit_test(Point(x, y)))


@router.get(
    "/api/workstations",
    response_model=list[WorkstationResponse],
    summary="Workstation pool",
)
async def list_workstations() -> list[WorkstationResponse]:
    try:
        driver = get_animation_driver()
    except RuntimeError as e:
        raise _unavailable(e) from e
    return [
        WorkstationResponse(
            id=w.id,
            x=w.position.x,
            y=w.position.y,
            type=w.type.value,
            occupied=w.occupied,
            assigned_agent_id=w.assigned_agent_id,
        )
        for w in driver.allocator.workstations()
    ]


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with change-feed and room status.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint with feed status.

    Reports healthy while the change feed is connected and degraded
    otherwise, including before startup has configured the store.
    """
    is_connected = False
    connection_error: str | None = None
    sub_agent_count = 0
    animated_agent_count = 0

    try:
        state = get_operations_store().state
        is_connected = state.is_connected
        connection_error = state.connection_error
        sub_agent_count = len(state.sub_agents)
        animated_agent_count = len(get_animation_driver().agent_ids())
    except RuntimeError:
        # Not configured yet (e.g., during startup)
        pass

    return HealthResponse(
        status="healthy" if is_connected else "degraded",
        timestamp=time.time(),
        is_connected=is_connected,
        connection_error=connection_error,
        sub_agent_count=sub_agent_count,
        animated_agent_count=animated_agent_count,
    )
