"""Agent-side client for the Operations Room logging endpoint.

Agents use OperationsLogger to report what they are doing. Every call is
best-effort: network or server failures come back as a LogResult with
``success=False`` and are never raised, so logging can never break the
agent doing the work.

Usage:
    >>> async with OperationsLogger(
    ...     "http://localhost:8000",
    ...     api_key="secret",
    ...     agent_id="agent:main:main",
    ...     session_id="sess-1",
    ... ) as ops:
    ...     await ops.upsert_session("Coordinator", agent_type="main", status="working")
    ...     await ops.log_work_activity("tool_execution", tool_name="web_search")
"""

import time
import uuid
from datetime import datetime
from typing import Any, Literal

import httpx
import structlog
from pydantic import BaseModel

from models.domain import ActivityEventType, utcnow

logger = structlog.get_logger(__name__)

LOG_PATH = "/api/operations/log"


class LogResult(BaseModel):
    """Outcome of a logging call."""

    success: bool
    error: str | None = None
    event_id: str | None = None


def new_event_id(event_type: str) -> str:
    """Event ids look like ``evt-<type>-<uuid4>``."""
    return f"evt-{event_type}-{uuid.uuid4()}"


class OperationsLogger:
    """Posts events and session upserts on behalf of one agent session.

    Attributes:
        base_url: Root URL of the Operations Room backend.
        agent_id: Agent every event is attributed to.
        session_id: Session every event is attributed to.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        agent_id: str,
        session_id: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.agent_id = agent_id
        self.session_id = session_id
        self._api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._started = time.monotonic()

    async def __aenter__(self) -> "OperationsLogger":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    async def _post(self, body: dict[str, Any]) -> LogResult:
        try:
            response = await self._client.post(
                f"{self.base_url}{LOG_PATH}", json=body, headers=self._headers()
            )
        except httpx.HTTPError as e:
            logger.warning("operations_log_request_failed", error=str(e))
            return LogResult(success=False, error=str(e))

        if response.is_error:
            detail: Any = response.reason_phrase
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                detail = data.get("detail") or data.get("error") or detail
            logger.warning(
                "operations_log_rejected",
                status_code=response.status_code,
                error=str(detail),
            )
            return LogResult(success=False, error=str(detail))
        return LogResult(success=True)

    # -----------------------------------------------------------------
    # Core calls
    # -----------------------------------------------------------------

    async def log_event(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        triggered_at: datetime | None = None,
    ) -> LogResult:
        """Append one event to the operations log."""
        event_id = new_event_id(event_type)
        body = {
            "event_id": event_id,
            "event_type": event_type,
            "agent_id": self.agent_id,
            "session_id": self.session_id,
            "payload": payload or {},
            "triggered_at": (triggered_at or utcnow()).isoformat(),
        }
        result = await self._post(body)
        if result.success:
            logger.debug("operations_event_logged", event_id=event_id, event_type=event_type)
            return result.model_copy(update={"event_id": event_id})
        return result

    async def upsert_session(
        self,
        agent_name: str,
        agent_type: Literal["main", "subagent"] = "subagent",
        status: str = "active",
        parent_session_id: str | None = None,
        channel: str | None = None,
        assigned_task: str | None = None,
        progress_percent: float = 0,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LogResult:
        """Create or update this agent's session row."""
        body: dict[str, Any] = {
            "agent_id": self.agent_id,
            "session_id": self.session_id,
            "agent_name": agent_name,
            "agent_type": agent_type,
            "status": status,
            "progress_percent": progress_percent,
        }
        optional = {
            "parent_session_id": parent_session_id,
            "channel": channel,
            "assigned_task": assigned_task,
            "summary": summary,
            "metadata": metadata,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return await self._post(body)

    # -----------------------------------------------------------------
    # Convenience events
    # -----------------------------------------------------------------

    async def log_session_start(
        self,
        agent_name: str,
        agent_type: Literal["main", "subagent"] = "main",
        initial_task: str | None = None,
        channel: str | None = None,
    ) -> LogResult:
        self._started = time.monotonic()
        return await self.log_event(
            ActivityEventType.SESSION_STARTED,
            {
                "agent_name": agent_name,
                "agent_type": agent_type,
                "initial_task": initial_task,
                "channel": channel or "system",
            },
        )

    async def log_session_end(
        self, summary: str, status: Literal["completed", "failed"] = "completed"
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.SESSION_TERMINATED,
            {"status": status, "summary": summary, "total_duration_ms": self._elapsed_ms()},
        )

    async def log_subagent_spawned(
        self,
        subagent_id: str,
        subagent_name: str,
        assigned_task: str,
        parent_session_id: str | None = None,
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.SUBAGENT_SPAWNED,
            {
                "subagent_id": subagent_id,
                "subagent_name": subagent_name,
                "assigned_task": assigned_task,
                "status": "active",
                "parent_session_id": parent_session_id or self.session_id,
                "started_at": utcnow().isoformat(),
            },
        )

    async def log_subagent_completed(
        self,
        subagent_name: str,
        summary: str,
        deliverables: list[str] | None = None,
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.SUBAGENT_COMPLETED,
            {
                "subagent_name": subagent_name,
                "status": "completed",
                "result": "SUCCESS",
                "summary": summary,
                "deliverables": deliverables or [],
                "total_duration_ms": self._elapsed_ms(),
            },
        )

    async def log_task_state_change(
        self,
        task_id: str,
        old_state: str,
        new_state: str,
        title: str,
        priority: str = "medium",
    ) -> LogResult:
        """Report a task board move; the room places the card in ``new_state``."""
        return await self.log_event(
            ActivityEventType.TASK_STATE_CHANGED,
            {
                "task_id": task_id,
                "old_state": old_state,
                "new_state": new_state,
                "title": title,
                "priority": priority,
            },
        )

    async def log_work_activity(
        self,
        activity_type: Literal["tool_execution", "message", "task_update", "other"],
        tool_name: str | None = None,
        status: Literal["started", "completed", "failed"] = "completed",
        result: str | None = None,
        duration_ms: int = 0,
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.WORK_ACTIVITY,
            {
                "activity_type": activity_type,
                "tool_name": tool_name,
                "status": status,
                "result": result,
                "duration_ms": duration_ms,
            },
        )

    async def log_status_update(
        self,
        status: Literal["active", "idle", "working", "waiting"],
        progress: int = 0,
        current_task: str | None = None,
        estimated_completion: datetime | None = None,
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.STATUS_UPDATED,
            {
                "status": status,
                "progress_percent": progress,
                "current_task": current_task,
                "last_activity": utcnow().isoformat(),
                "estimated_completion": (
                    estimated_completion.isoformat() if estimated_completion else None
                ),
            },
        )

    async def log_error(
        self,
        severity: Literal["warning", "error", "critical"],
        error_type: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> LogResult:
        return await self.log_event(
            ActivityEventType.ERROR,
            {
                "severity": severity,
                "error_type": error_type,
                "message": message,
                "context": context or {},
            },
        )
