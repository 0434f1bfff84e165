"""Canonical state store for the Operations Room.

Holds the coordinator, the keyed sub-agent collection, the task board, the
bounded live feed and the connection status. It is the single source of
truth for everything downstream of the reconciliation pipeline.

Every setter builds a complete new OperationsState and swaps it in with a
single assignment, then notifies listeners. Readers therefore only ever see
whole states. There is no transaction spanning several setters: a composite
change is two sequential, independently atomic calls.

Usage:
    >>> store = OperationsStore(event_log_capacity=50)
    >>> unsubscribe = store.subscribe(lambda action, state: print(action))
    >>> store.set_connected(True)
    set_connected
    >>> store.state.is_connected
    True
"""

from collections.abc import Callable, Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_serializer

from models.domain import (
    ActivityEvent,
    Agent,
    SubAgent,
    Task,
    TaskFlow,
    TaskStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


class OperationsState(BaseModel):
    """Immutable snapshot of the store.

    The collections are read-only views; only the store's setters change them.

    Attributes:
        main_agent: The coordinator, once observed.
        sub_agents: Sub-agents keyed by agent id.
        task_flow: The task board.
        live_feed: Most-recent-first event log, never longer than the capacity.
        is_connected: Whether the change feed is currently live.
        connection_error: Human-readable reason for the last disconnect.
        unseen_event_count: Events added since the last mark_events_seen().
        last_event_at: When the most recent event was added.
        session_started_at: When the coordinator was first observed.
    """

    model_config = ConfigDict(frozen=True)

    main_agent: Agent | None = None
    sub_agents: Mapping[str, SubAgent] = Field(default_factory=lambda: MappingProxyType({}))
    task_flow: TaskFlow = Field(default_factory=TaskFlow)
    live_feed: tuple[ActivityEvent, ...] = ()
    is_connected: bool = False
    connection_error: str | None = None
    unseen_event_count: int = 0
    last_event_at: datetime | None = None
    session_started_at: datetime | None = None

    @field_serializer("sub_agents")
    def _serialize_sub_agents(self, sub_agents: Mapping[str, SubAgent]) -> dict[str, SubAgent]:
        return dict(sub_agents)


StoreListener = Callable[[str, OperationsState], None]


class OperationsStore:
    """Observable store with atomic setters.

    Attributes:
        event_log_capacity: Maximum length of the live feed.
    """

    def __init__(self, event_log_capacity: int = 50) -> None:
        if event_log_capacity < 1:
            raise ValueError("event_log_capacity must be at least 1")
        self.event_log_capacity = event_log_capacity
        self._state = OperationsState()
        self._listeners: list[StoreListener] = []
        logger.info("operations_store_initialized", event_log_capacity=event_log_capacity)

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    @property
    def state(self) -> OperationsState:
        """The current snapshot."""
        return self._state

    def get_sub_agent(self, agent_id: str) -> SubAgent | None:
        return self._state.sub_agents.get(agent_id)

    def active_sub_agents(self) -> list[SubAgent]:
        return [a for a in self._state.sub_agents.values() if not a.is_terminal]

    def completed_sub_agents(self) -> list[SubAgent]:
        return [a for a in self._state.sub_agents.values() if a.is_terminal]

    # -----------------------------------------------------------------
    # Subscription
    # -----------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register ``listener`` for every state transition.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, action: str, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(action, self._state)
            except Exception as e:
                logger.warning("store_listener_failed", action=action, error=str(e))

    # -----------------------------------------------------------------
    # Agents
    # -----------------------------------------------------------------

    def update_main_agent(self, agent: Agent) -> None:
        """Replace the coordinator record wholesale."""
        changes: dict[str, Any] = {"main_agent": agent}
        if self._state.session_started_at is None:
            changes["session_started_at"] = agent.started_at
        self._commit("update_main_agent", **changes)

    def add_sub_agent(self, agent: SubAgent) -> None:
        """Insert ``agent`` keyed by its id, replacing any record with the same id."""
        sub_agents = dict(self._state.sub_agents)
        sub_agents[agent.id] = agent
        self._commit("add_sub_agent", sub_agents=MappingProxyType(sub_agents))

    def update_sub_agent(
        self, agent_id: str, updates: Mapping[str, Any]
    ) -> SubAgent | None:
        """Merge ``updates`` into an existing sub-agent.

        ``last_activity_at`` is stamped with the current time unless the
        update carries its own value.

        Returns:
            The updated record, or None if no sub-agent has that id.
        """
        existing = self._state.sub_agents.get(agent_id)
        if existing is None:
            logger.debug("update_sub_agent_not_found", agent_id=agent_id)
            return None

        merged = {**existing.model_dump(), **updates, "id": agent_id}
        if updates.get("last_activity_at") is None:
            merged["last_activity_at"] = utcnow()
        updated = SubAgent.model_validate(merged)

        sub_agents = dict(self._state.sub_agents)
        sub_agents[agent_id] = updated
        self._commit("update_sub_agent", sub_agents=MappingProxyType(sub_agents))
        return updated

    def remove_sub_agent(self, agent_id: str) -> bool:
        """Delete a sub-agent. Returns False if it was not present."""
        if agent_id not in self._state.sub_agents:
            return False
        sub_agents = {k: v for k, v in self._state.sub_agents.items() if k != agent_id}
        self._commit("remove_sub_agent", sub_agents=MappingProxyType(sub_agents))
        return True

    # -----------------------------------------------------------------
    # Live feed
    # -----------------------------------------------------------------

    def add_event(self, event: ActivityEvent) -> None:
        """Prepend ``event`` to the live feed, evicting the oldest beyond capacity."""
        live_feed = (event, *self._state.live_feed)[: self.event_log_capacity]
        self._commit(
            "add_event",
            live_feed=live_feed,
            last_event_at=utcnow(),
            unseen_event_count=self._state.unseen_event_count + 1,
        )

    def clear_events(self) -> None:
        self._commit("clear_events", live_feed=(), unseen_event_count=0)

    def mark_events_seen(self) -> None:
        self._commit("mark_events_seen", unseen_event_count=0)

    # -----------------------------------------------------------------
    # Connection
    # -----------------------------------------------------------------

    def set_connected(self, connected: bool, error: str | None = None) -> None:
        """Record the feed's connection status and, on disconnect, the reason."""
        self._commit(
            "set_connected",
            is_connected=connected,
            connection_error=None if connected else error,
        )

    # -----------------------------------------------------------------
    # Task board
    # -----------------------------------------------------------------

    def update_task_flow(self, task_flow: TaskFlow) -> None:
        self._commit("update_task_flow", task_flow=task_flow)

    def upsert_task(self, task: Task) -> None:
        """Place ``task`` in its status column, removing it from any other."""
        self._commit("upsert_task", task_flow=self._state.task_flow.with_task(task))

    def move_task(self, task_id: str, to_status: TaskStatus) -> bool:
        """Move a task to another column.

        Returns:
            False if the task is unknown; True otherwise (including no-op moves).
        """
        task = self._state.task_flow.find(task_id)
        if task is None:
            logger.warning("move_task_not_found", task_id=task_id)
            return False
        if task.status == to_status:
            return True

        now = utcnow()
        moved = task.model_copy(
            update={
                "status": to_status,
                "updated_at": now,
                "completed_at": now if to_status == TaskStatus.DONE else None,
            }
        )
        self._commit("move_task", task_flow=self._state.task_flow.with_task(moved))
        return True
