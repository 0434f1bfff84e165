"""Reconciliation Pipeline: merges the remote change feed into the state store.

Initialization runs once per pipeline instance:

1. Snapshot: the newest non-terminal sessions and a recent event window are
   fetched, mapped and applied oldest first, so the live feed ends up in a
   deterministic newest-first order.
2. Subscription: live session and event changes are applied as they arrive.

Failures never propagate. A failed snapshot query is logged while the rows
of the other query are still applied. The subscription is attempted either
way; subscription trouble only flips the store's connection flag, which
is the one externally visible health signal.

Usage:
    >>> pipeline = ReconciliationPipeline(store, LocalFeedSource(db, feed))
    >>> await pipeline.initialize()
    >>> await pipeline.initialize()  # no-op
"""

from datetime import datetime
from typing import Any

import structlog

from events import ChangeType, RowChange, SubscriptionStatus
from models.domain import AgentStatus, SubAgentStatus, utcnow
from models.rows import AgentSessionRow
from reconcile.mapper import (
    event_to_task,
    parse_event_row,
    parse_session_row,
    row_to_agent,
    row_to_event,
    row_to_sub_agent,
)
from reconcile.source import ChangeFeedSource, FeedSubscription
from store import OperationsStore

logger = structlog.get_logger(__name__)

# How a sub-agent ends when its row is deleted or turns terminal.
_ENDING_STATUS: dict[str, SubAgentStatus] = {
    "terminated": SubAgentStatus.COMPLETED,
    "failed": SubAgentStatus.FAILED,
}


class ReconciliationPipeline:
    """Applies snapshot rows and live changes to an OperationsStore.

    Attributes:
        store: The canonical store this pipeline writes to.
        source: Snapshot queries and live subscription.
        session_limit: Number of sessions fetched by the snapshot.
        event_limit: Number of events fetched by the snapshot.
    """

    def __init__(
        self,
        store: OperationsStore,
        source: ChangeFeedSource,
        *,
        session_limit: int = 50,
        event_limit: int = 50,
    ) -> None:
        self.store = store
        self.source = source
        self.session_limit = session_limit
        self.event_limit = event_limit
        self._initialized = False
        self._subscription: FeedSubscription | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def subscription(self) -> FeedSubscription | None:
        return self._subscription

    async def initialize(self) -> None:
        """Load the snapshot, then subscribe. Later calls do nothing."""
        if self._initialized:
            logger.debug("pipeline_already_initialized")
            return
        self._initialized = True

        await self._load_snapshot()
        self._subscribe()

    async def close(self) -> None:
        """Close the live subscription. Process shutdown only."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    # -----------------------------------------------------------------
    # Snapshot
    # -----------------------------------------------------------------

    async def _load_snapshot(self) -> None:
        # Rows from a query that succeeded are applied even if the other failed.
        errors: list[str] = []

        try:
            session_rows = await self.source.fetch_active_sessions(self.session_limit)
        except Exception as e:
            logger.error("snapshot_sessions_fetch_failed", error=str(e))
            errors.append(str(e) or "Failed to load agent sessions")
            session_rows = []

        try:
            event_rows = await self.source.fetch_recent_events(self.event_limit)
        except Exception as e:
            logger.error("snapshot_events_fetch_failed", error=str(e))
            errors.append(str(e) or "Failed to load operations events")
            event_rows = []

        # Both queries return newest first.
        for raw in reversed(session_rows):
            row = parse_session_row(raw)
            if row is None:
                continue
            if row.is_main:
                self.store.update_main_agent(row_to_agent(row))
            else:
                self.store.add_sub_agent(row_to_sub_agent(row))

        for raw in reversed(event_rows):
            self._apply_event_row(raw)

        if errors:
            self.store.set_connected(False, "; ".join(errors))
        else:
            self.store.set_connected(True)
        logger.info(
            "snapshot_loaded",
            sessions=len(session_rows),
            events=len(event_rows),
            failed_queries=len(errors),
        )

    def _subscribe(self) -> None:
        try:
            self._subscription = self.source.subscribe(
                on_session=self.handle_session_change,
                on_event=self.handle_event_change,
                on_status=self.handle_subscription_status,
            )
        except Exception as e:
            logger.error("feed_subscribe_failed", error=str(e))
            self.store.set_connected(False, str(e) or "Subscription failed")

    # -----------------------------------------------------------------
    # Live changes
    # -----------------------------------------------------------------

    def handle_subscription_status(
        self, status: SubscriptionStatus, error: str | None = None
    ) -> None:
        logger.info("feed_subscription_status", status=status.value, error=error)
        if status == SubscriptionStatus.SUBSCRIBED:
            self.store.set_connected(True)
        elif status in (
            SubscriptionStatus.ERROR,
            SubscriptionStatus.TIMED_OUT,
            SubscriptionStatus.CLOSED,
        ):
            self.store.set_connected(False, error or "Connection failed")

    def handle_session_change(self, change: RowChange) -> None:
        """Apply one ``agent_sessions`` change."""
        row = parse_session_row(change.row)
        if row is None:
            return
        logger.debug(
            "session_change",
            event_type=change.event_type.value,
            agent_id=row.agent_id,
            status=row.status,
        )

        # The coordinator is always replaced wholesale; a deleted session idles it.
        if row.is_main:
            agent = row_to_agent(row)
            if change.event_type == ChangeType.DELETE:
                agent = agent.model_copy(update={"status": AgentStatus.IDLE})
            self.store.update_main_agent(agent)
            return

        if change.event_type == ChangeType.DELETE or row.is_terminal:
            self._end_sub_agent(row)
        elif change.event_type == ChangeType.INSERT:
            self.store.add_sub_agent(row_to_sub_agent(row))
        elif change.event_type == ChangeType.UPDATE:
            sub_agent = row_to_sub_agent(row)
            if self.store.get_sub_agent(row.agent_id) is None:
                # Last writer wins: an update for an unseen agent creates it.
                self.store.add_sub_agent(sub_agent)
            else:
                self.store.update_sub_agent(row.agent_id, sub_agent.model_dump())

    def _end_sub_agent(self, row: AgentSessionRow) -> None:
        # Removal is left to the animation driver after its grace period.
        updates: dict[str, Any] = {
            "status": _ENDING_STATUS.get(row.status, SubAgentStatus.IDLE),
        }
        completed_at: datetime | None = row.terminated_at
        if completed_at is None and row.status in _ENDING_STATUS:
            completed_at = utcnow()
        if completed_at is not None:
            updates["completed_at"] = completed_at
        if row.summary:
            updates["summary"] = row.summary

        if self.store.update_sub_agent(row.agent_id, updates) is None:
            logger.debug("end_unknown_sub_agent", agent_id=row.agent_id)

    def handle_event_change(self, change: RowChange) -> None:
        """Apply one ``operations_events`` change. Only inserts matter."""
        if change.event_type != ChangeType.INSERT:
            return
        self._apply_event_row(change.new)

    def _apply_event_row(self, raw: dict[str, Any] | None) -> None:
        row = parse_event_row(raw)
        if row is None:
            return
        event = row_to_event(row)
        self.store.add_event(event)

        task = event_to_task(event)
        if task is not None:
            self.store.upsert_task(task)
