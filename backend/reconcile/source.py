"""Change-feed sources: snapshot queries plus a live subscription.

ChangeFeedSource is the boundary the Reconciliation Pipeline depends on. The
bundled LocalFeedSource reads snapshots from OperationsDatabase and listens
on the in-process ChangeFeed; a hosted realtime backend would implement the
same protocol.
"""

import asyncio
import contextlib
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from events import ChangeFeed, FeedQueue, FeedTable, RowChange, SubscriptionStatus
from models.database import OperationsDatabase

logger = structlog.get_logger(__name__)

ChangeHandler = Callable[[RowChange], None]
StatusHandler = Callable[[SubscriptionStatus, str | None], None]


class FeedSubscription(Protocol):
    async def close(self) -> None: ...


class ChangeFeedSource(Protocol):
    """What the pipeline needs from a remote data source."""

    async def fetch_active_sessions(self, limit: int) -> list[dict[str, Any]]: ...

    async def fetch_recent_events(self, limit: int) -> list[dict[str, Any]]: ...

    def subscribe(
        self,
        on_session: ChangeHandler,
        on_event: ChangeHandler,
        on_status: StatusHandler,
    ) -> FeedSubscription: ...


class LocalFeedSubscription:
    """One consumer task per table, each draining its ChangeFeed queue.

    Handlers are invoked synchronously, one change at a time, in delivery
    order. A handler that raises is logged and the consumer moves on; a
    consumer that dies for any other reason reports ``error``.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        on_session: ChangeHandler,
        on_event: ChangeHandler,
        on_status: StatusHandler,
    ) -> None:
        self._feed = feed
        self._on_status = on_status
        self._closing = False
        self._queues: dict[FeedTable, FeedQueue] = {}
        self._tasks: list[asyncio.Task[None]] = []

        for table, handler in (
            (FeedTable.AGENT_SESSIONS, on_session),
            (FeedTable.OPERATIONS_EVENTS, on_event),
        ):
            queue = feed.subscribe(table)
            self._queues[table] = queue
            task = asyncio.create_task(
                self._consume(table, queue, handler), name=f"feed_consumer_{table.value}"
            )
            task.add_done_callback(self._on_consumer_done)
            self._tasks.append(task)

        logger.info("feed_subscription_started", tables=[t.value for t in self._queues])
        on_status(SubscriptionStatus.SUBSCRIBED, None)

    async def _consume(self, table: FeedTable, queue: FeedQueue, handler: ChangeHandler) -> None:
        while True:
            change = await queue.get()
            if change is None:
                logger.info("feed_consumer_closed", table=table.value)
                if not self._closing:
                    self._on_status(SubscriptionStatus.CLOSED, "Change feed closed")
                return
            try:
                handler(change)
            except Exception as e:
                logger.error(
                    "feed_change_handler_failed",
                    table=table.value,
                    event_type=change.event_type.value,
                    error=str(e),
                )

    def _on_consumer_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or self._closing:
            return
        error = task.exception()
        if error is not None:
            logger.error("feed_consumer_died", task=task.get_name(), error=str(error))
            self._on_status(SubscriptionStatus.ERROR, str(error))

    async def close(self) -> None:
        """Stop consuming. Only used at process shutdown."""
        if self._closing:
            return
        self._closing = True
        for table, queue in self._queues.items():
            if not self._feed.closed:
                self._feed.unsubscribe(table, queue)
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("feed_subscription_closed")


class LocalFeedSource:
    """ChangeFeedSource over OperationsDatabase and the in-process ChangeFeed."""

    def __init__(self, database: OperationsDatabase, feed: ChangeFeed) -> None:
        self.database = database
        self.feed = feed

    async def fetch_active_sessions(self, limit: int) -> list[dict[str, Any]]:
        return await self.database.fetch_active_sessions(limit)

    async def fetch_recent_events(self, limit: int) -> list[dict[str, Any]]:
        return await self.database.fetch_recent_events(limit)

    def subscribe(
        self,
        on_session: ChangeHandler,
        on_event: ChangeHandler,
        on_status: StatusHandler,
    ) -> LocalFeedSubscription:
        return LocalFeedSubscription(self.feed, on_session, on_event, on_status)
