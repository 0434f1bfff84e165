"""In-process change feed for the operations tables.

This module provides a ChangeFeed class that fans committed row changes out
to any number of subscribers, one asyncio.Queue per subscriber. It stands in
for a hosted realtime transport: the outbound writer publishes to it after
every committed write, and the reconciliation pipeline consumes from it.

Everything runs on a single event loop, so no locking is needed; delivery
order per queue is publish order.
"""

import asyncio
from collections import defaultdict

import structlog

from events.types import FeedTable, RowChange

logger = structlog.get_logger(__name__)

# Queue items are RowChange objects; None is the close sentinel.
FeedQueue = asyncio.Queue[RowChange | None]


class ChangeFeed:
    """Async pub/sub feed of row changes, keyed by table.

    There is no buffering or replay: a change published while a table has no
    subscribers is dropped. Consumers that need history fetch a snapshot
    first and subscribe second.

    Usage:
        >>> feed = ChangeFeed()
        >>> queue = feed.subscribe(FeedTable.OPERATIONS_EVENTS)
        >>> await feed.publish(RowChange(
        ...     table=FeedTable.OPERATIONS_EVENTS,
        ...     event_type=ChangeType.INSERT,
        ...     new={"event_id": "evt-1", "event_type": "agent.error", "agent_id": "a"},
        ... ))
        >>> change = await queue.get()

    Attributes:
        _subscribers: Dict mapping table to list of subscriber queues
        _closed: Set once close() has signalled every subscriber
    """

    def __init__(self) -> None:
        """Initialize a feed with no subscribers."""
        self._subscribers: dict[FeedTable, list[FeedQueue]] = defaultdict(list)
        self._closed = False
        logger.info("change_feed_initialized")

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, table: FeedTable) -> FeedQueue:
        """Register a new subscriber queue for ``table``.

        Args:
            table: The table whose changes should be delivered.

        Returns:
            An asyncio.Queue receiving RowChange objects, and None once the
            feed is closed.

        Raises:
            RuntimeError: If the feed has already been closed.
        """
        if self._closed:
            raise RuntimeError("Change feed is closed")

        queue: FeedQueue = asyncio.Queue()
        self._subscribers[table].append(queue)
        logger.info(
            "feed_subscriber_added",
            table=table.value,
            subscriber_count=len(self._subscribers[table]),
        )
        return queue

    def unsubscribe(self, table: FeedTable, queue: FeedQueue) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        queues = self._subscribers.get(table)
        if not queues or queue not in queues:
            logger.warning("feed_unsubscribe_queue_not_found", table=table.value)
            return

        queues.remove(queue)
        if not queues:
            del self._subscribers[table]
        logger.info(
            "feed_subscriber_removed",
            table=table.value,
            subscriber_count=len(queues),
        )

    async def publish(self, change: RowChange) -> None:
        """Deliver ``change`` to every subscriber of its table.

        Queues are unbounded, so this never waits on a slow consumer.
        """
        self.publish_nowait(change)

    def publish_nowait(self, change: RowChange) -> None:
        """Synchronous variant of publish() for callers outside a coroutine."""
        if self._closed:
            logger.warning(
                "feed_publish_after_close",
                table=change.table.value,
                event_type=change.event_type.value,
            )
            return

        subscribers = list(self._subscribers.get(change.table, []))
        if not subscribers:
            logger.debug(
                "feed_change_dropped_no_subscribers",
                table=change.table.value,
                event_type=change.event_type.value,
            )
            return

        for queue in subscribers:
            queue.put_nowait(change)

        logger.debug(
            "feed_change_published",
            table=change.table.value,
            event_type=change.event_type.value,
            subscriber_count=len(subscribers),
        )

    def subscriber_count(self, table: FeedTable) -> int:
        return len(self._subscribers.get(table, []))

    async def close(self) -> None:
        """Signal every subscriber with the None sentinel and drop them."""
        if self._closed:
            return
        self._closed = True

        signalled = 0
        for queues in self._subscribers.values():
            for queue in queues:
                queue.put_nowait(None)
                signalled += 1
        self._subscribers.clear()
        logger.info("change_feed_closed", subscribers_signalled=signalled)
