"""Tests for events/bus.py -- in-process change feed.

Covers publish/subscribe per table, publish order, unsubscribe, dropping
changes without subscribers, and the close sentinel.
"""

import asyncio

import pytest

from events.bus import ChangeFeed
from events.types import ChangeType, FeedTable, RowChange

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_change(agent_id: str = "a", event_type: ChangeType = ChangeType.INSERT) -> RowChange:
    return RowChange(
        table=FeedTable.AGENT_SESSIONS,
        event_type=event_type,
        new={"agent_id": agent_id, "agent_name": agent_id},
    )


# =========================================================================
# Subscribe / Publish basics
# =========================================================================


class TestSubscribePublish:
    async def test_subscribe_returns_queue(self, feed: ChangeFeed) -> None:
        assert isinstance(feed.subscribe(FeedTable.AGENT_SESSIONS), asyncio.Queue)

    async def test_publish_delivers_to_subscriber(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        await feed.publish(_session_change("writer"))
        received = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert received is not None
        assert received.new == {"agent_id": "writer", "agent_name": "writer"}

    async def test_every_subscriber_gets_a_copy(self, feed: ChangeFeed) -> None:
        q1 = feed.subscribe(FeedTable.AGENT_SESSIONS)
        q2 = feed.subscribe(FeedTable.AGENT_SESSIONS)
        await feed.publish(_session_change())
        assert q1.qsize() == q2.qsize() == 1

    async def test_tables_are_isolated(self, feed: ChangeFeed) -> None:
        sessions = feed.subscribe(FeedTable.AGENT_SESSIONS)
        events = feed.subscribe(FeedTable.OPERATIONS_EVENTS)
        await feed.publish(_session_change())
        assert sessions.qsize() == 1
        assert events.empty()

    async def test_delivery_preserves_publish_order(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        for i in range(5):
            feed.publish_nowait(_session_change(f"a{i}"))
        received = [queue.get_nowait() for _ in range(5)]
        assert [c.new["agent_id"] for c in received] == ["a0", "a1", "a2", "a3", "a4"]

    async def test_change_without_subscribers_is_dropped(self, feed: ChangeFeed) -> None:
        await feed.publish(_session_change())
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        assert queue.empty()


# =========================================================================
# RowChange
# =========================================================================


class TestRowChange:
    def test_row_prefers_new(self) -> None:
        change = RowChange(
            table=FeedTable.AGENT_SESSIONS,
            event_type=ChangeType.UPDATE,
            new={"agent_id": "new"},
            old={"agent_id": "old"},
        )
        assert change.row == {"agent_id": "new"}

    def test_row_falls_back_to_old(self) -> None:
        change = RowChange(
            table=FeedTable.AGENT_SESSIONS,
            event_type=ChangeType.DELETE,
            old={"agent_id": "old"},
        )
        assert change.row == {"agent_id": "old"}


# =========================================================================
# Unsubscribe
# =========================================================================


class TestUnsubscribe:
    async def test_unsubscribe_removes_queue(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        feed.unsubscribe(FeedTable.AGENT_SESSIONS, queue)
        assert feed.subscriber_count(FeedTable.AGENT_SESSIONS) == 0

    async def test_unsubscribe_unknown_queue_is_noop(self, feed: ChangeFeed) -> None:
        feed.unsubscribe(FeedTable.AGENT_SESSIONS, asyncio.Queue())

    async def test_unsubscribed_queue_stops_receiving(self, feed: ChangeFeed) -> None:
        keep = feed.subscribe(FeedTable.AGENT_SESSIONS)
        drop = feed.subscribe(FeedTable.AGENT_SESSIONS)
        feed.unsubscribe(FeedTable.AGENT_SESSIONS, drop)
        await feed.publish(_session_change())
        assert keep.qsize() == 1
        assert drop.empty()


# =========================================================================
# Close
# =========================================================================


class TestClose:
    async def test_close_sends_sentinel(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.OPERATIONS_EVENTS)
        await feed.close()
        assert await asyncio.wait_for(queue.get(), timeout=1.0) is None
        assert feed.closed

    async def test_subscribe_after_close_raises(self, feed: ChangeFeed) -> None:
        await feed.close()
        with pytest.raises(RuntimeError):
            feed.subscribe(FeedTable.AGENT_SESSIONS)

    async def test_publish_after_close_is_dropped(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        await feed.close()
        await feed.publish(_session_change())
        assert queue.get_nowait() is None
        assert queue.empty()

    async def test_close_is_idempotent(self, feed: ChangeFeed) -> None:
        queue = feed.subscribe(FeedTable.AGENT_SESSIONS)
        await feed.close()
        await feed.close()
        assert queue.qsize() == 1
