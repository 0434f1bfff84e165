"""Tests for reconcile/source.py -- the in-process feed subscription."""

import asyncio

from events.bus import ChangeFeed
from events.types import ChangeType, FeedTable, RowChange, SubscriptionStatus
from reconcile.source import LocalFeedSubscription

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Recorder:
    """Collects handler calls."""

    def __init__(self) -> None:
        self.sessions: list[RowChange] = []
        self.events: list[RowChange] = []
        self.statuses: list[tuple[SubscriptionStatus, str | None]] = []

    def on_session(self, change: RowChange) -> None:
        self.sessions.append(change)

    def on_event(self, change: RowChange) -> None:
        self.events.append(change)

    def on_status(self, status: SubscriptionStatus, error: str | None) -> None:
        self.statuses.append((status, error))


def _session(agent_id: str) -> RowChange:
    return RowChange(
        table=FeedTable.AGENT_SESSIONS, event_type=ChangeType.INSERT, new={"agent_id": agent_id}
    )


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# =========================================================================
# LocalFeedSubscription
# =========================================================================


class TestLocalFeedSubscription:
    async def test_reports_subscribed(self, feed: ChangeFeed) -> None:
        rec = Recorder()
        sub = LocalFeedSubscription(feed, rec.on_session, rec.on_event, rec.on_status)
        assert rec.statuses == [(SubscriptionStatus.SUBSCRIBED, None)]
        assert feed.subscriber_count(FeedTable.AGENT_SESSIONS) == 1
        assert feed.subscriber_count(FeedTable.OPERATIONS_EVENTS) == 1
        await sub.close()

    async def test_routes_changes_by_table(self, feed: ChangeFeed) -> None:
        rec = Recorder()
        sub = LocalFeedSubscription(feed, rec.on_session, rec.on_event, rec.on_status)
        await feed.publish(_session("a"))
        await feed.publish(
            RowChange(
                table=FeedTable.OPERATIONS_EVENTS,
                event_type=ChangeType.INSERT,
                new={"event_id": "e1"},
            )
        )
        await _drain()
        assert [c.new["agent_id"] for c in rec.sessions] == ["a"]
        assert [c.new["event_id"] for c in rec.events] == ["e1"]
        await sub.close()

    async def test_handler_error_does_not_stop_consumer(self, feed: ChangeFeed) -> None:
        rec = Recorder()
        seen: list[str] = []

        def _flaky(change: RowChange) -> None:
            if change.new["agent_id"] == "bad":
                raise ValueError("cannot handle")
            seen.append(change.new["agent_id"])

        sub = LocalFeedSubscription(feed, _flaky, rec.on_event, rec.on_status)
        for agent_id in ("a", "bad", "b"):
            await feed.publish(_session(agent_id))
        await _drain()
        assert seen == ["a", "b"]
        assert rec.statuses == [(SubscriptionStatus.SUBSCRIBED, None)]
        await sub.close()

    async def test_feed_close_reports_closed(self, feed: ChangeFeed) -> None:
        rec = Recorder()
        sub = LocalFeedSubscription(feed, rec.on_session, rec.on_event, rec.on_status)
        await feed.close()
        await _drain()
        assert (SubscriptionStatus.CLOSED, "Change feed closed") in rec.statuses
        await sub.close()

    async def test_close_unsubscribes_quietly(self, feed: ChangeFeed) -> None:
        rec = Recorder()
        sub = LocalFeedSubscription(feed, rec.on_session, rec.on_event, rec.on_status)
        await sub.close()
        await sub.close()
        assert feed.subscriber_count(FeedTable.AGENT_SESSIONS) == 0
        assert feed.subscriber_count(FeedTable.OPERATIONS_EVENTS) == 0
        assert rec.statuses == [(SubscriptionStatus.SUBSCRIBED, None)]
