"""Tests for reconcile/pipeline.py -- snapshot + live change reconciliation.

Uses an in-memory FakeSource in place of the database-backed source, so
each test controls the snapshot rows, failures and change delivery.
"""

import random
from typing import Any

import pytest

from events.types import ChangeType, FeedTable, RowChange, SubscriptionStatus
from models.domain import AgentStatus, SubAgentStatus, TaskStatus
from office.driver import AnimationDriver
from office.layout import WorkstationType
from reconcile.pipeline import ReconciliationPipeline
from reconcile.source import ChangeHandler, StatusHandler
from store.state_store import OperationsStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeSubscription:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeSource:
    """ChangeFeedSource double with scripted snapshots and manual delivery."""

    def __init__(
        self,
        sessions: list[dict[str, Any]] | None = None,
        events: list[dict[str, Any]] | None = None,
        fetch_error: Exception | None = None,
        events_error: Exception | None = None,
        subscribe_error: Exception | None = None,
    ) -> None:
        self.sessions = sessions or []
        self.events = events or []
        self.fetch_error = fetch_error
        self.events_error = events_error
        self.subscribe_error = subscribe_error
        self.fetch_calls = 0
        self.subscribe_calls = 0
        self.on_session: ChangeHandler | None = None
        self.on_event: ChangeHandler | None = None
        self.on_status: StatusHandler | None = None

    async def fetch_active_sessions(self, limit: int) -> list[dict[str, Any]]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.sessions[:limit]

    async def fetch_recent_events(self, limit: int) -> list[dict[str, Any]]:
        if self.events_error is not None:
            raise self.events_error
        return self.events[:limit]

    def subscribe(
        self,
        on_session: ChangeHandler,
        on_event: ChangeHandler,
        on_status: StatusHandler,
    ) -> FakeSubscription:
        self.subscribe_calls += 1
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.on_session, self.on_event, self.on_status = on_session, on_event, on_status
        return FakeSubscription()


def _session_row(agent_id: str, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "agent_id": agent_id,
        "session_id": f"sess-{agent_id}",
        "agent_name": agent_id.title(),
        "agent_type": "subagent",
        "status": "active",
    }
    row.update(overrides)
    return row


def _event_row(event_id: str, event_type: str = "agent.status_updated", **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "event_id": event_id,
        "event_type": event_type,
        "agent_id": "agent:main:main",
        "payload": {},
    }
    row.update(overrides)
    return row


def _session_change(
    event_type: ChangeType, new: dict[str, Any] | None, old: dict[str, Any] | None = None
) -> RowChange:
    return RowChange(table=FeedTable.AGENT_SESSIONS, event_type=event_type, new=new, old=old)


def _event_change(event_type: ChangeType, new: dict[str, Any]) -> RowChange:
    return RowChange(table=FeedTable.OPERATIONS_EVENTS, event_type=event_type, new=new)


@pytest.fixture()
async def live_pipeline(store: OperationsStore) -> tuple[ReconciliationPipeline, FakeSource]:
    """A pipeline initialized over an empty snapshot."""
    source = FakeSource()
    pipeline = ReconciliationPipeline(store, source)
    await pipeline.initialize()
    return pipeline, source


# =========================================================================
# Initialization
# =========================================================================


class TestInitialization:
    async def test_coordinator_snapshot(self, store: OperationsStore) -> None:
        source = FakeSource(
            sessions=[
                _session_row(
                    "agent:main:main", agent_type="main", status="working", progress_percent=40
                )
            ]
        )
        await ReconciliationPipeline(store, source).initialize()

        main = store.state.main_agent
        assert main is not None
        assert main.status == AgentStatus.WORKING
        assert main.progress == 40
        assert store.state.sub_agents == {}
        assert store.state.is_connected

    async def test_second_initialize_is_noop(self, store: OperationsStore) -> None:
        source = FakeSource()
        pipeline = ReconciliationPipeline(store, source)
        await pipeline.initialize()
        await pipeline.initialize()
        assert source.fetch_calls == 1
        assert source.subscribe_calls == 1
        assert pipeline.initialized

    async def test_snapshot_events_applied_oldest_first(self, store: OperationsStore) -> None:
        # Sources return newest first.
        source = FakeSource(events=[_event_row("e3"), _event_row("e2"), _event_row("e1")])
        await ReconciliationPipeline(store, source).initialize()
        assert [e.id for e in store.state.live_feed] == ["e3", "e2", "e1"]

    async def test_snapshot_sub_agents(self, store: OperationsStore) -> None:
        source = FakeSource(
            sessions=[_session_row("b", status="working"), _session_row("a", status="initiated")]
        )
        await ReconciliationPipeline(store, source).initialize()
        assert store.state.sub_agents["a"].status == SubAgentStatus.SPAWNED
        assert store.state.sub_agents["b"].status == SubAgentStatus.WORKING

    async def test_snapshot_limits_are_passed(self, store: OperationsStore) -> None:
        source = FakeSource(events=[_event_row(f"e{i}") for i in range(10)])
        await ReconciliationPipeline(store, source, event_limit=3).initialize()
        assert len(store.state.live_feed) == 3

    async def test_invalid_snapshot_rows_are_skipped(self, store: OperationsStore) -> None:
        source = FakeSource(
            sessions=[{"agent_name": "no id"}, _session_row("ok")],
            events=[{"event_id": "broken"}, _event_row("e1")],
        )
        await ReconciliationPipeline(store, source).initialize()
        assert list(store.state.sub_agents) == ["ok"]
        assert [e.id for e in store.state.live_feed] == ["e1"]

    async def test_failed_snapshot_still_subscribes(self, store: OperationsStore) -> None:
        source = FakeSource(fetch_error=ConnectionError("database unreachable"))
        pipeline = ReconciliationPipeline(store, source)
        await pipeline.initialize()

        assert source.subscribe_calls == 1
        assert not store.state.is_connected
        assert store.state.connection_error == "database unreachable"

        # The subscription reporting in flips the flag back.
        assert source.on_status is not None
        source.on_status(SubscriptionStatus.SUBSCRIBED, None)
        assert store.state.is_connected

    async def test_sessions_survive_failed_events_query(self, store: OperationsStore) -> None:
        source = FakeSource(
            sessions=[
                _session_row(
                    "agent:main:main", agent_type="main", status="working", progress_percent=40
                ),
                _session_row("writer", status="working"),
            ],
            events_error=ConnectionError("events table unreachable"),
        )
        await ReconciliationPipeline(store, source).initialize()

        assert store.state.main_agent is not None
        assert store.state.main_agent.status == AgentStatus.WORKING
        assert store.state.main_agent.progress == 40
        assert store.get_sub_agent("writer") is not None
        assert store.state.live_feed == ()
        assert not store.state.is_connected
        assert store.state.connection_error == "events table unreachable"
        assert source.subscribe_calls == 1

    async def test_events_survive_failed_sessions_query(self, store: OperationsStore) -> None:
        source = FakeSource(
            events=[_event_row("e2"), _event_row("e1")],
            fetch_error=ConnectionError("sessions table unreachable"),
        )
        await ReconciliationPipeline(store, source).initialize()

        assert [e.id for e in store.state.live_feed] == ["e2", "e1"]
        assert store.state.main_agent is None
        assert store.state.connection_error == "sessions table unreachable"

    async def test_failed_subscribe_degrades_connection(self, store: OperationsStore) -> None:
        source = FakeSource(subscribe_error=RuntimeError("channel refused"))
        pipeline = ReconciliationPipeline(store, source)
        await pipeline.initialize()
        assert not store.state.is_connected
        assert store.state.connection_error == "channel refused"
        assert pipeline.subscription is None

    async def test_close_closes_subscription(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        subscription = pipeline.subscription
        await pipeline.close()
        assert isinstance(subscription, FakeSubscription) and subscription.closed
        assert pipeline.subscription is None


# =========================================================================
# Subscription status
# =========================================================================


class TestSubscriptionStatus:
    @pytest.mark.parametrize(
        "status", [SubscriptionStatus.ERROR, SubscriptionStatus.TIMED_OUT, SubscriptionStatus.CLOSED]
    )
    async def test_failure_statuses_disconnect(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource], status: SubscriptionStatus
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_subscription_status(status, "lost it")
        assert not pipeline.store.state.is_connected
        assert pipeline.store.state.connection_error == "lost it"

    async def test_missing_reason_gets_default(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_subscription_status(SubscriptionStatus.TIMED_OUT, None)
        assert pipeline.store.state.connection_error == "Connection failed"


# =========================================================================
# Session changes
# =========================================================================


class TestSessionChanges:
    async def test_insert_creates_sub_agent(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(
            _session_change(ChangeType.INSERT, _session_row("writer", status="initiated"))
        )
        sub = pipeline.store.get_sub_agent("writer")
        assert sub is not None
        assert sub.status == SubAgentStatus.SPAWNED

    async def test_update_replaces_fields(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(
            _session_change(ChangeType.INSERT, _session_row("writer", assigned_task="Outline"))
        )
        pipeline.handle_session_change(
            _session_change(
                ChangeType.UPDATE,
                _session_row("writer", status="working", progress_percent=55, assigned_task="Draft"),
            )
        )
        sub = pipeline.store.get_sub_agent("writer")
        assert sub is not None
        assert sub.status == SubAgentStatus.WORKING
        assert sub.progress == 55
        assert sub.assigned_task == "Draft"

    async def test_update_for_unknown_agent_creates_it(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(_session_change(ChangeType.UPDATE, _session_row("late")))
        assert pipeline.store.get_sub_agent("late") is not None

    async def test_terminated_update_completes_sub_agent(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, _session_row("writer")))
        pipeline.handle_session_change(
            _session_change(
                ChangeType.UPDATE, _session_row("writer", status="terminated", summary="done")
            )
        )
        sub = pipeline.store.get_sub_agent("writer")
        assert sub is not None
        assert sub.status == SubAgentStatus.COMPLETED
        assert sub.summary == "done"
        assert sub.completed_at is not None

    async def test_failed_update_fails_sub_agent(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, _session_row("writer")))
        pipeline.handle_session_change(
            _session_change(ChangeType.UPDATE, _session_row("writer", status="failed"))
        )
        assert pipeline.store.get_sub_agent("writer").status == SubAgentStatus.FAILED

    async def test_delete_of_live_row_idles_sub_agent(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, _session_row("writer")))
        pipeline.handle_session_change(
            _session_change(ChangeType.DELETE, None, old=_session_row("writer", status="working"))
        )
        sub = pipeline.store.get_sub_agent("writer")
        assert sub is not None
        assert sub.status == SubAgentStatus.IDLE

    async def test_terminal_change_for_unknown_agent_is_ignored(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(
            _session_change(ChangeType.UPDATE, _session_row("ghost", status="terminated"))
        )
        assert pipeline.store.state.sub_agents == {}

    async def test_coordinator_replaced_wholesale(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        main = "agent:main:main"
        pipeline.handle_session_change(
            _session_change(
                ChangeType.INSERT,
                _session_row(main, agent_type="main", status="working", progress_percent=80),
            )
        )
        pipeline.handle_session_change(
            _session_change(ChangeType.UPDATE, _session_row(main, agent_type="main", status="waiting"))
        )
        agent = pipeline.store.state.main_agent
        assert agent is not None
        assert agent.status == AgentStatus.WAITING
        assert agent.progress == 0

    async def test_coordinator_termination_idles_it(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        main = _session_row("agent:main:main", agent_type="main", status="working")
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, main))
        pipeline.handle_session_change(
            _session_change(ChangeType.UPDATE, {**main, "status": "terminated"})
        )
        assert pipeline.store.state.main_agent.status == AgentStatus.IDLE

    async def test_coordinator_delete_idles_it(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        main = _session_row("agent:main:main", agent_type="main", status="working")
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, main))
        pipeline.handle_session_change(_session_change(ChangeType.DELETE, None, old=main))

        agent = pipeline.store.state.main_agent
        assert agent is not None
        assert agent.id == "agent:main:main"
        assert agent.status == AgentStatus.IDLE

    async def test_invalid_row_is_skipped(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(_session_change(ChangeType.INSERT, {"agent_name": "x"}))
        pipeline.handle_session_change(_session_change(ChangeType.DELETE, None, None))
        assert pipeline.store.state.sub_agents == {}

    async def test_sub_agent_ids_stay_unique(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        rng = random.Random(7)
        statuses = ["initiated", "active", "working", "idle", "terminated", "failed"]
        for _ in range(300):
            agent_id = f"agent-{rng.randrange(6)}"
            change_type = rng.choice(list(ChangeType))
            row = _session_row(agent_id, status=rng.choice(statuses))
            if change_type == ChangeType.DELETE:
                change = _session_change(change_type, None, old=row)
            else:
                change = _session_change(change_type, row)
            pipeline.handle_session_change(change)

            sub_agents = pipeline.store.state.sub_agents
            assert all(key == sub.id for key, sub in sub_agents.items())
            assert len({sub.id for sub in sub_agents.values()}) == len(sub_agents)


# =========================================================================
# Event changes
# =========================================================================


class TestEventChanges:
    async def test_insert_is_prepended(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_event_change(_event_change(ChangeType.INSERT, _event_row("e1")))
        pipeline.handle_event_change(_event_change(ChangeType.INSERT, _event_row("e2")))
        assert [e.id for e in pipeline.store.state.live_feed] == ["e2", "e1"]

    @pytest.mark.parametrize("change_type", [ChangeType.UPDATE, ChangeType.DELETE])
    async def test_non_inserts_are_ignored(
        self,
        live_pipeline: tuple[ReconciliationPipeline, FakeSource],
        change_type: ChangeType,
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_event_change(_event_change(change_type, _event_row("e1")))
        assert pipeline.store.state.live_feed == ()

    async def test_task_state_change_lands_on_board(
        self, live_pipeline: tuple[ReconciliationPipeline, FakeSource]
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_event_change(
            _event_change(
                ChangeType.INSERT,
                _event_row(
                    "e1",
                    "task.state_changed",
                    payload={"task_id": "t-1", "new_state": "review", "title": "Draft"},
                ),
            )
        )
        card = pipeline.store.state.task_flow.find("t-1")
        assert card is not None
        assert card.status == TaskStatus.REVIEW


# =========================================================================
# With the animation driver
# =========================================================================


class TestWithDriver:
    async def test_spawned_sub_agent_gets_sub_workstation(
        self,
        live_pipeline: tuple[ReconciliationPipeline, FakeSource],
        driver: AnimationDriver,
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(
            _session_change(
                ChangeType.INSERT,
                _session_row("writer", agent_type="subagent", status="initiated"),
            )
        )
        assert pipeline.store.get_sub_agent("writer").status == SubAgentStatus.SPAWNED

        driver.tick()
        seat = driver.allocator.workstation_for("writer")
        assert seat is not None
        assert seat.type == WorkstationType.SUB
        assert driver.animation_state("writer").workstation_id == seat.id

    async def test_terminated_sub_agent_stays_until_grace_elapses(
        self,
        live_pipeline: tuple[ReconciliationPipeline, FakeSource],
        driver: AnimationDriver,
        clock: Any,
    ) -> None:
        pipeline, _ = live_pipeline
        pipeline.handle_session_change(
            _session_change(ChangeType.INSERT, _session_row("writer", status="working"))
        )
        driver.tick()
        seat_id = driver.animation_state("writer").workstation_id
        assert seat_id is not None

        pipeline.handle_session_change(
            _session_change(
                ChangeType.UPDATE, _session_row("writer", status="terminated", summary="done")
            )
        )
        sub = pipeline.store.get_sub_agent("writer")
        assert sub.status == SubAgentStatus.COMPLETED
        assert sub.summary == "done"

        driver.tick()
        clock.advance(4.9)
        driver.tick()
        assert pipeline.store.get_sub_agent("writer") is not None
        assert driver.animation_state("writer") is not None

        clock.advance(0.2)
        driver.tick()
        assert pipeline.store.get_sub_agent("writer") is None
        assert driver.animation_state("writer") is None
        assert not driver.allocator.get(seat_id).occupied
