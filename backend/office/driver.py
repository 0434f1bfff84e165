"""Animation Driver: turns store state into a per-frame view of the office.

The driver is the only component that mutates the workstation allocator and
the only one that removes sub-agents from the store. Each tick it:

1. spawns an AnimationState for every agent newly present in the store
   (at the door) and, for non-terminal agents, requests a seat;
2. applies the tool label of new ``agent.work_activity`` events;
3. per agent, anchors the grace timer on the first terminal observation,
   removes the agent once the grace period has elapsed (freeing its seat),
   requests a seat for unseated active/working agents, and advances motion;
4. publishes a RenderableAgent frame to listeners.

Store reads are snapshot reads; anything that changed since the previous
tick is simply picked up on this one.

Usage:
    >>> driver = AnimationDriver(store, WorkstationAllocator())
    >>> frame = driver.tick()
    >>> task = driver.start(interval_seconds=0.05)
    >>> await driver.stop()
"""

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import replace

import structlog

from models.domain import ActivityEventType, Agent, SubAgent
from office import animation
from office.allocator import WorkstationAllocator
from office.animation import AnimationState, RenderableAgent
from office.layout import Point, WorkstationType
from office.path import DEFAULT_PATH_STEPS, plan
from store import OperationsState, OperationsStore

logger = structlog.get_logger(__name__)

FrameListener = Callable[[list[RenderableAgent]], None]

# External statuses that make an unseated agent walk to a desk.
_SEAT_SEEKING_STATUSES = frozenset({"active", "working"})


class AnimationDriver:
    """Owns every AnimationState and the allocator's bookkeeping.

    Attributes:
        grace_period_seconds: Delay between the first terminal observation of
            an agent and its removal.
        path_steps: Points per planned walk.
    """

    def __init__(
        self,
        store: OperationsStore,
        allocator: WorkstationAllocator,
        *,
        grace_period_seconds: float = 5.0,
        path_steps: int = DEFAULT_PATH_STEPS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.allocator = allocator
        self.grace_period_seconds = grace_period_seconds
        self.path_steps = path_steps
        self._clock = clock

        self._states: dict[str, AnimationState] = {}
        # Last record seen per agent, so an agent gone from the store still renders.
        self._records: dict[str, Agent | SubAgent] = {}
        self._last_event_id: str | None = None
        self._frame: list[RenderableAgent] = []
        self._frame_listeners: list[FrameListener] = []
        self._task: asyncio.Task[None] | None = None

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    @property
    def frame(self) -> list[RenderableAgent]:
        """The most recently published frame."""
        return list(self._frame)

    def animation_state(self, agent_id: str) -> AnimationState | None:
        return self._states.get(agent_id)

    def agent_ids(self) -> list[str]:
        return list(self._states)

    def hit_test(self, point: Point) -> str | None:
        return animation.point_in_agent(self._frame, point)

    def add_frame_listener(self, listener: FrameListener) -> Callable[[], None]:
        """Call ``listener`` with every published frame. Returns an unsubscribe callable."""
        self._frame_listeners.append(listener)

        def _remove() -> None:
            if listener in self._frame_listeners:
                self._frame_listeners.remove(listener)

        return _remove

    # -----------------------------------------------------------------
    # Frame tick
    # -----------------------------------------------------------------

    def tick(self) -> list[RenderableAgent]:
        """Advance every agent by one frame and publish the result."""
        now = self._clock()
        snapshot = self.store.state
        records = self._external_records(snapshot)
        self._records.update(records)

        for agent_id, record in records.items():
            if agent_id not in self._states:
                self._spawn(agent_id, record, now)

        self._apply_work_activity(snapshot)

        for agent_id in list(self._states):
            self._step(agent_id, records.get(agent_id), now)

        self._frame = self._render()
        for listener in list(self._frame_listeners):
            try:
                listener(self.frame)
            except Exception as e:
                logger.warning("frame_listener_failed", error=str(e))
        return self.frame

    @staticmethod
    def _external_records(snapshot: OperationsState) -> dict[str, Agent | SubAgent]:
        records: dict[str, Agent | SubAgent] = {}
        if snapshot.main_agent is not None:
            records[snapshot.main_agent.id] = snapshot.main_agent
        for agent_id, sub_agent in snapshot.sub_agents.items():
            records.setdefault(agent_id, sub_agent)
        return records

    @staticmethod
    def _is_terminal(record: Agent | SubAgent | None) -> bool:
        # An agent that vanished from the store is treated like a terminal one,
        # so removal has a single path.
        if record is None:
            return True
        return isinstance(record, SubAgent) and record.is_terminal

    def _spawn(self, agent_id: str, record: Agent | SubAgent, now: float) -> None:
        is_main = isinstance(record, Agent)
        state = animation.spawn(agent_id, is_main, now)
        self._states[agent_id] = state
        logger.info("agent_spawned", agent_id=agent_id, is_main=is_main, status=record.status)
        if not self._is_terminal(record):
            self._request_seat(agent_id, record)

    def _request_seat(self, agent_id: str, record: Agent | SubAgent) -> None:
        state = self._states[agent_id]
        preferred = WorkstationType.MAIN if state.is_main else WorkstationType.SUB
        workstation = self.allocator.find_available_workstation(preferred)
        if workstation is None:
            logger.debug("no_workstation_available", agent_id=agent_id, preferred=preferred.value)
            return
        if not self.allocator.occupy(workstation.id, agent_id):
            return
        path = plan(state.position, workstation.position, self.path_steps)
        self._states[agent_id] = animation.begin_walk(state, workstation.id, path, record.status)
        logger.info(
            "workstation_assigned",
            agent_id=agent_id,
            workstation_id=workstation.id,
            workstation_type=workstation.type.value,
        )

    def _apply_work_activity(self, snapshot: OperationsState) -> None:
        # live_feed is newest first; walk back to the last event already handled.
        fresh = []
        for event in snapshot.live_feed:
            if event.id == self._last_event_id:
                break
            fresh.append(event)
        if not fresh:
            return
        self._last_event_id = fresh[0].id

        for event in reversed(fresh):
            if event.type != ActivityEventType.WORK_ACTIVITY:
                continue
            tool = event.payload.get("tool_name")
            state = self._states.get(event.agent_id)
            if state is not None and isinstance(tool, str) and tool:
                self._states[event.agent_id] = animation.with_last_tool(state, tool)

    def _step(self, agent_id: str, record: Agent | SubAgent | None, now: float) -> None:
        state = self._states[agent_id]
        last_known = record or self._records.get(agent_id)
        status = str(last_known.status) if last_known is not None else "idle"

        if self._is_terminal(record):
            if state.terminal_since is None:
                state = replace(state, terminal_since=now)
                self._states[agent_id] = state
                logger.debug("agent_grace_started", agent_id=agent_id, status=status)
            if now - state.terminal_since >= self.grace_period_seconds:
                self._remove(agent_id)
                return
        else:
            if state.terminal_since is not None:
                state = replace(state, terminal_since=None)
                self._states[agent_id] = state
            if state.workstation_id is None and status in _SEAT_SEEKING_STATUSES:
                self._request_seat(agent_id, record)
                state = self._states[agent_id]

        self._states[agent_id] = animation.advance(state, status)

    def _remove(self, agent_id: str) -> None:
        state = self._states.pop(agent_id)
        if state.workstation_id is not None:
            self.allocator.free(state.workstation_id)
        self._records.pop(agent_id, None)
        removed = self.store.remove_sub_agent(agent_id)
        logger.info(
            "agent_removed",
            agent_id=agent_id,
            workstation_id=state.workstation_id,
            removed_from_store=removed,
        )

    def _render(self) -> list[RenderableAgent]:
        frame = []
        for agent_id, state in self._states.items():
            record = self._records.get(agent_id)
            frame.append(
                RenderableAgent(
                    agent_id=agent_id,
                    position=state.position,
                    phase=state.phase,
                    direction=state.direction,
                    label=record.name if record is not None else agent_id,
                    last_tool=state.last_tool,
                    is_main=state.is_main,
                    status=str(record.status) if record is not None else "idle",
                    progress=record.progress if record is not None else 0,
                    current_task=record.current_task if record is not None else "",
                    workstation_id=state.workstation_id,
                )
            )
        # Draw order: back of the room first.
        frame.sort(key=lambda a: a.position.y)
        return frame

    # -----------------------------------------------------------------
    # Tick loop
    # -----------------------------------------------------------------

    def start(self, interval_seconds: float = 0.05) -> asyncio.Task[None]:
        """Start the background frame loop.

        The task runs until stop() is called or it is cancelled at shutdown.
        A failing tick is logged and the loop keeps going.
        """
        if self._task is not None and not self._task.done():
            return self._task

        async def _loop() -> None:
            logger.info("frame_loop_started", interval_seconds=interval_seconds)
            while True:
                try:
                    await asyncio.sleep(interval_seconds)
                    self.tick()
                except asyncio.CancelledError:
                    logger.info("frame_loop_stopped")
                    return
                except Exception as e:
                    logger.error("frame_tick_failed", error=str(e))

        self._task = asyncio.create_task(_loop(), name="office_frame_loop")
        return self._task

    async def stop(self) -> None:
        """Cancel the frame loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
