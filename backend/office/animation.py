"""Per-agent animation state and its pure transitions.

Nothing in here touches the store, the allocator or a clock: each function
takes the previous AnimationState (plus the agent's external status or an
allocation decision) and returns the next one. The Animation Driver owns
the states and feeds these functions once per frame.

Phases:
    idle     - standing, either unseated or seated while the agent is idle
    walking  - following a planned path toward a workstation
    sitting  - seated, agent active but not working
    working  - seated, agent working
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum

from pydantic import BaseModel

from office.layout import ENTRANCE_POINT, Point

# Sprite is 32x48 drawn at 2x.
SPRITE_WIDTH = 64
SPRITE_HEIGHT = 96

# Vertical displacement below this is treated as no vertical motion.
_VERTICAL_EPSILON = 0.1


class AnimationPhase(StrEnum):
    IDLE = "idle"
    WALKING = "walking"
    SITTING = "sitting"
    WORKING = "working"


class Direction(StrEnum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class AnimationState:
    """Animation bookkeeping for one live agent.

    Attributes:
        agent_id: The agent this state draws.
        position: Current floor position.
        is_main: Whether the agent is the coordinator.
        spawned_at: Clock reading when the agent was first observed.
        target: Destination of the current walk, if any.
        path: Points of the current walk; ``path[cursor]`` is ``position``.
        cursor: Index of the current point in ``path``.
        phase: Drawn pose.
        direction: Facing, derived from the last step's displacement.
        workstation_id: Seat held in the allocator, or None when roaming.
        terminal_since: Clock reading when a terminal status was first observed.
        last_tool: Label of the tool the agent used most recently.
    """

    agent_id: str
    position: Point
    is_main: bool = False
    spawned_at: float = 0.0
    target: Point | None = None
    path: tuple[Point, ...] | None = None
    cursor: int = 0
    phase: AnimationPhase = AnimationPhase.IDLE
    direction: Direction = Direction.UP
    workstation_id: str | None = None
    terminal_since: float | None = None
    last_tool: str | None = None

    @property
    def is_walking(self) -> bool:
        return self.path is not None


def spawn(agent_id: str, is_main: bool, now: float) -> AnimationState:
    """A fresh state standing at the office door, facing into the room."""
    return AnimationState(
        agent_id=agent_id,
        position=ENTRANCE_POINT,
        is_main=is_main,
        spawned_at=now,
        direction=Direction.UP,
    )


def facing(previous: Point, current: Point, fallback: Direction) -> Direction:
    """Direction of travel from ``previous`` to ``current``.

    Horizontal wins when it dominates; otherwise vertical, and ``fallback``
    when the agent did not move.
    """
    dx = current.x - previous.x
    dy = current.y - previous.y
    if abs(dx) > abs(dy):
        return Direction.RIGHT if dx > 0 else Direction.LEFT
    if abs(dy) > _VERTICAL_EPSILON:
        return Direction.DOWN if dy > 0 else Direction.UP
    return fallback


def settle_phase(status: str, seated: bool) -> AnimationPhase:
    """Pose of an agent that is not walking.

    A seated agent works while its status is ``working``, drops to idle while
    its status is ``idle`` (keeping the seat) and sits otherwise.
    """
    if not seated:
        return AnimationPhase.IDLE
    if status == "working":
        return AnimationPhase.WORKING
    if status == "idle":
        return AnimationPhase.IDLE
    return AnimationPhase.SITTING


def _arrive(state: AnimationState, destination: Point, status: str) -> AnimationState:
    return replace(
        state,
        position=destination,
        target=None,
        path=None,
        cursor=0,
        phase=settle_phase(status, state.workstation_id is not None),
    )


def begin_walk(
    state: AnimationState,
    workstation_id: str,
    path: Iterable[Point],
    status: str,
) -> AnimationState:
    """Start walking along ``path`` toward the granted workstation.

    A path that never leaves the current position counts as immediate arrival.
    """
    points = tuple(path)
    seated = replace(state, workstation_id=workstation_id)
    if not points:
        return _arrive(seated, state.position, status)
    destination = points[-1]
    if all(p == state.position for p in points):
        return _arrive(seated, destination, status)
    return replace(
        seated,
        target=destination,
        path=points,
        cursor=0,
        phase=AnimationPhase.WALKING,
    )


def advance(state: AnimationState, status: str) -> AnimationState:
    """One frame of motion.

    A walking agent moves one point along its path; reaching the last point
    clears the path and target and settles the pose. A stationary agent only
    has its pose re-derived from ``status``.
    """
    if state.path is None:
        phase = settle_phase(status, state.workstation_id is not None)
        return state if phase == state.phase else replace(state, phase=phase)

    cursor = min(state.cursor + 1, len(state.path) - 1)
    position = state.path[cursor]
    moved = replace(
        state,
        position=position,
        cursor=cursor,
        direction=facing(state.position, position, state.direction),
    )
    if cursor >= len(state.path) - 1:
        return _arrive(moved, position, status)
    return moved


def with_last_tool(state: AnimationState, tool: str) -> AnimationState:
    return replace(state, last_tool=tool)


class RenderableAgent(BaseModel):
    """Read-only per-frame view of one agent for the renderer."""

    agent_id: str
    position: Point
    phase: AnimationPhase
    direction: Direction
    label: str
    last_tool: str | None = None
    is_main: bool = False
    status: str = "idle"
    progress: int = 0
    current_task: str = ""
    workstation_id: str | None = None


def point_in_agent(frame: Iterable[RenderableAgent], point: Point) -> str | None:
    """Return the id of the agent drawn under ``point``, or None.

    Each agent covers [x, x + 64] x [y, y + 96]. Agents lower on the floor are
    drawn later, so on overlap the one with the larger y wins.
    """
    for agent in sorted(frame, key=lambda a: a.position.y, reverse=True):
        x, y = agent.position.x, agent.position.y
        if x <= point.x <= x + SPRITE_WIDTH and y <= point.y <= y + SPRITE_HEIGHT:
            return agent.agent_id
    return None
