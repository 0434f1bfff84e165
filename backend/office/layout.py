"""Fixed office floor plan: points, workstations and the default layout.

The workstation pool is defined once at startup and never grows or shrinks.
Coordinates are in logical pixels on an 800x600 floor with the origin at the
top-left corner.
"""

from dataclasses import dataclass
from enum import StrEnum

OFFICE_WIDTH = 800
OFFICE_HEIGHT = 600


@dataclass(frozen=True)
class Point:
    """A position on the office floor."""

    x: float
    y: float


# Where newly observed agents appear.
ENTRANCE_POINT = Point(380, 530)


class WorkstationType(StrEnum):
    """Kind of seat. ``idle`` seats are the fallback for any agent."""

    MAIN = "main"
    SUB = "sub"
    IDLE = "idle"


@dataclass
class Workstation:
    """A seat in the office.

    Attributes:
        id: Stable identifier (e.g., "sub-2").
        position: Where an agent stands when seated here.
        type: Seat kind used by the allocation preference.
        occupied: Whether an agent holds the seat.
        assigned_agent_id: The holder; set iff ``occupied`` is True.
    """

    id: str
    position: Point
    type: WorkstationType
    occupied: bool = False
    assigned_agent_id: str | None = None


def create_default_workstations() -> list[Workstation]:
    """Build the standard seven-seat office.

    One coordinator desk at the center, four sub-agent desks in the corners
    around it and two lounge seats on the sides.
    """
    return [
        Workstation("main-1", Point(350, 250), WorkstationType.MAIN),
        Workstation("sub-1", Point(150, 150), WorkstationType.SUB),
        Workstation("sub-2", Point(550, 150), WorkstationType.SUB),
        Workstation("sub-3", Point(150, 400), WorkstationType.SUB),
        Workstation("sub-4", Point(550, 400), WorkstationType.SUB),
        Workstation("idle-1", Point(100, 280), WorkstationType.IDLE),
        Workstation("idle-2", Point(600, 280), WorkstationType.IDLE),
    ]
