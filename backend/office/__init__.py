"""The pixel office: floor plan, seat allocation, walking and the frame driver.

Key Components:
    - Workstation / WorkstationType / Point: the fixed floor plan
    - WorkstationAllocator: seat bookkeeping
    - plan: straight-line path planner
    - AnimationState / RenderableAgent: per-agent pose and its frame view
    - AnimationDriver: the per-frame tick
"""

from office.allocator import WorkstationAllocator
from office.animation import (
    AnimationPhase,
    AnimationState,
    Direction,
    RenderableAgent,
    point_in_agent,
)
from office.driver import AnimationDriver, FrameListener
from office.layout import (
    ENTRANCE_POINT,
    Point,
    Workstation,
    WorkstationType,
    create_default_workstations,
)
from office.path import plan

__all__ = [
    "ENTRANCE_POINT",
    "AnimationDriver",
    "AnimationPhase",
    "AnimationState",
    "Direction",
    "FrameListener",
    "Point",
    "RenderableAgent",
    "Workstation",
    "WorkstationAllocator",
    "WorkstationType",
    "create_default_workstations",
    "plan",
    "point_in_agent",
]
