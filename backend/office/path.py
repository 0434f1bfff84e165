"""Path planner: straight-line walks between two points."""

from office.layout import Point

DEFAULT_PATH_STEPS = 20


def plan(start: Point, end: Point, steps: int = DEFAULT_PATH_STEPS) -> list[Point]:
    """Linearly interpolate ``steps`` points from ``start`` to ``end``, both inclusive.

    ``plan(p, p)`` yields ``steps`` copies of ``p``. With fewer than two
    steps the walk collapses to the destination alone.
    """
    if steps < 2:
        return [end]

    dx = end.x - start.x
    dy = end.y - start.y
    last = steps - 1
    points = [Point(start.x + dx * i / last, start.y + dy * i / last) for i in range(last)]
    # Exact endpoint, free of float drift.
    points.append(end)
    return points
