"""Workstation allocator.

Owns the fixed workstation pool. It keeps occupancy bookkeeping only; it
does not know which agents exist, and callers are responsible for freeing
only the seats they hold. The Animation Driver is the single caller that
mutates it.
"""

import copy
from collections.abc import Iterable

import structlog

from office.layout import Workstation, WorkstationType, create_default_workstations

logger = structlog.get_logger(__name__)


class WorkstationAllocator:
    """Bookkeeping over a fixed pool of workstations.

    Pool exhaustion is a normal condition: find_available_workstation()
    returns None and the requesting agent roams unseated.

    Usage:
        >>> allocator = WorkstationAllocator()
        >>> seat = allocator.find_available_workstation(WorkstationType.SUB)
        >>> allocator.occupy(seat.id, "agent:sub:writer")
    """

    def __init__(self, workstations: Iterable[Workstation] | None = None) -> None:
        pool = list(workstations) if workstations is not None else create_default_workstations()
        ids = [w.id for w in pool]
        if len(ids) != len(set(ids)):
            raise ValueError("Workstation ids must be unique")
        # Ordered by definition; "first" in the allocation policy means pool order.
        self._workstations: dict[str, Workstation] = {w.id: w for w in pool}
        logger.info("workstation_allocator_initialized", workstation_count=len(pool))

    def find_available_workstation(
        self, preferred_type: WorkstationType
    ) -> Workstation | None:
        """Return the first free seat of ``preferred_type``, else the first free idle seat.

        Returns:
            The workstation (not yet occupied), or None when nothing suitable is free.
        """
        fallback: Workstation | None = None
        for workstation in self._workstations.values():
            if workstation.occupied:
                continue
            if workstation.type == preferred_type:
                return workstation
            if fallback is None and workstation.type == WorkstationType.IDLE:
                fallback = workstation
        return fallback

    def occupy(self, workstation_id: str, agent_id: str) -> bool:
        """Mark a workstation occupied by ``agent_id``.

        Returns:
            False if the workstation is unknown or already held by another agent.
        """
        workstation = self._workstations.get(workstation_id)
        if workstation is None:
            logger.warning("occupy_unknown_workstation", workstation_id=workstation_id)
            return False
        if workstation.occupied and workstation.assigned_agent_id != agent_id:
            logger.warning(
                "occupy_workstation_taken",
                workstation_id=workstation_id,
                holder=workstation.assigned_agent_id,
                agent_id=agent_id,
            )
            return False

        workstation.occupied = True
        workstation.assigned_agent_id = agent_id
        logger.debug("workstation_occupied", workstation_id=workstation_id, agent_id=agent_id)
        return True

    def free(self, workstation_id: str) -> None:
        """Clear occupancy and assignee. Unknown ids are ignored."""
        workstation = self._workstations.get(workstation_id)
        if workstation is None:
            return
        logger.debug(
            "workstation_freed",
            workstation_id=workstation_id,
            agent_id=workstation.assigned_agent_id,
        )
        workstation.occupied = False
        workstation.assigned_agent_id = None

    def get(self, workstation_id: str) -> Workstation | None:
        workstation = self._workstations.get(workstation_id)
        return copy.copy(workstation) if workstation is not None else None

    def workstation_for(self, agent_id: str) -> Workstation | None:
        """The workstation currently assigned to ``agent_id``, if any."""
        for workstation in self._workstations.values():
            if workstation.assigned_agent_id == agent_id:
                return copy.copy(workstation)
        return None

    def workstations(self) -> list[Workstation]:
        """Copies of every workstation in pool order."""
        return [copy.copy(w) for w in self._workstations.values()]
