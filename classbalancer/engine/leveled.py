"""
Leveled placement.

Fills classes in order from the highest ranking score down, so Class 1
collects the strongest students on the chosen basis, Class 2 the next
band, and so on. The basis is either the composite score or the raw value
of one named criterion.
"""

import logging
from typing import List, Optional

from classbalancer.engine.placement import PlacementBoard, dedupe_members
from classbalancer.models.entities import Group, PlacementUnit
from classbalancer.utils.scoring import ranking_score

logger = logging.getLogger(__name__)


def first_open(board: PlacementBoard, unit: PlacementUnit, start: int = 0) -> Optional[int]:
    for gi in range(start, len(board.groups)):
        if board.fits(unit, gi) and not board.violates_apart(unit, gi):
            return gi
    return None


def leveled_place(board: PlacementBoard, units: List[PlacementUnit], level_on: Optional[str] = None) -> List[Group]:
    def score_of(sid: str) -> float:
        return ranking_score(board.students_by_id.get(sid), board.criteria, level_on, board.cache, board.signature)

    def unit_score(unit: PlacementUnit) -> float:
        return sum(score_of(sid) for sid in unit.ids) / (len(unit.ids) or 1)

    pinned = [u for u in units if u.target is not None]
    free = sorted((u for u in units if u.target is None), key=unit_score, reverse=True)

    for unit in pinned:
        if not board.violates_apart(unit, unit.target):
            board.place(unit, unit.target)
            continue
        alt = first_open(board, unit)
        if alt is None:
            logger.warning(f"Forcing pinned unit {list(unit.ids)} into class {unit.target + 1} despite separation conflict")
            alt = unit.target
        board.place(unit, alt)

    last = len(board.groups) - 1
    current = 0
    for unit in free:
        gi = first_open(board, unit, current)
        if gi is not None:
            current = gi
        else:
            gi = first_open(board, unit)
            if gi is None:
                logger.warning(f"Forcing unit {list(unit.ids)} into class {current + 1}")
                gi = current
        board.place(unit, gi)

        # advance only once the unit is placed
        if board.size(current) >= board.groups[current].capacity and current < last:
            current += 1

    dedupe_members(board.groups)
    return board.groups
