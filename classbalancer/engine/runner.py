import logging
from typing import Dict, Iterable, List, Optional, Tuple

from classbalancer.engine.balanced import balanced_place
from classbalancer.engine.capacity import plan_capacities
from classbalancer.engine.constraint_propagation import ConstraintGrouper
from classbalancer.engine.incremental import place_new_student
from classbalancer.engine.leveled import leveled_place
from classbalancer.engine.meters import compute_meters
from classbalancer.engine.placement import PlacementBoard, make_groups
from classbalancer.models.entities import Criterion, PlacementMode, PlacementResult, Student
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import composite_score

logger = logging.getLogger(__name__)

__all__ = ["compute_score", "group_roster", "compute_meters", "place_new_student"]


def compute_score(student: Student, criteria: List[Criterion], cache: Optional[ScoreCache] = None) -> float:
    return composite_score(student, criteria, cache)


def group_roster(
    all_ids: List[str],
    students_by_id: Dict[str, Student],
    group_count: int,
    criteria: List[Criterion],
    keep_together: Iterable[Tuple[str, str]] = (),
    keep_apart: Iterable[Tuple[str, str]] = (),
    group_names: Optional[List[Optional[str]]] = None,
    mode: PlacementMode = PlacementMode.BALANCED,
    level_on: Optional[str] = None,
    cache: Optional[ScoreCache] = None,
) -> PlacementResult:
    """
    Partition the roster into ``group_count`` classes.

    Always returns a total placement: every id lands in exactly one class.
    Infeasible pins, capacities or separations degrade to forced placements
    rather than errors. An empty roster yields empty classes.
    """
    if group_count < 1:
        return PlacementResult(groups=[], capacities=[])

    mode = PlacementMode(mode)
    capacities = plan_capacities(len(all_ids), group_count)
    groups = make_groups(group_count, capacities, group_names)
    if not all_ids:
        return PlacementResult(groups=groups, capacities=capacities)

    units = ConstraintGrouper(all_ids, students_by_id, group_count).build_units(keep_together)
    board = PlacementBoard(groups, students_by_id, criteria, keep_apart, cache)

    if mode is PlacementMode.LEVELED:
        leveled_place(board, units, level_on)
    else:
        balanced_place(board, units)

    logger.info(
        f"Placed {len(all_ids)} students in {group_count} classes "
        f"({len(units)} units, mode={mode.value}): sizes={[len(g.member_ids) for g in groups]}"
    )
    return PlacementResult(groups=groups, capacities=capacities)
