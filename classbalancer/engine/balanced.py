"""
Balanced placement.

Greedy heuristic that keeps class sizes level and steers each unit toward
the class whose average composite score would end up lowest, so strong and
weak students spread evenly across classes.

Algorithm:
1. Place pinned units into their target class. On a separation conflict,
   look for another class (smallest first) that fits and has no conflict;
   if none exists, force the unit into its target anyway.
2. Sort free units by descending average composite score.
3. For each free unit, candidates are the classes tied for smallest size
   that fit and have no conflict. Fallbacks: every class without a
   conflict (smallest first), then every class.
4. Tie-break by lowest post-insertion average, then by gender balance.
5. Deduplicate.

Complexity: O(u * g * m) where u = units, g = groups, m = average group
size (separation checks dominate).

Trade-offs:
+ Deterministic and fast enough for a few hundred students per frame
- No optimality guarantee; a later unit never displaces an earlier one
"""

import logging
from typing import List, Sequence

from classbalancer.config.settings import get_settings
from classbalancer.engine.placement import PlacementBoard, dedupe_members, gender_counts
from classbalancer.models.entities import Group, PlacementUnit

logger = logging.getLogger(__name__)
settings = get_settings()


def pick_by_gender_balance(board: PlacementBoard, candidates: Sequence[int], unit: PlacementUnit) -> int:
    """Candidate minimizing |males - females| after insertion; first wins ties."""
    add_m, add_f = gender_counts(unit.ids, board.students_by_id)
    best, best_gap = candidates[0], None
    for gi in candidates:
        m, f = gender_counts(board.groups[gi].member_ids, board.students_by_id)
        gap = abs((m + add_m) - (f + add_f))
        if best_gap is None or gap < best_gap:
            best, best_gap = gi, gap
    return best


def pick_by_need_then_gender(board: PlacementBoard, candidates: Sequence[int], unit: PlacementUnit,
                             tolerance: float = settings.tie_tolerance) -> int:
    """
    Choose the class whose post-insertion average would be lowest.

    Classes within ``tolerance`` of that lowest value are considered tied and
    handed to the gender tie-break.
    """
    averages = [(gi, board.average_after(gi, unit.ids)) for gi in candidates]
    lowest = min(avg for _, avg in averages)
    tied = [gi for gi, avg in averages if avg - lowest <= tolerance]
    if len(tied) == 1:
        return tied[0]
    return pick_by_gender_balance(board, tied, unit)


def place_pinned(board: PlacementBoard, unit: PlacementUnit) -> None:
    target = unit.target
    if not board.violates_apart(unit, target):
        board.place(unit, target)
        return
    viable = [gi for gi in board.by_ascending_size() if board.fits(unit, gi) and not board.violates_apart(unit, gi)]
    if viable:
        chosen = pick_by_need_then_gender(board, viable, unit)
        logger.info(f"Pinned unit {list(unit.ids)} moved from class {target + 1} to {chosen + 1} to honor separation")
        board.place(unit, chosen)
    else:
        logger.warning(f"Forcing pinned unit {list(unit.ids)} into class {target + 1} despite separation conflict")
        board.place(unit, target)


def place_free(board: PlacementBoard, unit: PlacementUnit) -> None:
    sizes = [board.size(gi) for gi in range(len(board.groups))]
    min_size = min(sizes)
    candidates = [
        gi for gi, size in enumerate(sizes)
        if size == min_size and board.fits(unit, gi) and not board.violates_apart(unit, gi)
    ]
    if not candidates:
        ordered = board.by_ascending_size()
        candidates = [gi for gi in ordered if not board.violates_apart(unit, gi)]
        if not candidates:
            logger.warning(f"No conflict-free class for unit {list(unit.ids)}; separation will be violated")
            candidates = ordered
    board.place(unit, pick_by_need_then_gender(board, candidates, unit))


def balanced_place(board: PlacementBoard, units: List[PlacementUnit]) -> List[Group]:
    pinned = [u for u in units if u.target is not None]
    free = [u for u in units if u.target is None]
    free.sort(key=lambda u: board.unit_average(u.ids), reverse=True)

    for unit in pinned:
        place_pinned(board, unit)
    for unit in free:
        place_free(board, unit)

    dedupe_members(board.groups)
    return board.groups
