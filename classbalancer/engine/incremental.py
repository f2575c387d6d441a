"""
Single-student placement.

Adds one new student to an existing set of classes without re-running the
full placement, so manual arrangements stay untouched.
"""

from typing import Dict, List, Optional

from classbalancer.models.entities import Criterion, Group, PlacementMode, Student
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import composite_score, criteria_signature, ranking_score


def _scored(group: Group, students_by_id: Dict[str, Student]) -> List[Student]:
    members = (students_by_id.get(sid) for sid in group.member_ids)
    return [s for s in members if s is not None and not s.ignore_scores]


def place_new_student(
    new_id: str,
    groups: List[Group],
    students_by_id: Dict[str, Student],
    criteria: List[Criterion],
    mode: PlacementMode = PlacementMode.BALANCED,
    level_on: Optional[str] = None,
    cache: Optional[ScoreCache] = None,
) -> int:
    """
    Index of the class ``new_id`` should join.

    Balanced: class with the lowest current average composite (first wins ties).
    Leveled: class whose average ranking score is closest to the newcomer's.
    """
    if not groups:
        return 0
    signature = criteria_signature(criteria)

    if PlacementMode(mode) is PlacementMode.BALANCED:
        best, best_avg = 0, None
        for gi, group in enumerate(groups):
            members = _scored(group, students_by_id)
            avg = sum(composite_score(s, criteria, cache, signature) for s in members) / len(members) if members else 0.0
            if best_avg is None or avg < best_avg:
                best, best_avg = gi, avg
        return best

    target = ranking_score(students_by_id.get(new_id), criteria, level_on, cache, signature)
    best, best_diff = 0, None
    for gi, group in enumerate(groups):
        members = _scored(group, students_by_id)
        if not members:
            # an empty class matches outright until some class average is measured
            if best_diff is None:
                return gi
            continue
        avg = sum(ranking_score(s, criteria, level_on, cache, signature) for s in members) / len(members)
        diff = abs(avg - target)
        if best_diff is None or diff < best_diff:
            best, best_diff = gi, diff
    return best
