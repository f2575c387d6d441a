"""
Shared placement board for the balanced and leveled placers.

Holds the groups being filled, their capacities, and the separation graph,
and answers the two hard-constraint questions every placer asks:

- fits(unit, gi): would the group stay within its capacity?
- violates_apart(unit, gi): would the unit share a group with a keep-apart peer?

Capacity is a target, not a wall: forced placements may exceed it.
"""

from typing import Dict, Iterable, List, Optional, Set, Tuple

from classbalancer.graph.conflict_graph import build_separation_graph
from classbalancer.models.entities import Criterion, Gender, Group, PlacementUnit, Student
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import composite_score, criteria_signature


def make_groups(group_count: int, capacities: List[int], group_names: Optional[List[Optional[str]]] = None) -> List[Group]:
    names = group_names or []
    groups = []
    for i in range(group_count):
        gid = f"Class {i + 1}"
        override = names[i] if i < len(names) else None
        groups.append(Group(id=gid, name=override or gid, member_ids=[], capacity=capacities[i]))
    return groups


def dedupe_members(groups: List[Group]) -> None:
    """Drop any id already placed in an earlier group (or earlier in the same group)."""
    seen: Set[str] = set()
    for group in groups:
        kept = []
        for sid in group.member_ids:
            if sid in seen:
                continue
            seen.add(sid)
            kept.append(sid)
        group.member_ids = kept


def gender_counts(ids: Iterable[str], students_by_id: Dict[str, Student]) -> Tuple[int, int]:
    males = females = 0
    for sid in ids:
        g = getattr(students_by_id.get(sid), "gender", None)
        if g == Gender.MALE:
            males += 1
        elif g == Gender.FEMALE:
            females += 1
    return males, females


class PlacementBoard:
    def __init__(
        self,
        groups: List[Group],
        students_by_id: Dict[str, Student],
        criteria: List[Criterion],
        keep_apart: Iterable[Tuple[str, str]],
        cache: Optional[ScoreCache] = None,
    ):
        self.groups = groups
        self.students_by_id = students_by_id
        self.criteria = criteria
        self.apart = build_separation_graph(keep_apart)
        self.cache = cache if cache is not None else ScoreCache()
        self.signature = criteria_signature(criteria)

    def size(self, gi: int) -> int:
        return len(self.groups[gi].member_ids)

    def fits(self, unit: PlacementUnit, gi: int) -> bool:
        return self.size(gi) + len(unit.ids) <= self.groups[gi].capacity

    def violates_apart(self, unit: PlacementUnit, gi: int) -> bool:
        members = self.groups[gi].member_ids
        for sid in unit.ids:
            peers = self.apart.get(sid)
            if peers and any(m in peers for m in members):
                return True
        return False

    def place(self, unit: PlacementUnit, gi: int) -> None:
        self.groups[gi].member_ids.extend(unit.ids)

    def by_ascending_size(self) -> List[int]:
        # sorted() is stable, so equal sizes keep index order
        return sorted(range(len(self.groups)), key=self.size)

    def score(self, sid: str) -> float:
        return composite_score(self.students_by_id.get(sid), self.criteria, self.cache, self.signature)

    def scored_ids(self, ids: Iterable[str]) -> List[str]:
        """Ids that count toward averages (known and not excluded)."""
        out = []
        for sid in ids:
            student = self.students_by_id.get(sid)
            if student is not None and student.ignore_scores:
                continue
            out.append(sid)
        return out

    def unit_average(self, ids: Iterable[str]) -> float:
        ids = list(ids)
        if not ids:
            return 0.0
        return sum(self.score(sid) for sid in ids) / len(ids)

    def average_after(self, gi: int, ids: Iterable[str]) -> float:
        """Average composite of the group's scored members after adding ``ids``."""
        relevant = self.scored_ids(self.groups[gi].member_ids) + self.scored_ids(ids)
        if not relevant:
            return 0.0
        return sum(self.score(sid) for sid in relevant) / len(relevant)
