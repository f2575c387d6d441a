import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional

from classbalancer.config.settings import get_settings
from classbalancer.engine.incremental import place_new_student
from classbalancer.engine.meters import compute_meters
from classbalancer.engine.relations import add_relation, remove_relation
from classbalancer.engine.runner import group_roster
from classbalancer.graph.conflict_graph import collect_pairs
from classbalancer.models.constraints import MoveBlocked, RelationType
from classbalancer.models.entities import (
    COMPOSITE,
    Criterion,
    Group,
    Meter,
    PlacementMode,
    Student,
    WeightLevel,
)
from classbalancer.storage.cache import ScoreCache

logger = logging.getLogger(__name__)
settings = get_settings()


def split_name(full_name: str):
    parts = (full_name or "").strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def slug_id(first_name: str, last_name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", f"{first_name}{last_name}".lower())


def unique_id(base: str, taken) -> str:
    """``base`` if free, else ``base2``, ``base3``, ..."""
    candidate, n = base, 1
    while not candidate or candidate in taken:
        n += 1
        candidate = f"{base}{n}"
    return candidate


class PlacementSession:
    """
    One loaded roster and its classes.

    Owns the score/meter cache and invalidates it whenever students or
    criteria change, so cached values never outlive the data they came from.
    """

    def __init__(
        self,
        students: Optional[List[Student]] = None,
        criteria: Optional[List[Criterion]] = None,
        group_count: int = settings.default_group_count,
        group_names: Optional[List[Optional[str]]] = None,
        mode: PlacementMode = PlacementMode.BALANCED,
        level_on: Optional[str] = COMPOSITE,
    ):
        self.students_by_id: Dict[str, Student] = {}
        self.all_ids: List[str] = []
        for s in students or []:
            self.students_by_id[s.id] = s
            self.all_ids.append(s.id)
        self.criteria: List[Criterion] = list(criteria or [])
        self.group_count = group_count
        self.group_names: List[Optional[str]] = list(group_names or [])
        self.mode = PlacementMode(mode)
        self.level_on = level_on
        self.groups: List[Group] = []
        self.capacities: List[int] = []
        self.has_manual_changes = False
        self.cache = ScoreCache()

    def _touched(self, manual: bool = True) -> None:
        self.cache.invalidate()
        if manual:
            self.has_manual_changes = True

    # ---------- placement ----------

    def run(self) -> List[Group]:
        result = group_roster(
            self.all_ids,
            self.students_by_id,
            self.group_count,
            self.criteria,
            keep_together=collect_pairs(self.all_ids, self.students_by_id, "keep_with"),
            keep_apart=collect_pairs(self.all_ids, self.students_by_id, "keep_apart"),
            group_names=self.group_names,
            mode=self.mode,
            level_on=self.level_on,
            cache=self.cache,
        )
        self.groups = result.groups
        self.capacities = result.capacities
        self.has_manual_changes = False
        return self.groups

    def meters(self, group_index: int) -> List[Meter]:
        return compute_meters(self.groups[group_index], self.students_by_id, self.criteria, self.all_ids, self.cache)

    def group_of(self, student_id: str) -> Optional[int]:
        for gi, group in enumerate(self.groups):
            if student_id in group.member_ids:
                return gi
        return None

    def move_student(self, student_id: str, to_index: int) -> None:
        """
        Manual reassignment. Refuses moves next to a keep-apart peer and pins
        the student to the destination so later full runs keep it there.
        """
        if student_id not in self.students_by_id:
            raise ValueError(f"Unknown student {student_id}")
        if not 0 <= to_index < len(self.groups):
            raise ValueError(f"Class index {to_index} out of range for {len(self.groups)} classes")
        student = self.students_by_id[student_id]
        from_index = self.group_of(student_id)
        if from_index == to_index:
            return
        for other in self.groups[to_index].member_ids:
            peer = self.students_by_id.get(other)
            if other in student.keep_apart or (peer is not None and student_id in peer.keep_apart):
                raise MoveBlocked(student_id, other, to_index)

        if from_index is not None:
            self.groups[from_index].member_ids.remove(student_id)
        self.groups[to_index].member_ids.append(student_id)
        student.pin_group = to_index
        self._touched()

    # ---------- roster edits ----------

    def add_student(self, student: Student) -> int:
        """Add a student and drop them into the best-matching class. Returns the class index."""
        if not student.first_name and not student.last_name:
            raise ValueError("student needs a name")
        new_id = unique_id(student.id or slug_id(student.first_name, student.last_name), self.students_by_id)
        student = replace(student, id=new_id, pin_group=None, keep_with=set(), keep_apart=set())
        self.students_by_id[new_id] = student
        self.all_ids.append(new_id)
        self._touched()

        if not self.groups:
            return 0
        dest = place_new_student(new_id, self.groups, self.students_by_id, self.criteria,
                                 self.mode, self.level_on, self.cache)
        self.groups[dest].member_ids.append(new_id)
        logger.info(f"Added {student.name} to {self.groups[dest].name}")
        return dest

    def update_student(self, student_id: str, **changes) -> Student:
        relations = {"keep_with", "keep_apart"} & set(changes)
        if relations:
            raise ValueError(f"{sorted(relations)} must be changed through set_relation/clear_relation")
        student = self.students_by_id[student_id]
        if "name" in changes:
            changes["first_name"], changes["last_name"] = split_name(changes.pop("name"))
        for attr, value in changes.items():
            if not hasattr(student, attr):
                raise AttributeError(f"Student has no field {attr!r}")
            setattr(student, attr, value)
        self._touched()
        return student

    def delete_student(self, student_id: str) -> None:
        self.students_by_id.pop(student_id, None)
        self.all_ids = [sid for sid in self.all_ids if sid != student_id]
        for group in self.groups:
            group.member_ids = [sid for sid in group.member_ids if sid != student_id]
        for other in self.students_by_id.values():
            other.keep_with.discard(student_id)
            other.keep_apart.discard(student_id)
        self._touched()

    def set_relation(self, student_id: str, peer_id: str, relation: RelationType) -> None:
        add_relation(self.students_by_id, student_id, peer_id, relation)
        self._touched()

    def clear_relation(self, student_id: str, peer_id: str, relation: RelationType) -> None:
        remove_relation(self.students_by_id, student_id, peer_id, relation)
        self._touched()

    # ---------- criteria edits ----------

    def _criterion(self, label: str) -> Criterion:
        for c in self.criteria:
            if c.label == label:
                return c
        raise KeyError(label)

    def set_criteria(self, criteria: List[Criterion]) -> None:
        self.criteria = list(criteria)
        self._touched()

    def set_weight(self, label: str, level: WeightLevel) -> None:
        self._criterion(label).weight = WeightLevel(level).value
        self._touched()

    def toggle_enabled(self, label: str) -> bool:
        # display-only: does not count as a manual change to the placement
        c = self._criterion(label)
        c.enabled = not c.enabled
        self._touched(manual=False)
        return c.enabled
