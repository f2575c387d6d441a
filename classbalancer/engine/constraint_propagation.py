import logging
from typing import Dict, Iterable, List, Optional, Tuple

from classbalancer.models.entities import PlacementUnit, Student

logger = logging.getLogger(__name__)


class ConstraintGrouper:
    """
    Merges keep-together pairs into placement units and propagates pins.

    The union-find parent map lives on the instance, so build a fresh
    grouper for every placement call.
    """

    def __init__(self, all_ids: List[str], students_by_id: Dict[str, Student], group_count: int):
        self.all_ids = list(all_ids)
        self.students_by_id = students_by_id
        self.group_count = group_count
        self.parent: Dict[str, str] = {sid: sid for sid in self.all_ids}
        self.pin_map: Dict[str, int] = {}
        for sid in self.all_ids:
            pin = self._valid_pin(students_by_id.get(sid))
            if pin is not None:
                self.pin_map[sid] = pin

    def _valid_pin(self, student: Optional[Student]) -> Optional[int]:
        if student is None:
            return None
        pin = student.pin_group
        if isinstance(pin, bool) or not isinstance(pin, int):
            return None
        if 0 <= pin < self.group_count:
            return pin
        return None

    def find(self, x: str) -> str:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, a: str, b: str) -> None:
        if a not in self.parent or b not in self.parent:
            return
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[ra] = rb

    def components(self) -> List[List[str]]:
        """Connected components in first-seen order of ``all_ids``."""
        comps: Dict[str, List[str]] = {}
        for sid in self.all_ids:
            comps.setdefault(self.find(sid), []).append(sid)
        return list(comps.values())

    def build_units(self, keep_together: Iterable[Tuple[str, str]]) -> List[PlacementUnit]:
        """
        Split the roster into indivisible placement units.

        - A component with a single distinct pin becomes one unit targeting
          that group; unpinned members inherit the pin.
        - A component with several distinct pins is split: one unit per pin
          plus one free unit for the unpinned remainder. Keep-together is
          broken only here.
        - A component with no pins is one free unit.
        """
        for a, b in keep_together:
            if a and b:
                self.union(a, b)

        units: List[PlacementUnit] = []
        for comp in self.components():
            by_pin: Dict[Optional[int], List[str]] = {}
            for sid in comp:
                by_pin.setdefault(self.pin_map.get(sid), []).append(sid)
            pinned_keys = [k for k in by_pin if k is not None]

            if len(pinned_keys) == 1:
                target = pinned_keys[0]
                for sid in comp:
                    self.pin_map[sid] = target
                units.append(PlacementUnit(ids=tuple(comp), target=target))
            elif len(pinned_keys) > 1:
                logger.info(f"Splitting keep-together group {comp} across conflicting pins {pinned_keys}")
                for target in pinned_keys:
                    units.append(PlacementUnit(ids=tuple(by_pin[target]), target=target))
                if None in by_pin:
                    units.append(PlacementUnit(ids=tuple(by_pin[None]), target=None))
            else:
                units.append(PlacementUnit(ids=tuple(comp), target=None))
        return units
