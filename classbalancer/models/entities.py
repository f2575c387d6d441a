from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple


COMPOSITE = "Composite"


class Gender(str, Enum):
    MALE = "M"
    FEMALE = "F"


class PlacementMode(str, Enum):
    BALANCED = "balanced"
    LEVELED = "leveled"


class MeterStatus(str, Enum):
    FAR_BELOW = "far_below"
    BELOW = "below"
    ABOVE = "above"
    BALANCED = "balanced"


class WeightLevel(Enum):
    LOW = 0.5
    NORMAL = 1.0
    HIGH = 2.0

    @classmethod
    def from_label(cls, label: str) -> "WeightLevel":
        return cls[label.strip().upper()]

    @classmethod
    def label_for(cls, weight: float) -> str:
        """Named level for a multiplier, or "Custom" for numeric overrides."""
        for level in cls:
            if level.value == weight:
                return level.name.capitalize()
        return "Custom"


@dataclass
class Criterion:
    label: str
    weight: float = WeightLevel.NORMAL.value
    max: float = 100.0
    enabled: bool = True

    @property
    def weight_label(self) -> str:
        return WeightLevel.label_for(self.weight)


@dataclass
class Student:
    id: str
    first_name: str = ""
    last_name: str = ""
    gender: Optional[Gender] = None
    scores: Dict[str, float] = field(default_factory=dict)
    ignore_scores: bool = False  # pull-out programs etc.; composite is always 0
    pin_group: Optional[int] = None
    keep_with: Set[str] = field(default_factory=set)
    keep_apart: Set[str] = field(default_factory=set)
    tags: List[str] = field(default_factory=list)
    notes: str = ""
    previous_teacher: str = ""

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class PlacementUnit:
    ids: Tuple[str, ...]
    target: Optional[int] = None


@dataclass
class Group:
    id: str
    name: str
    member_ids: List[str] = field(default_factory=list)
    capacity: int = 0


@dataclass(frozen=True)
class Meter:
    label: str
    avg: float
    pct: float
    roster_avg: float
    deviation: float
    deviation_pct: float
    status: MeterStatus


@dataclass
class PlacementResult:
    groups: List[Group]
    capacities: List[int]
