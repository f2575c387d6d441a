import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from classbalancer.engine.session import PlacementSession, split_name
from classbalancer.models.entities import Criterion, Gender, Group, Student

logger = logging.getLogger(__name__)

SESSION_VERSION = "bcs-1"


class SessionFormatError(ValueError):
    pass


class CriterionRecord(BaseModel):
    label: str
    weight: float = 1.0
    max: Optional[float] = None
    # absent in exported files; derived from weight on load
    enabled: Optional[bool] = None

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str):
        if not v.strip():
            raise ValueError("criterion label must not be empty")
        return v

    def to_domain(self) -> Criterion:
        return Criterion(
            label=self.label,
            weight=self.weight,
            max=self.max or 100.0,
            enabled=self.weight > 0 if self.enabled is None else self.enabled,
        )


class StudentRecord(BaseModel):
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    gender: Optional[str] = None
    scores: Dict[str, Any] = {}
    ignore_scores: bool = False
    pin_group: Optional[Any] = None
    keep_with: List[str] = []
    keep_apart: List[str] = []
    tags: List[str] = []
    notes: Optional[str] = None
    previous_teacher: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Numeric ids from older files are kept as strings."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("pin_group")
    @classmethod
    def drop_invalid_pin(cls, v):
        return v if isinstance(v, int) and not isinstance(v, bool) and v >= 0 else None

    @model_validator(mode="after")
    def validate_relations(self):
        both = set(self.keep_with) & set(self.keep_apart)
        if both:
            raise ValueError(f"student {self.id} has {sorted(both)} in both keep_with and keep_apart")
        return self

    def to_domain(self) -> Student:
        first, last = self.first_name or "", self.last_name or ""
        if not first and not last and self.name:
            first, last = split_name(self.name)
        return Student(
            id=self.id,
            first_name=first,
            last_name=last,
            gender=Gender(self.gender) if self.gender in ("M", "F") else None,
            scores=dict(self.scores),
            ignore_scores=self.ignore_scores,
            pin_group=self.pin_group,
            keep_with=set(self.keep_with),
            keep_apart=set(self.keep_apart),
            tags=list(self.tags),
            notes=self.notes or "",
            previous_teacher=self.previous_teacher or "",
        )


class ClassMetaRecord(BaseModel):
    name: Optional[str] = None


class ClassRecord(BaseModel):
    id: str
    name: Optional[str] = None
    member_ids: List[str] = []
    capacity: int = 0

    def to_domain(self) -> Group:
        return Group(id=self.id, name=self.name or self.id, member_ids=list(self.member_ids), capacity=self.capacity)


class SessionRecord(BaseModel):
    version: Optional[str] = None
    num_classes: Optional[int] = None
    criteria: List[CriterionRecord] = []
    students: List[StudentRecord]
    class_meta: List[ClassMetaRecord] = []
    classes: List[ClassRecord] = []

    @field_validator("num_classes")
    @classmethod
    def drop_non_positive(cls, v: Optional[int]):
        return v if v is not None and v > 0 else None


@dataclass
class LoadedSession:
    students: List[Student]
    criteria: List[Criterion] = field(default_factory=list)
    num_classes: Optional[int] = None
    class_meta: List[Dict[str, Any]] = field(default_factory=list)
    classes: List[Group] = field(default_factory=list)

    def to_session(self, default_group_count: int = 6) -> PlacementSession:
        session = PlacementSession(
            students=self.students,
            criteria=self.criteria,
            group_count=self.num_classes or default_group_count,
            group_names=[m.get("name") for m in self.class_meta],
        )
        session.groups = list(self.classes)
        session.capacities = [g.capacity for g in self.classes]
        return session


def _student_record(s: Student) -> StudentRecord:
    return StudentRecord(
        id=s.id,
        first_name=s.first_name,
        last_name=s.last_name,
        name=s.name,
        gender=s.gender.value if isinstance(s.gender, Gender) else s.gender,
        scores=dict(s.scores),
        ignore_scores=s.ignore_scores,
        pin_group=s.pin_group,
        keep_with=sorted(s.keep_with),
        keep_apart=sorted(s.keep_apart),
        tags=list(s.tags),
        notes=s.notes,
        previous_teacher=s.previous_teacher,
    )


def export_session(session: PlacementSession) -> str:
    record = SessionRecord(
        version=SESSION_VERSION,
        num_classes=session.group_count,
        criteria=[CriterionRecord(label=c.label, weight=c.weight, max=c.max) for c in session.criteria],
        students=[_student_record(session.students_by_id[sid]) for sid in session.all_ids],
        class_meta=[ClassMetaRecord(name=name) for name in session.group_names],
        classes=[
            ClassRecord(id=g.id, name=g.name, member_ids=list(g.member_ids), capacity=g.capacity)
            for g in session.groups
        ],
    )
    # enabled is display state; re-derived from weight on load
    return record.model_dump_json(indent=2, exclude={"criteria": {"__all__": {"enabled"}}})


def load_session(text: str) -> LoadedSession:
    """Parse a ``bcs-1`` session file. Any malformed content raises SessionFormatError."""
    try:
        record = SessionRecord.model_validate_json(text)
    except ValidationError as exc:
        raise SessionFormatError(f"Invalid session file: {exc.error_count()} error(s)\n{exc}") from exc

    # entries without an id cannot be referenced by classes or relations
    students = [s.to_domain() for s in record.students if s.id]
    criteria = [c.to_domain() for c in record.criteria]

    logger.info(f"Loaded session with {len(students)} students and {len(criteria)} criteria")
    return LoadedSession(
        students=students,
        criteria=criteria,
        num_classes=record.num_classes,
        class_meta=[m.model_dump() for m in record.class_meta],
        classes=[g.to_domain() for g in record.classes],
    )
