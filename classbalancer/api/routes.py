from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, HTTPException, Depends, Query, Response
from pydantic import BaseModel, Field, field_validator, model_validator

from classbalancer.config.settings import get_settings
from classbalancer.engine.relations import add_relation, remove_relation
from classbalancer.engine.runner import compute_meters, group_roster, place_new_student
from classbalancer.engine.session import PlacementSession
from classbalancer.graph.conflict_graph import collect_pairs
from classbalancer.models.constraints import RelationConflict, RelationType
from classbalancer.models.entities import (
    COMPOSITE,
    Criterion,
    Gender,
    Group,
    Meter,
    MeterStatus,
    PlacementMode,
    Student,
    WeightLevel,
)
from classbalancer.storage.cache import PlacementCache, ScoreCache
from classbalancer.storage.roster_csv import export_roster, parse_roster
from classbalancer.storage.session_file import SessionFormatError, export_session, load_session
from classbalancer.utils.benchmarking import benchmark_modes
from classbalancer.utils.scoring import raw_value

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def get_placement_cache() -> Optional[PlacementCache]:
    if not settings.cache_enabled:
        return None
    return PlacementCache()


class CriterionDTO(BaseModel):
    label: str = Field(..., min_length=1)
    weight: float = 1.0
    weight_level: Optional[str] = None
    max: float = 100.0
    enabled: bool = True

    @field_validator("weight_level")
    @classmethod
    def validate_level(cls, v: Optional[str]):
        """Named weight level must be Low, Normal or High."""
        if v is None:
            return v
        try:
            WeightLevel.from_label(v)
        except KeyError:
            raise ValueError("weight_level must be one of Low, Normal, High")
        return v

    def to_domain(self) -> Criterion:
        weight = WeightLevel.from_label(self.weight_level).value if self.weight_level else self.weight
        return Criterion(label=self.label, weight=weight, max=self.max, enabled=self.enabled)

    @classmethod
    def from_domain(cls, c: Criterion) -> "CriterionDTO":
        return cls(label=c.label, weight=c.weight, max=c.max, enabled=c.enabled)


class StudentDTO(BaseModel):
    id: str = Field(..., min_length=1)
    first_name: str = ""
    last_name: str = ""
    gender: Optional[Gender] = None
    scores: Dict[str, float] = {}
    ignore_scores: bool = False
    pin_group: Optional[int] = None
    keep_with: List[str] = []
    keep_apart: List[str] = []
    tags: List[str] = []
    notes: str = ""
    previous_teacher: str = ""

    @field_validator("pin_group")
    @classmethod
    def validate_pin(cls, v: Optional[int]):
        if v is not None and v < 0:
            raise ValueError("pin_group must be a non-negative class index")
        return v

    @model_validator(mode="after")
    def validate_relations(self):
        """A student cannot be both kept with and kept apart from the same peer."""
        both = set(self.keep_with) & set(self.keep_apart)
        if both:
            raise ValueError(f"students {sorted(both)} are in both keep_with and keep_apart")
        return self

    def to_domain(self) -> Student:
        return Student(
            id=self.id,
            first_name=self.first_name,
            last_name=self.last_name,
            gender=self.gender,
            scores=dict(self.scores),
            ignore_scores=self.ignore_scores,
            pin_group=self.pin_group,
            keep_with=set(self.keep_with),
            keep_apart=set(self.keep_apart),
            tags=list(self.tags),
            notes=self.notes,
            previous_teacher=self.previous_teacher,
        )

    @classmethod
    def from_domain(cls, s: Student) -> "StudentDTO":
        return cls(
            id=s.id,
            first_name=s.first_name,
            last_name=s.last_name,
            gender=s.gender,
            scores={label: raw_value(s, label) for label in s.scores},
            ignore_scores=s.ignore_scores,
            pin_group=s.pin_group,
            keep_with=sorted(s.keep_with),
            keep_apart=sorted(s.keep_apart),
            tags=list(s.tags),
            notes=s.notes,
            previous_teacher=s.previous_teacher,
        )


class GroupDTO(BaseModel):
    id: str
    name: str
    member_ids: List[str]
    capacity: int = 0

    @classmethod
    def from_domain(cls, g: Group) -> "GroupDTO":
        return cls(id=g.id, name=g.name, member_ids=list(g.member_ids), capacity=g.capacity)

    def to_domain(self) -> Group:
        return Group(id=self.id, name=self.name, member_ids=list(self.member_ids), capacity=self.capacity)


class MeterDTO(BaseModel):
    label: str
    avg: float
    pct: float
    roster_avg: float
    deviation: float
    deviation_pct: float
    status: MeterStatus

    @classmethod
    def from_domain(cls, m: Meter) -> "MeterDTO":
        return cls(**m.__dict__)


class RosterRequest(BaseModel):
    students: List[StudentDTO]
    criteria: List[CriterionDTO] = []

    def student_map(self) -> Dict[str, Student]:
        return {s.id: s.to_domain() for s in self.students}


class GenerateRequest(RosterRequest):
    group_count: int = Field(settings.default_group_count, ge=1, le=100)
    group_names: List[Optional[str]] = []
    level_on: Optional[str] = COMPOSITE


class GenerateResponse(BaseModel):
    groups: List[GroupDTO]
    capacities: List[int]
    meters: List[List[MeterDTO]]
    cached: bool = False
    mode: PlacementMode = PlacementMode.BALANCED


class PlaceRequest(RosterRequest):
    new_id: str
    groups: List[GroupDTO]
    level_on: Optional[str] = COMPOSITE


class PlaceResponse(BaseModel):
    group_index: int
    group_name: Optional[str] = None


class MetersRequest(RosterRequest):
    group: GroupDTO


class BenchmarkEntry(BaseModel):
    mode: str
    time_seconds: float
    spread: float
    size_gap: int


class BenchmarkResponse(BaseModel):
    results: List[BenchmarkEntry]
    num_students: int


class RelationRequest(RosterRequest):
    student_id: str
    peer_id: str
    relation: RelationType
    remove: bool = False


class RelationResponse(BaseModel):
    keep_with: Dict[str, List[str]]
    keep_apart: Dict[str, List[str]]


class TextUpload(BaseModel):
    text: str


class RosterResponse(BaseModel):
    students: List[StudentDTO]
    criteria: List[CriterionDTO]


class RosterExportRequest(RosterRequest):
    groups: List[GroupDTO] = []


class SessionExportRequest(RosterExportRequest):
    group_count: int = Field(settings.default_group_count, ge=1, le=100)
    group_names: List[Optional[str]] = []


class SessionResponse(RosterResponse):
    num_classes: Optional[int] = None
    group_names: List[Optional[str]] = []
    groups: List[GroupDTO] = []


def _check_student_ids(req: RosterRequest) -> None:
    ids = [s.id for s in req.students]
    if len(ids) != len(set(ids)):
        raise HTTPException(status_code=400, detail="Student ids must be unique")


def _check_level_on(level_on: Optional[str], criteria: List[CriterionDTO]) -> None:
    if level_on and level_on != COMPOSITE and level_on not in {c.label for c in criteria}:
        raise HTTPException(status_code=400, detail=f"Unknown ranking criterion {level_on}")


@router.post("/groups/generate", response_model=GenerateResponse, summary="Place the roster into classes")
def generate(
    req: GenerateRequest,
    mode: PlacementMode = Query(PlacementMode.BALANCED, description="Placement mode: balanced or leveled"),
    cache: Optional[PlacementCache] = Depends(get_placement_cache),
):
    """
    Split the roster into classes and report per-class meters.

    **Modes:**
    - `balanced`: even class averages across all weighted criteria
    - `leveled`: ordered bands on `level_on` (composite or one criterion)

    **Constraints** come from each student's `keep_with`, `keep_apart` and
    `pin_group`. Infeasible combinations never fail: the engine falls back
    to forced placements.

    **Error Handling:**
    - 400: Duplicate ids or unknown ranking criterion
    - 422: Malformed payload
    """
    logger.info(f"Generate request: {len(req.students)} students, {req.group_count} classes, mode={mode.value}")
    _check_student_ids(req)
    _check_level_on(req.level_on, req.criteria)

    request_hash = None
    if cache is not None:
        request_hash = PlacementCache.hash_request(
            [s.model_dump(mode="json") for s in req.students],
            [c.model_dump(mode="json") for c in req.criteria],
            {"group_count": req.group_count, "group_names": req.group_names, "mode": mode.value, "level_on": req.level_on},
        )
        cached = cache.get(request_hash)
        if cached:
            logger.info("Cache hit")
            return {**cached, "cached": True}

    students = req.student_map()
    all_ids = [s.id for s in req.students]
    criteria = [c.to_domain() for c in req.criteria]
    scores = ScoreCache()

    result = group_roster(
        all_ids,
        students,
        req.group_count,
        criteria,
        keep_together=collect_pairs(all_ids, students, "keep_with"),
        keep_apart=collect_pairs(all_ids, students, "keep_apart"),
        group_names=req.group_names,
        mode=mode,
        level_on=req.level_on,
        cache=scores,
    )
    response = GenerateResponse(
        groups=[GroupDTO.from_domain(g) for g in result.groups],
        capacities=result.capacities,
        meters=[
            [MeterDTO.from_domain(m) for m in compute_meters(g, students, criteria, all_ids, scores)]
            for g in result.groups
        ],
        mode=mode,
    )

    if cache is not None:
        cache.set(request_hash, response.model_dump(mode="json", exclude={"cached"}))
    return response


@router.post("/groups/place", response_model=PlaceResponse, summary="Place one new student")
def place(
    req: PlaceRequest,
    mode: PlacementMode = Query(PlacementMode.BALANCED, description="Placement mode: balanced or leveled"),
):
    """Pick the class a newly added student should join, leaving existing placements untouched."""
    _check_student_ids(req)
    _check_level_on(req.level_on, req.criteria)
    students = req.student_map()
    if req.new_id not in students:
        raise HTTPException(status_code=404, detail=f"Unknown student {req.new_id}")

    groups = [g.to_domain() for g in req.groups]
    index = place_new_student(req.new_id, groups, students, [c.to_domain() for c in req.criteria], mode, req.level_on)
    name = groups[index].name if groups else None
    logger.info(f"New student {req.new_id} -> class index {index}")
    return {"group_index": index, "group_name": name}


@router.post("/groups/meters", response_model=List[MeterDTO], summary="Meters for one class")
def meters(req: MetersRequest):
    """Compare one class's per-criterion averages with the roster-wide averages."""
    students = req.student_map()
    criteria = [c.to_domain() for c in req.criteria]
    return [
        MeterDTO.from_domain(m)
        for m in compute_meters(req.group.to_domain(), students, criteria, [s.id for s in req.students])
    ]


@router.post("/groups/benchmark", response_model=BenchmarkResponse, summary="Compare placement modes")
def benchmark(req: GenerateRequest):
    """
    Run balanced and leveled placement on the same roster.

    **Returns:**
    - Timing, composite spread (highest minus lowest class average) and
      largest class-size gap for each mode
    """
    logger.info(f"Benchmark request: {len(req.students)} students")
    _check_student_ids(req)
    _check_level_on(req.level_on, req.criteria)

    students = req.student_map()
    all_ids = [s.id for s in req.students]
    results = benchmark_modes(
        all_ids,
        students,
        req.group_count,
        [c.to_domain() for c in req.criteria],
        collect_pairs(all_ids, students, "keep_with"),
        collect_pairs(all_ids, students, "keep_apart"),
        level_on=req.level_on,
    )
    return {
        "results": [
            BenchmarkEntry(mode=r.mode, time_seconds=r.time_seconds, spread=r.spread, size_gap=r.size_gap)
            for r in results
        ],
        "num_students": len(all_ids),
    }


@router.post("/relations", response_model=RelationResponse, summary="Add or remove a pair relation")
def edit_relation(req: RelationRequest):
    """
    Apply a keep-with / keep-apart edit to both students at once.

    **Error Handling:**
    - 404: Unknown student
    - 409: The pair already holds the opposite relation; nothing is changed
    """
    students = req.student_map()
    for sid in (req.student_id, req.peer_id):
        if sid not in students:
            raise HTTPException(status_code=404, detail=f"Unknown student {sid}")
    try:
        if req.remove:
            remove_relation(students, req.student_id, req.peer_id, req.relation)
        else:
            add_relation(students, req.student_id, req.peer_id, req.relation)
    except RelationConflict as exc:
        logger.warning(str(exc))
        raise HTTPException(status_code=409, detail={
            "message": str(exc),
            "student_id": exc.student_id,
            "peer_id": exc.peer_id,
            "requested": exc.requested.value,
            "existing": exc.existing.value,
        })

    pair = (req.student_id, req.peer_id)
    return {
        "keep_with": {sid: sorted(students[sid].keep_with) for sid in pair},
        "keep_apart": {sid: sorted(students[sid].keep_apart) for sid in pair},
    }


@router.post("/roster/import", response_model=RosterResponse, summary="Parse a CSV roster")
def import_roster(req: TextUpload):
    """
    Turn CSV text into students and detected criteria.

    Columns other than the name, gender, tags, notes and previous-teacher
    fields become criteria when most of their cells are numbers or letter
    levels (A=1 ... Z=26).
    """
    parsed = parse_roster(req.text)
    return {
        "students": [StudentDTO.from_domain(s) for s in parsed.students],
        "criteria": [CriterionDTO.from_domain(c) for c in parsed.criteria],
    }


@router.post("/roster/export", summary="Export placements as CSV")
def export_roster_csv(req: RosterExportRequest):
    _check_student_ids(req)
    text = export_roster(
        [s.id for s in req.students],
        req.student_map(),
        [c.to_domain() for c in req.criteria],
        [g.to_domain() for g in req.groups],
    )
    return Response(content=text, media_type="text/csv")


@router.post("/session/export", summary="Save a session file")
def save_session(req: SessionExportRequest):
    """Serialize roster, criteria, class names and current classes as a `bcs-1` JSON document."""
    _check_student_ids(req)
    session = PlacementSession(
        students=[s.to_domain() for s in req.students],
        criteria=[c.to_domain() for c in req.criteria],
        group_count=req.group_count,
        group_names=req.group_names,
    )
    session.groups = [g.to_domain() for g in req.groups]
    return Response(content=export_session(session), media_type="application/json")


@router.post("/session/import", response_model=SessionResponse, summary="Load a session file")
def open_session(req: TextUpload):
    """
    Parse a `bcs-1` session document.

    **Error Handling:**
    - 400: Malformed session file
    """
    try:
        loaded = load_session(req.text)
    except SessionFormatError as exc:
        logger.warning(f"Rejected session file: {exc}")
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "students": [StudentDTO.from_domain(s) for s in loaded.students],
        "criteria": [CriterionDTO.from_domain(c) for c in loaded.criteria],
        "num_classes": loaded.num_classes,
        "group_names": [m.get("name") for m in loaded.class_meta],
        "groups": [GroupDTO.from_domain(g) for g in loaded.classes],
    }
