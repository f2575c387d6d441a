import math
from typing import Dict, Iterable, List, Optional

from classbalancer.models.entities import COMPOSITE, Criterion, Student
from classbalancer.storage.cache import ScoreCache


def raw_value(student: Optional[Student], label: str) -> float:
    """Raw criterion value; missing, non-numeric or non-finite reads as 0."""
    if student is None:
        return 0.0
    value = student.scores.get(label)
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def effective_max(criterion: Criterion) -> float:
    try:
        m = float(criterion.max)
    except (TypeError, ValueError):
        return 100.0
    return m if math.isfinite(m) and m > 0 else 100.0


def criteria_signature(criteria: List[Criterion]) -> str:
    return "|".join(f"{c.label}:{c.weight}:{c.max}:{int(bool(c.enabled))}" for c in criteria)


def composite_score(student: Optional[Student], criteria: List[Criterion], cache: Optional[ScoreCache] = None,
                    signature: Optional[str] = None) -> float:
    if student is None:
        return 0.0
    key = None
    if cache is not None:
        key = (student.id, signature if signature is not None else criteria_signature(criteria))
        cached = cache.get_score(key)
        if cached is not None:
            return cached

    if student.ignore_scores:
        total = 0.0
    else:
        # enabled only affects meters; every weighted criterion scores
        total = sum(
            (raw_value(student, c.label) / effective_max(c)) * 100 * float(c.weight or 0)
            for c in criteria
        )

    if cache is not None:
        cache.set_score(key, total)
    return total


def ranking_score(student: Optional[Student], criteria: List[Criterion], level_on: Optional[str],
                  cache: Optional[ScoreCache] = None, signature: Optional[str] = None) -> float:
    """Score used to order students in leveled mode: composite or one raw criterion."""
    if not level_on or level_on == COMPOSITE:
        return composite_score(student, criteria, cache, signature)
    return raw_value(student, level_on)


def roster_average(students_by_id: Dict[str, Student], ids: Iterable[str], label: str) -> float:
    relevant = [i for i in ids if i in students_by_id and not students_by_id[i].ignore_scores]
    if not relevant:
        return 0.0
    return sum(raw_value(students_by_id[i], label) for i in relevant) / len(relevant)
