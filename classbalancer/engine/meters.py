from typing import Dict, List, Optional

from classbalancer.models.entities import Criterion, Group, Meter, MeterStatus, Student
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import criteria_signature, effective_max, raw_value, roster_average

FAR_BELOW_PCT = -15.0
BELOW_PCT = -10.0
ABOVE_PCT = 10.0


def classify(deviation: float, deviation_pct: float) -> MeterStatus:
    if deviation < 0:
        if deviation_pct <= FAR_BELOW_PCT:
            return MeterStatus.FAR_BELOW
        if deviation_pct <= BELOW_PCT:
            return MeterStatus.BELOW
    elif deviation > 0 and deviation_pct >= ABOVE_PCT:
        return MeterStatus.ABOVE
    return MeterStatus.BALANCED


def compute_meters(group: Group, students_by_id: Dict[str, Student], criteria: List[Criterion],
                   all_ids: List[str], cache: Optional[ScoreCache] = None) -> List[Meter]:
    """
    One meter per enabled criterion comparing the class average with the
    roster-wide average. Excluded students count toward neither.
    """
    key = (group.id, criteria_signature(criteria), ",".join(group.member_ids))
    if cache is not None:
        cached = cache.get_meters(key)
        if cached is not None:
            return cached

    scored = [
        sid for sid in group.member_ids
        if not getattr(students_by_id.get(sid), "ignore_scores", False)
    ]
    meters = []
    for c in criteria:
        if not c.enabled:
            continue
        avg = sum(raw_value(students_by_id.get(sid), c.label) for sid in scored) / len(scored) if scored else 0.0
        pct = max(0.0, min(100.0, avg / effective_max(c) * 100))
        roster_avg = roster_average(students_by_id, all_ids, c.label)
        deviation = avg - roster_avg
        deviation_pct = deviation / (roster_avg or 1) * 100
        meters.append(Meter(
            label=c.label,
            avg=avg,
            pct=pct,
            roster_avg=roster_avg,
            deviation=deviation,
            deviation_pct=deviation_pct,
            status=classify(deviation, deviation_pct),
        ))

    if cache is not None:
        cache.set_meters(key, meters)
    return meters
