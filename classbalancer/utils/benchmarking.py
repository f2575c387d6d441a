import time
from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass

from classbalancer.engine.runner import group_roster
from classbalancer.models.entities import Criterion, Group, PlacementMode, Student
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import composite_score


@dataclass
class BenchmarkResult:
    mode: str
    time_seconds: float
    spread: float
    size_gap: int
    num_groups: int


def composite_spread(groups: List[Group], students_by_id: Dict[str, Student], criteria: List[Criterion],
                     cache: Optional[ScoreCache] = None) -> float:
    """Highest minus lowest class average composite (excluded students ignored)."""
    averages = []
    for g in groups:
        scored = [students_by_id[sid] for sid in g.member_ids
                  if sid in students_by_id and not students_by_id[sid].ignore_scores]
        if scored:
            averages.append(sum(composite_score(s, criteria, cache) for s in scored) / len(scored))
    return max(averages) - min(averages) if averages else 0.0


def benchmark_modes(
    all_ids: List[str],
    students_by_id: Dict[str, Student],
    group_count: int,
    criteria: List[Criterion],
    keep_together: Iterable[Tuple[str, str]] = (),
    keep_apart: Iterable[Tuple[str, str]] = (),
    level_on: Optional[str] = None,
) -> list:
    """
    Run balanced and leveled placement on the same roster.
    Returns list of BenchmarkResult.
    """
    keep_together, keep_apart = list(keep_together), list(keep_apart)
    cache = ScoreCache()
    results = []
    for mode in (PlacementMode.BALANCED, PlacementMode.LEVELED):
        start = time.perf_counter()
        out = group_roster(all_ids, students_by_id, group_count, criteria, keep_together, keep_apart,
                           mode=mode, level_on=level_on, cache=cache)
        elapsed = time.perf_counter() - start
        sizes = [len(g.member_ids) for g in out.groups]
        results.append(BenchmarkResult(
            mode=mode.value,
            time_seconds=elapsed,
            spread=composite_spread(out.groups, students_by_id, criteria, cache),
            size_gap=max(sizes) - min(sizes) if sizes else 0,
            num_groups=len(out.groups),
        ))
    return results
