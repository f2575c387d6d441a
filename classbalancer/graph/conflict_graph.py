from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple

from classbalancer.models.entities import Student


def collect_pairs(all_ids: Iterable[str], students_by_id: Dict[str, Student], attr: str) -> List[Tuple[str, str]]:
    """Flatten a per-student relation set ("keep_with" / "keep_apart") into ordered pairs."""
    pairs: List[Tuple[str, str]] = []
    for sid in all_ids:
        student = students_by_id.get(sid)
        if student is None:
            continue
        for other in sorted(getattr(student, attr)):
            pairs.append((sid, other))
    return pairs


def build_separation_graph(pairs: Iterable[Tuple[str, str]]) -> Dict[str, Set[str]]:
    graph: Dict[str, Set[str]] = defaultdict(set)
    for a, b in pairs:
        if not a or not b or a == b:
            continue
        graph[a].add(b)
        graph[b].add(a)
    return graph
