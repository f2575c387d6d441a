from typing import List


def plan_capacities(n_students: int, n_groups: int) -> List[int]:
    """
    Target size of each group.

    Even split; the first ``n_students % n_groups`` groups take one extra
    student. Capacities always sum to ``n_students``.

    Example: 10 students, 3 groups -> [4, 3, 3]
    """
    if n_groups < 1:
        raise ValueError("group count must be at least 1")
    base, remainder = divmod(max(0, n_students), n_groups)
    return [base + (1 if i < remainder else 0) for i in range(n_groups)]
