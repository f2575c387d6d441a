"""
CSV roster ingestion and export.

Header names are matched loosely (case and punctuation ignored). Columns
that are not core fields become scoring criteria when most of their
non-empty cells are numbers or single-letter levels (A=1 ... Z=26).
"""

import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from classbalancer.config.settings import get_settings
from classbalancer.engine.session import slug_id, split_name, unique_id
from classbalancer.models.entities import Criterion, Gender, Group, Student
from classbalancer.utils.scoring import raw_value

logger = logging.getLogger(__name__)
settings = get_settings()

CORE_FIELDS = {"id", "firstname", "lastname", "name", "gender", "tags", "notes", "previousteacher"}
LETTER_LEVELS = {chr(ord("A") + i): i + 1 for i in range(26)}
TAG_SPLIT = re.compile(r"[|,;/]")


def norm(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header or "").lower())


def parse_number(cell: str) -> Optional[float]:
    cell = (cell or "").strip()
    if not cell:
        return None
    try:
        value = float(cell)
    except ValueError:
        return LETTER_LEVELS.get(cell.upper())
    return value if math.isfinite(value) else None


def mostly_numeric(cells: Sequence[str], majority: float = settings.numeric_majority) -> bool:
    non_empty = [c for c in cells if c and c.strip()]
    if not non_empty:
        return False
    numeric = sum(1 for c in non_empty if parse_number(c) is not None)
    return numeric / len(non_empty) > majority


def parse_gender(value: str) -> Optional[Gender]:
    value = (value or "").strip().upper()
    try:
        return Gender(value)
    except ValueError:
        return None


def split_tags(value: str) -> List[str]:
    return [t.strip() for t in TAG_SPLIT.split(value or "") if t.strip()]


@dataclass
class ParsedRoster:
    students: List[Student] = field(default_factory=list)
    criteria: List[Criterion] = field(default_factory=list)


def parse_roster(text: str, majority: float = settings.numeric_majority) -> ParsedRoster:
    text = (text or "").lstrip("\ufeff")
    rows = [r for r in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in r)]
    if not rows:
        return ParsedRoster()

    headers = [h.strip() for h in rows[0]]
    headers_norm = [norm(h) for h in headers]
    body = [[cell.strip() for cell in r] for r in rows[1:]]

    def column(i: int) -> List[str]:
        return [r[i] if i < len(r) else "" for r in body]

    criteria_cols = [
        i for i, hn in enumerate(headers_norm)
        if headers[i] and hn not in CORE_FIELDS and mostly_numeric(column(i), majority)
    ]
    criteria = []
    values_by_col: Dict[int, List[float]] = {}
    for i in criteria_cols:
        values = [parse_number(c) or 0.0 for c in column(i)]
        values_by_col[i] = values
        top = max(values, default=0.0)
        criteria.append(Criterion(label=headers[i], weight=1.0, max=top if top > 0 else 100.0, enabled=True))

    students: List[Student] = []
    taken = set()
    for r, row in enumerate(body):
        by_norm = {hn: (row[i] if i < len(row) else "") for i, hn in enumerate(headers_norm)}
        first, last = by_norm.get("firstname", ""), by_norm.get("lastname", "")
        if not first and not last:
            if not by_norm.get("name"):
                continue
            first, last = split_name(by_norm["name"])

        base = by_norm.get("id") or slug_id(first, last) or f"row{r + 1}"
        sid = unique_id(base, taken)
        taken.add(sid)
        students.append(Student(
            id=sid,
            first_name=first,
            last_name=last,
            gender=parse_gender(by_norm.get("gender", "")),
            scores={headers[i]: values_by_col[i][r] for i in criteria_cols},
            tags=split_tags(by_norm.get("tags", "")),
            notes=by_norm.get("notes", ""),
            previous_teacher=by_norm.get("previousteacher", ""),
        ))

    logger.info(f"Parsed {len(students)} students and {len(criteria)} criteria from CSV")
    return ParsedRoster(students=students, criteria=criteria)


def export_roster(all_ids: List[str], students_by_id: Dict[str, Student], criteria: List[Criterion],
                  groups: List[Group]) -> str:
    class_of = {sid: g.name for g in groups for sid in g.member_ids}
    headers = ["Class Name", "First Name", "Last Name", "gender", "tags", "notes", "Previous Teacher"]
    headers += [c.label for c in criteria]

    rows = []
    for sid in all_ids:
        s = students_by_id[sid]
        rows.append([
            class_of.get(sid, "Unassigned"),
            s.first_name,
            s.last_name,
            s.gender.value if isinstance(s.gender, Gender) else (s.gender or ""),
            "; ".join(s.tags),
            s.notes.replace("\n", " "),
            s.previous_teacher,
        ] + [f"{raw_value(s, c.label):g}" for c in criteria])
    rows.sort(key=lambda row: row[0])

    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return out.getvalue()
