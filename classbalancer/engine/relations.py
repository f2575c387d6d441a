"""
Symmetric keep-with / keep-apart edits.

Both students' relation sets change together or not at all. A pair can
never hold both relations: adding one while the other exists raises
RelationConflict and leaves both records untouched.
"""

import logging
from typing import Dict, Set

from classbalancer.models.constraints import RelationConflict, RelationType
from classbalancer.models.entities import Student

logger = logging.getLogger(__name__)


def relation_set(student: Student, relation: RelationType) -> Set[str]:
    return student.keep_with if relation is RelationType.KEEP_WITH else student.keep_apart


def check_relation(students_by_id: Dict[str, Student], student_id: str, peer_id: str, relation: RelationType) -> None:
    """Raise RelationConflict if ``relation`` contradicts the pair's existing relation."""
    relation = RelationType(relation)
    student = students_by_id[student_id]
    peer = students_by_id[peer_id]
    opposite = relation.opposite
    if student_id in relation_set(peer, opposite) or peer_id in relation_set(student, opposite):
        raise RelationConflict(
            student_id, peer_id, relation, opposite,
            student_name=student.name, peer_name=peer.name,
        )


def add_relation(students_by_id: Dict[str, Student], student_id: str, peer_id: str, relation: RelationType) -> None:
    if student_id == peer_id:
        return
    relation = RelationType(relation)
    check_relation(students_by_id, student_id, peer_id, relation)
    relation_set(students_by_id[student_id], relation).add(peer_id)
    relation_set(students_by_id[peer_id], relation).add(student_id)
    logger.debug(f"Added {relation.value} between {student_id} and {peer_id}")


def remove_relation(students_by_id: Dict[str, Student], student_id: str, peer_id: str, relation: RelationType) -> None:
    relation = RelationType(relation)
    relation_set(students_by_id[student_id], relation).discard(peer_id)
    relation_set(students_by_id[peer_id], relation).discard(student_id)


def toggle_relation(students_by_id: Dict[str, Student], student_id: str, peer_id: str, relation: RelationType) -> bool:
    """Add the relation if absent, remove it if present. Returns True when it is now set."""
    relation = RelationType(relation)
    if peer_id in relation_set(students_by_id[student_id], relation):
        remove_relation(students_by_id, student_id, peer_id, relation)
        return False
    add_relation(students_by_id, student_id, peer_id, relation)
    return True
