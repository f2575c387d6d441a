from enum import Enum


class RelationType(str, Enum):
    KEEP_WITH = "keep_with"
    KEEP_APART = "keep_apart"

    @property
    def opposite(self) -> "RelationType":
        return RelationType.KEEP_APART if self is RelationType.KEEP_WITH else RelationType.KEEP_WITH

    @property
    def phrase(self) -> str:
        return "kept with" if self is RelationType.KEEP_WITH else "separated from"


class RelationConflict(Exception):
    """Raised when a relation edit contradicts the opposite relation on the same pair."""

    def __init__(self, student_id: str, peer_id: str, requested: RelationType, existing: RelationType,
                 student_name: str = "", peer_name: str = ""):
        self.student_id = student_id
        self.peer_id = peer_id
        self.requested = requested
        self.existing = existing
        self.student_name = student_name or student_id
        self.peer_name = peer_name or peer_id
        super().__init__(
            f'Cannot set "{self.student_name} {requested.phrase} {self.peer_name}": '
            f"{self.peer_name} is already {existing.phrase} {self.student_name}. "
            f"Remove the existing constraint first."
        )


class MoveBlocked(Exception):
    """Raised when a manual move would put a student next to a keep-apart peer."""

    def __init__(self, student_id: str, blocking_id: str, to_index: int):
        self.student_id = student_id
        self.blocking_id = blocking_id
        self.to_index = to_index
        super().__init__(
            f"Cannot move {student_id} into class {to_index + 1}: "
            f"a separation constraint exists with {blocking_id}"
        )
