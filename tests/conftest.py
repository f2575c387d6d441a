import pytest
from classbalancer.models.entities import Criterion, Gender, Student


def make_roster(*students):
    """(ids in order, id -> Student) for a list of students."""
    return [s.id for s in students], {s.id: s for s in students}


@pytest.fixture
def reading():
    """Single criterion, normal weight, out of 100."""
    return [Criterion(label="Reading", weight=1.0, max=100)]


@pytest.fixture
def four_readers():
    """Four students with Reading scores 80, 40, 60, 20."""
    return make_roster(
        Student(id="ana", first_name="Ana", last_name="Lopez", scores={"Reading": 80}),
        Student(id="ben", first_name="Ben", last_name="Park", scores={"Reading": 40}),
        Student(id="cy", first_name="Cy", last_name="Ward", scores={"Reading": 60}),
        Student(id="dee", first_name="Dee", last_name="Moss", scores={"Reading": 20}),
    )


@pytest.fixture
def two_criteria():
    return [
        Criterion(label="Reading", weight=1.0, max=100),
        Criterion(label="Math", weight=2.0, max=50),
    ]


@pytest.fixture
def mixed_roster():
    """Twelve students with alternating genders and spread-out scores."""
    students = []
    for i in range(12):
        students.append(Student(
            id=f"s{i:02d}",
            first_name=f"First{i}",
            last_name=f"Last{i}",
            gender=Gender.MALE if i % 2 == 0 else Gender.FEMALE,
            scores={"Reading": 30 + i * 5, "Math": 10 + (i * 7) % 40},
        ))
    return make_roster(*students)


@pytest.fixture
def ranked_roster():
    """Nine students with distinct Reading scores 90, 80, ..., 10."""
    return make_roster(*[
        Student(id=f"r{i}", first_name=f"R{i}", scores={"Reading": 90 - i * 10})
        for i in range(9)
    ])
