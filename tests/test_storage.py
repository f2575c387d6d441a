import json

import pytest
from classbalancer.engine.session import PlacementSession
from classbalancer.models.entities import Criterion, Gender, Student
from classbalancer.storage.cache import PlacementCache
from classbalancer.storage.roster_csv import export_roster, mostly_numeric, parse_number, parse_roster
from classbalancer.storage.session_file import SessionFormatError, export_session, load_session


ROSTER_CSV = "\ufeff" + """First Name,Last Name,Gender,Tags,Notes,Previous Teacher,Reading,Guided Level,Comment
Ana,Lopez,F,"IEP, ELL",quiet,Smith,88,C,hello
Ben,Park,m,Gifted|Speech,,Jones,72,E,
,,,,,,,,
Cy,Ward,X,,,Smith,n/a,B,ok
"""


class TestRosterCsv:
    def test_parses_core_fields(self):
        parsed = parse_roster(ROSTER_CSV)
        assert [s.id for s in parsed.students] == ["analopez", "benpark", "cyward"]
        ana, ben, cy = parsed.students
        assert (ana.first_name, ana.last_name) == ("Ana", "Lopez")
        assert ana.gender is Gender.FEMALE
        assert ben.gender is Gender.MALE
        assert cy.gender is None
        assert ana.tags == ["IEP", "ELL"]
        assert ben.tags == ["Gifted", "Speech"]
        assert ana.notes == "quiet"
        assert ana.previous_teacher == "Smith"

    def test_detects_numeric_and_letter_columns(self):
        parsed = parse_roster(ROSTER_CSV)
        labels = [c.label for c in parsed.criteria]
        assert labels == ["Reading", "Guided Level"]
        reading, guided = parsed.criteria
        assert reading.max == 88
        assert guided.max == 5
        ana, ben, cy = parsed.students
        assert ana.scores == {"Reading": 88, "Guided Level": 3}
        assert cy.scores["Reading"] == 0

    def test_single_name_column_and_duplicate_ids(self):
        text = "Name,Score\nJo Ann Smith,5\nJo Ann Smith,7\n"
        parsed = parse_roster(text)
        assert [s.id for s in parsed.students] == ["joannsmith", "joannsmith2"]
        assert parsed.students[0].first_name == "Jo"
        assert parsed.students[0].last_name == "Ann Smith"

    def test_explicit_ids(self):
        parsed = parse_roster("id,first name,score\n17,Al,3\n")
        assert parsed.students[0].id == "17"

    def test_empty_input(self):
        parsed = parse_roster("")
        assert parsed.students == [] and parsed.criteria == []

    def test_majority_rule(self):
        assert mostly_numeric(["1", "2", "x"])
        assert not mostly_numeric(["1", "xx", "yy", ""])
        assert not mostly_numeric(["1", "zz"])
        assert not mostly_numeric(["", " "])
        assert parse_number("b") == 2
        assert parse_number("AB") is None

    def test_non_finite_cells_read_as_zero(self):
        parsed = parse_roster("name,Reading\nAna Lopez,nan\nBen Park,80\nCy Ward,inf\nDi Moss,60\nEd Hale,40\n")
        (reading,) = parsed.criteria
        assert reading.max == 80
        ana, ben, cy, di, ed = parsed.students
        assert ana.scores["Reading"] == 0
        assert cy.scores["Reading"] == 0
        assert parse_number("Infinity") is None
        assert parse_number("-inf") is None

    def test_export_sorted_by_class(self):
        students = {
            "a": Student(id="a", first_name="Ana", scores={"Reading": 80}),
            "b": Student(id="b", first_name="Ben", gender=Gender.MALE, tags=["x", "y"]),
        }
        session = PlacementSession(students=list(students.values()), criteria=[Criterion("Reading")], group_count=2)
        session.run()
        text = export_roster(session.all_ids, students, session.criteria, session.groups)
        lines = text.strip().split("\n")
        assert lines[0].startswith("Class Name,First Name,Last Name")
        assert lines[0].endswith(",Reading")
        assert lines[1].startswith("Class 1,")
        assert lines[2].startswith("Class 2,")
        assert "x; y" in text

    def test_unplaced_students_exported_as_unassigned(self):
        students = {"a": Student(id="a", first_name="Ana")}
        text = export_roster(["a"], students, [], [])
        assert text.split("\n")[1].startswith("Unassigned,Ana")


class TestSessionFile:
    def _session(self):
        students = [
            Student(id="a", first_name="Ana", last_name="Lopez", gender=Gender.FEMALE,
                    scores={"Reading": 80}, keep_apart={"b"}, pin_group=1),
            Student(id="b", first_name="Ben", keep_apart={"a"}, ignore_scores=True),
        ]
        session = PlacementSession(students=students, criteria=[Criterion("Reading", weight=2.0, enabled=False)],
                                   group_count=2, group_names=["Room 4", None])
        session.run()
        return session

    def test_round_trip(self):
        session = self._session()
        text = export_session(session)
        data = json.loads(text)
        assert data["version"] == "bcs-1"
        assert "enabled" not in data["criteria"][0]

        loaded = load_session(text)
        assert loaded.num_classes == 2
        assert [s.id for s in loaded.students] == ["a", "b"]
        ana = loaded.students[0]
        assert ana.keep_apart == {"b"}
        assert ana.pin_group == 1
        assert ana.gender is Gender.FEMALE
        assert loaded.students[1].ignore_scores is True
        # enabled is re-derived from weight
        assert loaded.criteria[0].enabled is True
        assert [g.member_ids for g in loaded.classes] == [g.member_ids for g in session.groups]

        restored = loaded.to_session()
        assert restored.group_names == ["Room 4", None]
        assert restored.groups[0].name == "Room 4"

    def test_zero_weight_loads_disabled(self):
        text = json.dumps({"students": [], "criteria": [{"label": "Art", "weight": 0, "max": 10}]})
        assert load_session(text).criteria[0].enabled is False

    def test_name_split_and_missing_id_skipped(self):
        text = json.dumps({"students": [{"id": "x", "name": "Mo Salah"}, {"name": "No Id"}]})
        loaded = load_session(text)
        assert [(s.first_name, s.last_name) for s in loaded.students] == [("Mo", "Salah")]
        assert loaded.num_classes is None

    @pytest.mark.parametrize("criterion", [{"weight": 1.0}, {"label": "Reading", "weight": "High"}, {"label": " "}])
    def test_bad_criterion_rejected(self, criterion):
        text = json.dumps({"students": [], "criteria": [criterion]})
        with pytest.raises(SessionFormatError):
            load_session(text)

    def test_student_in_both_relations_rejected(self):
        text = json.dumps({"students": [{"id": "a", "keep_with": ["b"], "keep_apart": ["b"]}]})
        with pytest.raises(SessionFormatError):
            load_session(text)

    def test_numeric_ids_and_invalid_pins(self):
        text = json.dumps({"num_classes": 0, "students": [{"id": 17, "pin_group": True}, {"id": "b", "pin_group": "2"}]})
        loaded = load_session(text)
        assert [s.id for s in loaded.students] == ["17", "b"]
        assert [s.pin_group for s in loaded.students] == [None, None]
        assert loaded.num_classes is None

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"criteria": []}'])
    def test_malformed(self, text):
        with pytest.raises(SessionFormatError):
            load_session(text)


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, key):
        self.store.pop(key, None)

    def ping(self):
        return True


class TestPlacementCache:
    def test_set_get_delete(self):
        cache = PlacementCache(client=FakeRedis())
        cache.set("abc", {"groups": [1]})
        assert cache.get("abc") == {"groups": [1]}
        cache.delete("abc")
        assert cache.get("abc") is None
        assert cache.health_check()

    def test_hash_is_order_insensitive_for_keys(self):
        h1 = PlacementCache.hash_request([{"id": "a", "x": 1}], [], {"mode": "balanced"})
        h2 = PlacementCache.hash_request([{"x": 1, "id": "a"}], [], {"mode": "balanced"})
        h3 = PlacementCache.hash_request([{"id": "a", "x": 1}], [], {"mode": "leveled"})
        assert h1 == h2 != h3
