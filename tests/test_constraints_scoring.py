import pytest
from conftest import make_roster
from classbalancer.engine.capacity import plan_capacities
from classbalancer.engine.constraint_propagation import ConstraintGrouper
from classbalancer.engine.relations import add_relation, remove_relation, toggle_relation
from classbalancer.models.constraints import RelationConflict, RelationType
from classbalancer.models.entities import Criterion, Student, WeightLevel
from classbalancer.storage.cache import ScoreCache
from classbalancer.utils.scoring import composite_score, criteria_signature, roster_average


class TestCompositeScore:
    """Unit tests for the weighted, normalized composite score."""

    def test_normalizes_and_weights(self, two_criteria):
        """Each value is scaled to 0-100 by its max, then weighted."""
        student = Student(id="a", scores={"Reading": 80, "Math": 25})
        # 80/100*100*1 + 25/50*100*2
        assert composite_score(student, two_criteria) == pytest.approx(80 + 100)

    def test_excluded_student_scores_zero(self, two_criteria):
        """Excluded students always score 0."""
        student = Student(id="a", scores={"Reading": 100, "Math": 50}, ignore_scores=True)
        assert composite_score(student, two_criteria) == 0
        assert composite_score(student, [Criterion("X", weight=7, max=1)]) == 0

    def test_missing_and_invalid_values_read_as_zero(self, two_criteria):
        student = Student(id="a", scores={"Reading": "n/a"})
        assert composite_score(student, two_criteria) == 0

    def test_non_finite_values_read_as_zero(self):
        student = Student(id="a", scores={"Reading": float("nan"), "Math": "inf"})
        assert composite_score(student, [Criterion("Reading"), Criterion("Math")]) == 0
        assert composite_score(Student(id="b", scores={"Reading": 40}), [Criterion("Reading", max=float("nan"))]) == pytest.approx(40)

    def test_non_positive_max_defaults_to_100(self):
        student = Student(id="a", scores={"Reading": 40})
        assert composite_score(student, [Criterion("Reading", max=0)]) == pytest.approx(40)
        assert composite_score(student, [Criterion("Reading", max=-5)]) == pytest.approx(40)

    def test_disabled_criteria_still_count(self):
        """enabled only hides meters; it never removes a criterion from scoring."""
        student = Student(id="a", scores={"Reading": 50})
        hidden = [Criterion("Reading", enabled=False)]
        assert composite_score(student, hidden) == pytest.approx(50)

    def test_linear_in_weight(self, two_criteria):
        """Doubling one weight doubles only that criterion's contribution."""
        student = Student(id="a", scores={"Reading": 60, "Math": 10})
        base = composite_score(student, two_criteria)
        doubled = [Criterion("Reading", weight=2.0, max=100), two_criteria[1]]
        assert composite_score(student, doubled) - base == pytest.approx(60)

    def test_cache_hits_and_signature_changes(self, two_criteria):
        """Editing any criterion field changes the signature, so cached values never go stale."""
        cache = ScoreCache()
        student = Student(id="a", scores={"Reading": 60})
        first = composite_score(student, two_criteria, cache)
        assert len(cache) == 1

        edited = [Criterion("Reading", weight=2.0, max=100), two_criteria[1]]
        assert criteria_signature(edited) != criteria_signature(two_criteria)
        assert composite_score(student, edited, cache) == pytest.approx(first * 2)

        toggled = [Criterion("Reading", enabled=False), two_criteria[1]]
        assert criteria_signature(toggled) != criteria_signature(two_criteria)

    def test_invalidate_clears_everything(self, two_criteria):
        cache = ScoreCache()
        composite_score(Student(id="a"), two_criteria, cache)
        cache.invalidate()
        assert len(cache) == 0


class TestRosterAverage:
    def test_ignores_excluded(self):
        ids, students = make_roster(
            Student(id="a", scores={"Reading": 90}),
            Student(id="b", scores={"Reading": 30}),
            Student(id="c", scores={"Reading": 0}, ignore_scores=True),
        )
        assert roster_average(students, ids, "Reading") == pytest.approx(60)

    def test_empty_is_zero(self):
        ids, students = make_roster(Student(id="a", ignore_scores=True))
        assert roster_average(students, ids, "Reading") == 0
        assert roster_average({}, [], "Reading") == 0


class TestWeightLevel:
    def test_lookup_table(self):
        assert WeightLevel.from_label("High").value == 2.0
        assert WeightLevel.from_label("low") is WeightLevel.LOW
        assert WeightLevel.label_for(1.0) == "Normal"
        assert WeightLevel.label_for(1.5) == "Custom"
        assert Criterion("x", weight=0.5).weight_label == "Low"


class TestCapacityPlanner:
    def test_remainder_goes_to_first_groups(self):
        assert plan_capacities(10, 3) == [4, 3, 3]

    def test_even_split(self):
        assert plan_capacities(12, 4) == [3, 3, 3, 3]

    def test_more_groups_than_students(self):
        assert plan_capacities(2, 4) == [1, 1, 0, 0]

    def test_sum_and_spread(self):
        for n in range(0, 40):
            for g in range(1, 8):
                caps = plan_capacities(n, g)
                assert sum(caps) == n
                assert max(caps) - min(caps) <= 1

    def test_rejects_zero_groups(self):
        with pytest.raises(ValueError):
            plan_capacities(5, 0)


class TestConstraintGrouper:
    """Union-find grouping of keep-together pairs and pin propagation."""

    def test_singletons_without_pairs(self):
        ids, students = make_roster(Student(id="a"), Student(id="b"))
        units = ConstraintGrouper(ids, students, 2).build_units([])
        assert [u.ids for u in units] == [("a",), ("b",)]
        assert all(u.target is None for u in units)

    def test_transitive_merge(self):
        ids, students = make_roster(Student(id="a"), Student(id="b"), Student(id="c"), Student(id="d"))
        units = ConstraintGrouper(ids, students, 2).build_units([("a", "b"), ("b", "c")])
        assert sorted(sorted(u.ids) for u in units) == [["a", "b", "c"], ["d"]]

    def test_single_pin_propagates(self):
        ids, students = make_roster(Student(id="a", pin_group=1), Student(id="b"), Student(id="c"))
        grouper = ConstraintGrouper(ids, students, 3)
        units = grouper.build_units([("a", "b")])
        pinned = [u for u in units if u.target is not None]
        assert len(pinned) == 1
        assert set(pinned[0].ids) == {"a", "b"}
        assert pinned[0].target == 1
        assert grouper.pin_map["b"] == 1

    def test_conflicting_pins_split_component(self):
        """Inconsistent pins break keep-together: one unit per pin plus a free remainder."""
        ids, students = make_roster(
            Student(id="a", pin_group=0),
            Student(id="b", pin_group=1),
            Student(id="c"),
        )
        units = ConstraintGrouper(ids, students, 2).build_units([("a", "b"), ("b", "c")])
        by_target = {u.target: set(u.ids) for u in units}
        assert by_target == {0: {"a"}, 1: {"b"}, None: {"c"}}

    def test_out_of_range_pin_ignored(self):
        ids, students = make_roster(Student(id="a", pin_group=5))
        units = ConstraintGrouper(ids, students, 2).build_units([])
        assert units[0].target is None

    def test_every_id_covered_once(self, mixed_roster):
        ids, students = mixed_roster
        pairs = [("s00", "s01"), ("s01", "s05"), ("s07", "s08")]
        units = ConstraintGrouper(ids, students, 3).build_units(pairs)
        flat = [sid for u in units for sid in u.ids]
        assert sorted(flat) == sorted(ids)

    def test_fresh_state_per_instance(self):
        ids, students = make_roster(Student(id="a"), Student(id="b"))
        ConstraintGrouper(ids, students, 2).build_units([("a", "b")])
        units = ConstraintGrouper(ids, students, 2).build_units([])
        assert len(units) == 2


class TestRelations:
    """Symmetric relation edits with conflict rejection."""

    def _pair(self):
        return {
            "a": Student(id="a", first_name="Amy"),
            "b": Student(id="b", first_name="Bo"),
        }

    def test_add_is_symmetric(self):
        students = self._pair()
        add_relation(students, "a", "b", RelationType.KEEP_WITH)
        assert students["a"].keep_with == {"b"}
        assert students["b"].keep_with == {"a"}

    def test_remove_is_symmetric(self):
        students = self._pair()
        add_relation(students, "a", "b", RelationType.KEEP_APART)
        remove_relation(students, "a", "b", RelationType.KEEP_APART)
        assert not students["a"].keep_apart and not students["b"].keep_apart

    def test_conflict_rejected_and_nothing_changes(self):
        """Keep-with is refused when the peer is already kept apart."""
        students = self._pair()
        students["b"].keep_apart.add("a")
        with pytest.raises(RelationConflict) as excinfo:
            add_relation(students, "a", "b", RelationType.KEEP_WITH)
        err = excinfo.value
        assert (err.student_id, err.peer_id) == ("a", "b")
        assert err.requested is RelationType.KEEP_WITH
        assert err.existing is RelationType.KEEP_APART
        assert "Amy" in str(err) and "Bo" in str(err)
        assert students["a"].keep_with == set() and students["a"].keep_apart == set()
        assert students["b"].keep_with == set() and students["b"].keep_apart == {"a"}

    def test_reverse_conflict_rejected(self):
        students = self._pair()
        add_relation(students, "a", "b", RelationType.KEEP_WITH)
        with pytest.raises(RelationConflict):
            add_relation(students, "b", "a", RelationType.KEEP_APART)
        assert students["a"].keep_apart == set()

    def test_toggle(self):
        students = self._pair()
        assert toggle_relation(students, "a", "b", RelationType.KEEP_APART) is True
        assert toggle_relation(students, "a", "b", RelationType.KEEP_APART) is False
        assert students["b"].keep_apart == set()

    def test_self_relation_ignored(self):
        students = self._pair()
        add_relation(students, "a", "a", RelationType.KEEP_WITH)
        assert students["a"].keep_with == set()
