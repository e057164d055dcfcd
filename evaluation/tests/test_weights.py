from django.test import TestCase, override_settings

from evaluation.exceptions import ConsistencyError, NotFoundError, ValidationError
from evaluation.services.weights import (
    SOURCE_SUBJECT_DEFAULT,
    SOURCE_TERM_OVERRIDE,
    WeightSnapshot,
    delete_term_weight,
    list_term_weights,
    resolve_from_snapshot,
    resolve_weights,
    set_subject_weights,
    set_term_weight,
)
from evaluation.tests.helpers import make_school, make_subject
from schools.models import TermWeightOverride


class WeightChainTests(TestCase):
    def test_override_wins_over_defaults(self):
        snapshot = WeightSnapshot(1, "FIRST", 0.3, 0.7, 0.5, 0.5)
        resolved = resolve_from_snapshot(snapshot)
        self.assertEqual((resolved.assignment_weight, resolved.exam_weight), (0.5, 0.5))
        self.assertEqual(resolved.source, SOURCE_TERM_OVERRIDE)
        self.assertTrue(resolved.is_term_specific)

    def test_defaults_without_override(self):
        resolved = resolve_from_snapshot(WeightSnapshot(1, "FIRST", 0.3, 0.7))
        self.assertEqual(resolved.source, SOURCE_SUBJECT_DEFAULT)
        self.assertFalse(resolved.is_term_specific)

    def test_invalid_stored_override_is_a_consistency_error(self):
        with self.assertRaises(ConsistencyError):
            resolve_from_snapshot(WeightSnapshot(1, "FIRST", 0.3, 0.7, 0.6, 0.6))

    @override_settings(STRICT_TERM_WEIGHTS=False)
    def test_invalid_stored_override_falls_back_when_lenient(self):
        with self.assertLogs("evaluation.services.weights", level="WARNING"):
            resolved = resolve_from_snapshot(WeightSnapshot(1, "FIRST", 0.3, 0.7, 0.6, 0.6))
        self.assertEqual(resolved.source, SOURCE_SUBJECT_DEFAULT)

    def test_tolerance_accepts_rounding(self):
        resolved = resolve_from_snapshot(WeightSnapshot(1, "FIRST", 0.3, 0.7, 0.333, 0.672))
        self.assertEqual(resolved.source, SOURCE_TERM_OVERRIDE)


class WeightServiceTests(TestCase):
    def setUp(self):
        school, _, _ = make_school()
        self.subject = make_subject(school, assignment_weight=0.3, exam_weight=0.7)

    def test_override_applies_to_its_term_only(self):
        set_term_weight(self.subject.id, "FIRST", 0.5, 0.5)
        first = resolve_weights(self.subject.id, "FIRST")
        second = resolve_weights(self.subject.id, "SECOND")
        self.assertEqual((first.assignment_weight, first.exam_weight), (0.5, 0.5))
        self.assertEqual((second.assignment_weight, second.exam_weight), (0.3, 0.7))

    def test_set_term_weight_is_an_upsert(self):
        set_term_weight(self.subject.id, "FIRST", 0.5, 0.5)
        set_term_weight(self.subject.id, "FIRST", 0.2, 0.8)
        self.assertEqual(TermWeightOverride.objects.filter(subject=self.subject).count(), 1)
        self.assertEqual(resolve_weights(self.subject.id, "FIRST").exam_weight, 0.8)

    def test_rejects_pairs_not_summing_to_one(self):
        for pair in [(0.5, 0.6), (0.2, 0.7), (1.2, -0.2), ("a", 0.5)]:
            with self.subTest(pair=pair):
                with self.assertRaises(ValidationError):
                    set_term_weight(self.subject.id, "FIRST", *pair)
        self.assertFalse(TermWeightOverride.objects.exists())

    def test_every_accepted_pair_sums_to_one(self):
        for a in (0.0, 0.25, 0.333, 0.5, 1.0):
            set_term_weight(self.subject.id, "FIRST", a, round(1 - a, 3))
            resolved = resolve_weights(self.subject.id, "FIRST")
            self.assertAlmostEqual(resolved.assignment_weight + resolved.exam_weight, 1.0, delta=0.01)

    def test_unknown_term(self):
        with self.assertRaises(ValidationError):
            resolve_weights(self.subject.id, "T1")

    def test_missing_subject(self):
        with self.assertRaises(NotFoundError):
            resolve_weights(999, "FIRST")
        with self.assertRaises(NotFoundError):
            set_term_weight(999, "FIRST", 0.5, 0.5)

    def test_delete_restores_defaults(self):
        set_term_weight(self.subject.id, "THIRD", 0.5, 0.5)
        self.assertTrue(delete_term_weight(self.subject.id, "THIRD"))
        self.assertFalse(delete_term_weight(self.subject.id, "THIRD"))
        self.assertEqual(resolve_weights(self.subject.id, "THIRD").source, SOURCE_SUBJECT_DEFAULT)

    def test_list_is_ordered_by_term(self):
        set_term_weight(self.subject.id, "FINAL", 0.1, 0.9)
        set_term_weight(self.subject.id, "FIRST", 0.5, 0.5)
        set_term_weight(self.subject.id, "SECOND", 0.4, 0.6)
        self.assertEqual([o.term for o in list_term_weights(self.subject.id)], ["FIRST", "SECOND", "FINAL"])

    def test_set_subject_weights_validates(self):
        set_subject_weights(self.subject.id, 0.4, 0.6)
        self.subject.refresh_from_db()
        self.assertEqual((self.subject.assignment_weight, self.subject.exam_weight), (0.4, 0.6))
        with self.assertRaises(ValidationError):
            set_subject_weights(self.subject.id, 0.4, 0.4)
