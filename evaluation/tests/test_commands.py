from io import StringIO
from unittest.mock import MagicMock, patch

import redis
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import TestCase

from evaluation.models import ClassHistoryEntry
from evaluation.services import metrics
from evaluation.tasks import reconcile_class_history
from evaluation.tests.helpers import make_school, make_student
from schools.models import GradedItem, ResultRecord, Student


class ReconcileCommandTests(TestCase):
    def setUp(self):
        _, self.class_a, self.class_b = make_school()
        self.ok = make_student(self.class_a, "M1")
        self.drifted = make_student(self.class_a, "M2")
        Student.objects.filter(pk=self.drifted.pk).update(klass=self.class_b, grade=self.class_b.grade)

    def test_dry_run_writes_nothing(self):
        out = StringIO()
        call_command("reconcile_class_history", "--dry-run", stdout=out)
        self.assertIn("2 students, 1 drifted, 0 repaired", out.getvalue())
        self.assertFalse(ClassHistoryEntry.objects.filter(klass=self.class_b).exists())

    def test_repairs_drifted_students(self):
        out = StringIO()
        call_command("reconcile_class_history", stdout=out)
        self.assertIn("1 repaired", out.getvalue())
        active = ClassHistoryEntry.objects.get(student=self.drifted, is_active=True)
        self.assertEqual(active.klass_id, self.class_b.id)

    def test_limited_to_student_ids(self):
        call_command("reconcile_class_history", "--student-ids", str(self.ok.id), stdout=StringIO())
        self.assertFalse(ClassHistoryEntry.objects.filter(klass=self.class_b).exists())

    @patch("evaluation.services.class_history.record_degraded")
    def test_failed_repair_fails_the_command(self, mock_degraded):
        with patch("evaluation.services.class_history.repair_class_history", side_effect=DatabaseError("down")):
            with self.assertRaises(CommandError):
                call_command("reconcile_class_history", stdout=StringIO())
        mock_degraded.assert_called_once_with("ledger_repair")

    def test_task_returns_summary(self):
        summary = reconcile_class_history.apply(kwargs={"dry_run": True}).get()
        self.assertEqual(summary["drifted"], 1)
        self.assertTrue(summary["dry_run"])


class SeedDemoCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo", "--students", "3", "--seed", "1", stdout=StringIO())
        call_command("seed_demo", "--students", "3", "--seed", "1", stdout=StringIO())
        self.assertEqual(Student.objects.count(), 3)
        self.assertEqual(GradedItem.objects.count(), 12)
        self.assertEqual(ClassHistoryEntry.objects.filter(is_active=True).count(), 3)
        # last student has no exam results
        self.assertEqual(ResultRecord.objects.count(), 3 * 12 - 4)


class MetricsTests(TestCase):
    @patch("evaluation.services.metrics._client")
    def test_record_degraded_swallows_redis_errors(self, mock_client):
        mock_client.return_value.pipeline.side_effect = redis.ConnectionError("no redis")
        with self.assertLogs("evaluation.services.metrics", level="WARNING"):
            metrics.record_degraded("promotion")

    @patch("evaluation.services.metrics._client")
    def test_get_metrics(self, mock_client):
        cli = MagicMock()
        cli.hgetall.side_effect = [{b"promotion": b"2", b"ledger_repair": b"1"}, {b"promotion": b"1700000000.0"}]
        cli.get.return_value = None
        mock_client.return_value = cli
        data = metrics.get_metrics()
        self.assertEqual(data["degraded"], {"promotion": 2, "ledger_repair": 1})
        self.assertEqual(data["degraded_total"], 3)
        self.assertIsNone(data["started_at"])

    @patch("evaluation.services.metrics._client")
    def test_reset_command_reports_unreachable_backend(self, mock_client):
        mock_client.return_value.pipeline.side_effect = redis.ConnectionError("no redis")
        with self.assertRaises(CommandError):
            call_command("reset_metrics", stdout=StringIO())
