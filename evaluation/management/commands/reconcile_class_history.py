from django.core.management.base import BaseCommand, CommandError

from evaluation.services.class_history import reconcile_class_history
from evaluation.tasks import reconcile_class_history as reconcile_task


class Command(BaseCommand):
    help = "Repair class history ledgers that no longer match the students' current placement."

    def add_arguments(self, parser):
        parser.add_argument(
            "--student-ids",
            nargs="+",
            type=int,
            dest="student_ids",
            help="Only check these students (default: every student).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            dest="dry_run",
            help="Report drifted ledgers without writing anything.",
        )
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Enqueue the sweep on Celery instead of running it inline.",
        )
        parser.add_argument(
            "--queue",
            dest="queue",
            default="evaluation",
            help="Celery queue used with --async (default: evaluation).",
        )

    def handle(self, *args, **options):
        student_ids = options.get("student_ids")
        dry_run = options["dry_run"]

        if options["run_async"]:
            result = reconcile_task.apply_async(kwargs={"student_ids": student_ids, "dry_run": dry_run}, queue=options["queue"])
            self.stdout.write(f"Sweep enqueued on '{options['queue']}' (task {result.id}).")
            return

        summary = reconcile_class_history(student_ids=student_ids, dry_run=dry_run)
        prefix = "[dry-run] " if dry_run else ""
        self.stdout.write(
            f"{prefix}Checked {summary['checked']} students, {summary['drifted']} drifted, {summary['repaired']} repaired."
        )
        if summary["conflicts"]:
            self.stdout.write(self.style.WARNING(f"Conflicts needing review: {summary['conflicts']}"))
        if summary["failed"]:
            raise CommandError(f"Repair failed for students: {summary['failed']}")
        self.stdout.write(self.style.SUCCESS("Done."))
