from django.core.management.base import BaseCommand, CommandError

from evaluation.services.metrics import reset_metrics


class Command(BaseCommand):
    help = "Reset the Redis counters tracking degraded ledger writes."

    def handle(self, *args, **options):
        if not reset_metrics():
            raise CommandError("Metrics backend unreachable.")
        self.stdout.write(self.style.SUCCESS("Metrics reset."))
