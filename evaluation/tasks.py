import logging

from celery import shared_task

from evaluation.services.class_history import reconcile_class_history as reconcile

logger = logging.getLogger(__name__)


@shared_task
def reconcile_class_history(student_ids=None, dry_run=False):
    """Periodic ledger sweep; scheduled only when RECONCILE_LEDGER_EVERY_SECONDS > 0."""
    summary = reconcile(student_ids=student_ids, dry_run=dry_run)
    if summary["conflicts"] or summary["failed"]:
        logger.warning(
            "Ledger sweep left students unrepaired",
            extra={"conflicts": summary["conflicts"], "failed": summary["failed"]},
        )
    return summary
