# telebill/tasks/billing_tasks.py
"""
Scheduled billing tasks
Daily reconciliation of due phone number charges against the gateway
"""
import os
import logging
from typing import Dict, Any

from celery.schedules import crontab

from telebill.celery_app import celery_app
from telebill.services import get_reconciliation_service

logger = logging.getLogger(__name__)


def run_scheduled_billing(trigger_type: str = 'scheduled', dry_run: bool = False) -> Dict[str, Any]:
    """Run one reconciliation pass; must be called inside an app context"""
    reconciler = get_reconciliation_service()
    summary = reconciler.run(trigger_type=trigger_type, dry_run=dry_run)

    if summary.status == 'skipped':
        logger.warning(f"Scheduled billing skipped: {summary.message}")
    elif summary.error_count:
        logger.warning(
            f"Scheduled billing {summary.run_id} finished with {summary.error_count} error(s): "
            f"{summary.processed_count} paid, {summary.failed_count} failed, {summary.skipped_count} skipped"
        )
    else:
        logger.info(f"Scheduled billing {summary.run_id}: {summary.processed_count} paid")

    return summary.to_dict()


@celery_app.task(bind=True, name='telebill.process_scheduled_billing')
def process_scheduled_billing(self, trigger_type='scheduled'):
    """
    Celery entry point for the daily billing run. Not retried: a failed
    run leaves due records pending and the next run picks them up.
    """
    logger.info(f"Billing task {self.request.id} triggered ({trigger_type})")
    return run_scheduled_billing(trigger_type=trigger_type)


# =============================================================================
# CELERY BEAT SCHEDULE
# =============================================================================

BILLING_CELERY_BEAT_SCHEDULE = {
    'process-scheduled-billing': {
        'task': 'telebill.process_scheduled_billing',
        'schedule': crontab(
            hour=int(os.getenv('BILLING_SCHEDULE_HOUR', '2')),
            minute=int(os.getenv('BILLING_SCHEDULE_MINUTE', '0'))
        ),
        'options': {'queue': 'billing'}
    },
}
