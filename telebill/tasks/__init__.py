"""
Tasks Package for TeleBill - Celery Task Definitions
Exports all Celery tasks and the consolidated beat schedule
"""

import logging
from typing import Dict, List, Any

from .billing_tasks import (
    process_scheduled_billing,
    run_scheduled_billing,
    BILLING_CELERY_BEAT_SCHEDULE
)

logger = logging.getLogger(__name__)

# =============================================================================
# CONSOLIDATED BEAT SCHEDULE
# =============================================================================

CONSOLIDATED_BEAT_SCHEDULE = {}
CONSOLIDATED_BEAT_SCHEDULE.update(BILLING_CELERY_BEAT_SCHEDULE)

_all_tasks = [
    'process_scheduled_billing',
]


def get_all_registered_tasks() -> List[str]:
    return list(_all_tasks)


def get_beat_schedule() -> Dict[str, Any]:
    """Get consolidated Celery beat schedule"""
    return CONSOLIDATED_BEAT_SCHEDULE.copy()


__all__ = _all_tasks + [
    'run_scheduled_billing',
    'get_all_registered_tasks',
    'get_beat_schedule',
    'CONSOLIDATED_BEAT_SCHEDULE',
    'BILLING_CELERY_BEAT_SCHEDULE',
]
