"""
Celery Worker Entry Point for TeleBill
Start with: celery -A celery_worker worker -B -Q default,billing
"""

import os
import logging
from dotenv import load_dotenv

from celery import Celery
from celery.signals import (
    worker_init,
    worker_ready,
    worker_shutdown,
    task_prerun,
    task_postrun,
    task_failure
)

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# =============================================================================
# CELERY CONFIGURATION
# =============================================================================

celery_app = Celery('telebill')

celery_config = {
    # Broker and Backend
    'broker_url': os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0'),
    'result_backend': os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0'),

    # Serialization
    'task_serializer': 'json',
    'accept_content': ['json'],
    'result_serializer': 'json',

    # Timezone
    'timezone': 'UTC',
    'enable_utc': True,

    # Task discovery
    'include': [
        'telebill.tasks.billing_tasks',
    ],

    # Worker configuration
    'worker_prefetch_multiplier': 1,
    'task_acks_late': True,

    # Task routing
    'task_routes': {
        'telebill.process_scheduled_billing': {'queue': 'billing'},
    },

    'task_default_queue': 'default',

    # Result backend settings
    'result_expires': 86400,

    # A billing run walks every due record sequentially
    'task_time_limit': 3600,
    'task_soft_time_limit': 3300,

    # Monitoring and logging
    'worker_send_task_events': True,
    'task_send_sent_event': True,
    'worker_log_format': '[%(asctime)s: %(levelname)s/%(processName)s] %(message)s',
    'worker_task_log_format': '[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s',
}

celery_app.conf.update(celery_config)


def register_beat_schedule():
    """Install the consolidated beat schedule from the tasks package"""
    from telebill.tasks import get_beat_schedule

    beat_schedule = get_beat_schedule()
    celery_app.conf.beat_schedule = beat_schedule
    logger.info(f"Configured {len(beat_schedule)} scheduled tasks: {', '.join(beat_schedule)}")
    return beat_schedule


# =============================================================================
# CELERY SIGNALS
# =============================================================================

@worker_init.connect
def worker_init_handler(sender=None, **kwargs):
    """Called when worker process is initialized"""
    logger.info("Celery worker initializing...")


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Called when worker is ready to receive tasks"""
    logger.info("Celery worker ready to receive tasks")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    logger.info("Celery worker shutting down...")


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **kwds):
    logger.info(f"Starting task: {task.name} (ID: {task_id})")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    """Called after task execution"""
    if state == 'SUCCESS':
        logger.info(f"Completed task: {task.name} (ID: {task_id})")
    else:
        logger.warning(f"Task finished with state {state}: {task.name} (ID: {task_id})")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    logger.error(f"Task failed: {sender.name} (ID: {task_id}) - {exception}")


@celery_app.task(name='celery.ping')
def ping():
    """Simple ping task for basic connectivity testing"""
    return {'status': 'pong', 'worker_active': True}


# =============================================================================
# CELERY APP FACTORY
# =============================================================================

def create_celery_app(app=None):
    """
    Bind the Celery app to a Flask application so tasks run inside its
    application context. Builds the Flask app when none is given.
    """
    if app is None:
        from telebill import create_app
        app = create_app()

    celery_app.conf.update(
        broker_url=app.config.get('CELERY_BROKER_URL', celery_config['broker_url']),
        result_backend=app.config.get('CELERY_RESULT_BACKEND', celery_config['result_backend']),
    )

    class ContextTask(celery_app.Task):
        """Make celery tasks work with Flask app context."""
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app.Task = ContextTask
    register_beat_schedule()
    logger.info("Celery app configured with Flask context")
    return celery_app
