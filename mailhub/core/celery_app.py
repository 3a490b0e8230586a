"""Celery application configuration"""

from celery import Celery
from kombu import Exchange, Queue
from mailhub.core.config import settings

# Create Celery app
celery_app = Celery(
    "mailhub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "mailhub.tasks.email_tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Task routing
    task_routes={
        "mailhub.tasks.email_tasks.process_email_queue": {"queue": "email"},
        "mailhub.tasks.email_tasks.retry_failed_emails": {"queue": "email"},
        "mailhub.tasks.email_tasks.cleanup_old_emails": {"queue": "cleanup"},
    },

    task_default_queue="email",

    # Result backend configuration
    result_expires=3600,  # 1 hour
)

# Define queues
celery_app.conf.task_queues = (
    Queue("email", Exchange("email"), routing_key="email"),
    Queue("cleanup", Exchange("cleanup"), routing_key="cleanup"),
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-email-queue": {
        "task": "mailhub.tasks.email_tasks.process_email_queue",
        "schedule": settings.EMAIL_QUEUE_PROCESSING_INTERVAL_SECONDS,
    },
    "retry-failed-emails": {
        "task": "mailhub.tasks.email_tasks.retry_failed_emails",
        "schedule": 60 * 60,  # Every hour
    },
    "cleanup-old-emails": {
        "task": "mailhub.tasks.email_tasks.cleanup_old_emails",
        "schedule": 60 * 60 * 24,  # Daily
        "options": {"queue": "cleanup"}
    },
}
