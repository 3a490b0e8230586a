"""Email queue background tasks

Alternative to the in-process loop: beat schedules these and any number
of workers run them. Workers claim emails with a lease, so overlapping
runs never send the same email twice.
"""

from celery.utils.log import get_task_logger
from typing import Any, Dict, Optional
import asyncio

from mailhub.core.celery_app import celery_app
from mailhub.core.config import settings
from mailhub.core.database import create_engine_for_url, create_session_factory
from mailhub.services import build_email_services

logger = get_task_logger(__name__)

async def _run_with_services(operation):
    # Each task runs in a fresh event loop, so it needs its own engine
    engine = create_engine_for_url(settings.database_url_async)
    try:
        services = build_email_services(create_session_factory(engine), settings)
        return await operation(services)
    finally:
        await engine.dispose()

@celery_app.task(name="mailhub.tasks.email_tasks.process_email_queue")
def process_email_queue() -> Dict[str, Any]:
    """Drain one batch of due emails"""
    try:
        result = asyncio.run(_run_with_services(lambda services: services.queue.process_queue()))

        if result.processed:
            logger.info(
                f"Processed {result.processed} emails: "
                f"{result.successful} delivered, {result.failed} failed"
            )

        return result.model_dump()

    except Exception as e:
        logger.error(f"Error processing email queue: {str(e)}")
        raise

@celery_app.task(name="mailhub.tasks.email_tasks.retry_failed_emails")
def retry_failed_emails() -> Dict[str, Any]:
    """Requeue emails that failed in the last 24 hours"""
    try:
        result = asyncio.run(_run_with_services(lambda services: services.queue.retry_failed_emails()))

        logger.info(f"Requeued {result.retried} failed emails")
        for error in result.errors:
            logger.warning(error)

        return result.model_dump()

    except Exception as e:
        logger.error(f"Error retrying failed emails: {str(e)}")
        raise

@celery_app.task(name="mailhub.tasks.email_tasks.cleanup_old_emails")
def cleanup_old_emails(older_than_days: Optional[int] = None) -> Dict[str, Any]:
    """Delete delivered and failed emails past retention"""
    try:
        result = asyncio.run(
            _run_with_services(lambda services: services.queue.clear_old_emails(older_than_days))
        )

        logger.info(f"Cleaned up {result.deleted} old emails")

        return result.model_dump()

    except Exception as e:
        logger.error(f"Error cleaning up old emails: {str(e)}")
        raise
