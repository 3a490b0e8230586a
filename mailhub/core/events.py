"""
Application lifecycle events
Handles startup and shutdown tasks
"""

from fastapi import FastAPI
import logging
from contextlib import asynccontextmanager

from .database import engine, AsyncSessionLocal, init_db, close_db
from .monitoring import setup_logging
from .config import settings

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Builds the email services, owns the queue's background loop
    """
    from mailhub.services import build_email_services

    # Startup
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME}...")

    if settings.ENVIRONMENT != "test":
        await init_db()
        logger.info("Database initialized")

    services = build_email_services(AsyncSessionLocal, settings)
    app.state.engine = engine
    app.state.email_queue = services.queue
    app.state.email_tracking = services.tracking

    if settings.EMAIL_QUEUE_AUTOSTART:
        services.queue.start_processing()

    logger.info(f"{settings.APP_NAME} started successfully")

    try:
        yield
    finally:
        # Shutdown
        logger.info(f"Shutting down {settings.APP_NAME}...")

        await services.queue.stop_processing()
        await close_db()

        logger.info(f"{settings.APP_NAME} shutdown complete")
