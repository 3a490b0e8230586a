# MailHub Monitoring Configuration
# Prometheus metrics, health checks, and logging setup

import logging
import logging.handlers
import os
import time
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from fastapi import FastAPI, Request, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

from .config import settings

# HTTP metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])

# Email queue metrics
emails_enqueued = Counter('email_queue_enqueued_total', 'Emails added to the queue')
email_deliveries = Counter('email_queue_deliveries_total', 'Email delivery attempts by outcome', ['status'])
drain_duration = Histogram('email_queue_drain_duration_seconds', 'Duration of one queue drain cycle')
queue_depth = Gauge('email_queue_pending', 'Emails waiting in the queue')

def setup_logging(log_level: Optional[str] = None, log_file: Optional[str] = None):
    """Configure structured logging for the application"""

    log_level = log_level or settings.LOG_LEVEL
    log_file = log_file or settings.LOG_FILE

    # Configure logging format
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    # File handler with rotation
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=handlers
    )

    # Silence noisy loggers in production
    if settings.ENVIRONMENT == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

def setup_monitoring_middleware(app: FastAPI):
    """Add monitoring middleware to track metrics"""

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time

        request_count.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(process_time)

        response.headers["X-Process-Time"] = str(process_time)

        return response

async def get_health_status(bind: AsyncEngine) -> dict:
    """Get health status of the database and the email queue"""

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {}
    }

    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["services"]["database"] = {"status": "healthy"}
    except Exception as e:
        health_status["services"]["database"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "unhealthy"

    return health_status

def setup_health_endpoints(app: FastAPI):
    """Setup health check endpoints"""

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint"""
        return {"status": "healthy", "version": settings.APP_VERSION}

    @app.get("/health/detailed")
    async def detailed_health_check(request: Request):
        """Detailed health check including the database and queue loop"""
        health_status = await get_health_status(request.app.state.engine)
        queue = getattr(request.app.state, "email_queue", None)
        health_status["services"]["email_queue"] = {
            "status": "running" if queue is not None and queue.is_running else "stopped",
            "draining": queue is not None and queue.is_processing,
        }
        return health_status

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.PROMETHEUS_ENABLED:
            return {"error": "Metrics disabled"}

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

# Logging utilities
logger = logging.getLogger(__name__)

def record_delivery(success: bool):
    """Count one delivery attempt by outcome"""
    email_deliveries.labels(status="delivered" if success else "failed").inc()

class DrainTimer:
    """Time a drain cycle and log how long it took"""

    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        drain_duration.observe(duration)
        if exc_type is None:
            logger.debug(f"Queue drain on {self.worker_id} completed in {duration:.3f}s")
        else:
            logger.error(f"Queue drain on {self.worker_id} failed after {duration:.3f}s")
