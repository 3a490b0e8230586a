"""Main FastAPI application with all middleware"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from mailhub.core.config import settings
from mailhub.core.events import lifespan
from mailhub.core.exceptions import EmailQueueError
from mailhub.core.monitoring import setup_health_endpoints, setup_monitoring_middleware

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Email notification queue and delivery analytics",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_monitoring_middleware(app)
setup_health_endpoints(app)

@app.exception_handler(EmailQueueError)
async def email_queue_error_handler(request: Request, exc: EmailQueueError):
    """Store and configuration failures surface as 503"""
    logger.error(f"Email pipeline error on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "code": "EMAIL_PIPELINE_UNAVAILABLE",
                "message": str(exc)
            }
        }
    )

# Include routers
from mailhub.api.v1 import api_router
app.include_router(api_router, prefix="/api/v1")

# Root endpoint
@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "mailhub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
