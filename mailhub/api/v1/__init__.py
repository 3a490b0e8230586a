"""API v1 routes aggregation"""

from fastapi import APIRouter

from .emails.router import router as emails_router
from .webhooks.router import router as webhooks_router

# Create v1 router
api_router = APIRouter()

# Include all routers
api_router.include_router(emails_router, prefix="/admin/emails", tags=["Email Admin"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])

# Export router
router = api_router
