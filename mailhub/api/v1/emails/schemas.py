"""Email admin schemas"""

from pydantic import BaseModel

from mailhub.schemas.email import EmailAnalytics, EmailStats, QueueStats

class EmailDashboard(BaseModel):
    analytics: EmailAnalytics
    stats: EmailStats
    queue: QueueStats
