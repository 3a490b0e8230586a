"""
Custom exception classes
HTTP-facing errors for the API plus domain errors raised by the email pipeline
"""

from fastapi import HTTPException, status
from typing import Any, Dict, Optional

class MailHubException(HTTPException):
    """Base exception class for MailHub HTTP responses"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(MailHubException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(MailHubException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(MailHubException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class ServiceUnavailableException(MailHubException):
    """503 Service Unavailable"""

    def __init__(
        self,
        detail: str = "Service temporarily unavailable",
        error_code: str = "SERVICE_UNAVAILABLE"
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code
        )

# Email pipeline exceptions
class EmailQueueError(Exception):
    """Base class for email pipeline errors"""

class PersistenceError(EmailQueueError):
    """The notification store could not be read or written"""

class DeliveryConfigurationError(EmailQueueError):
    """The delivery backend is missing credentials or settings"""

class InvalidStateError(EmailQueueError):
    """A status transition is not allowed from the record's current status"""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move email from {current} to {requested}")
        self.current = current
        self.requested = requested
