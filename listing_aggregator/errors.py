# listing_aggregator/errors.py
from fastapi import HTTPException
from typing import Dict, Any


class AppError(HTTPException):
    def __init__(self, status_code: int, detail: str, headers: Dict[str, Any] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class NotFoundError(AppError):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class NoActiveConnectionsError(AppError):
    def __init__(self, detail: str = "No active connected sites found"):
        super().__init__(status_code=400, detail=detail)


class QuotaExceededError(AppError):
    def __init__(self, detail: str):
        super().__init__(status_code=403, detail=detail)


class SiteLimitError(AppError):
    def __init__(self, detail: str):
        super().__init__(status_code=403, detail=detail)


class WebhookVerificationError(AppError):
    def __init__(self, detail: str = "Invalid webhook signature"):
        super().__init__(status_code=400, detail=detail)


class PlatformClientError(Exception):
    """Raised by a platform client when candidates cannot be fetched."""
