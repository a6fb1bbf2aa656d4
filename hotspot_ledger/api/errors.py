"""
Error Mapping - Domain exceptions to HTTP status codes and error envelopes.
"""

from fastapi import status

from hotspot_ledger.exceptions import (
    DeviceError,
    LedgerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from hotspot_ledger.models.api import ErrorResponse


def status_for(exc: LedgerError) -> int:
    """HTTP status for a domain error. NotFound is checked before Validation."""
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, DeviceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, PersistenceError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def public_message(exc: LedgerError) -> str:
    """
    Message safe to return to callers.

    Device and persistence errors carry connection details, so only their
    class is exposed.
    """
    if isinstance(exc, DeviceError):
        return "Hotspot device unavailable"
    if isinstance(exc, PersistenceError):
        return "Internal storage error"
    return str(exc)


def error_envelope(exc: LedgerError) -> ErrorResponse:
    return ErrorResponse(error=public_message(exc), error_type=type(exc).__name__)
