"""
Shared error handling for the Transaction Proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from .logging import current_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ProxyException(Exception):
    """Base exception for Transaction Proxy services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=current_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ProxyException):
    """Malformed or out-of-policy query."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpstreamError(ProxyException):
    """Non-success response from the upstream API."""

    status_code = 502

    def __init__(self, status: int, error_body: str = "", message: Optional[str] = None):
        self.status = status
        self.error_body = error_body
        super().__init__(
            "UPSTREAM_ERROR",
            message or f"Failed to fetch transactions: {status}",
            {"upstream_status": status}
        )


class UpstreamUnavailableError(ProxyException):
    """Upstream API could not be reached."""

    status_code = 503

    def __init__(self, message: str = "External service is temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_UNAVAILABLE", message, details)


class EncodingError(ProxyException):
    """Fingerprinting, serialization or deserialization failure."""

    status_code = 500

    def __init__(self, message: str = "Failed to process transaction data", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENCODING_ERROR", message, details)


class StorageError(ProxyException):
    """Record store failure."""

    status_code = 503

    def __init__(self, message: str = "Record store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)
