"""
Custom exceptions for the POI sharing service.

Every error raised by the favorites, sharing and import components derives
from :class:`PoiSharingException` so the API layer can render a single
error envelope and callers can decide on retry from ``retryable``.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for the application."""

    # Request / input errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMPTY_SHARE = "EMPTY_SHARE"

    # Lookup errors
    NOT_FOUND = "NOT_FOUND"
    SHARED_LINK_NOT_FOUND = "SHARED_LINK_NOT_FOUND"

    # Authentication / authorization errors
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    NOT_LINK_OWNER = "NOT_LINK_OWNER"

    # Write conflicts
    FAVORITE_CONFLICT = "FAVORITE_CONFLICT"
    SHARE_CODE_GENERATION_FAILED = "SHARE_CODE_GENERATION_FAILED"

    # Infrastructure errors
    TRANSIENT_NETWORK_ERROR = "TRANSIENT_NETWORK_ERROR"
    REALTIME_EVENTS_MISSED = "REALTIME_EVENTS_MISSED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Generic errors
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class PoiSharingException(Exception):
    """Base exception for the POI sharing service."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code


class ValidationError(PoiSharingException):
    """Raised when input is rejected before any state changes."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            status_code=400
        )


class NotFoundError(PoiSharingException):
    """Raised when a shared link (or other resource) does not exist."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NOT_FOUND,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            status_code=404
        )


class SharedLinkNotFoundError(NotFoundError):
    """Raised when a share code or link id cannot be resolved."""

    def __init__(self, *, share_code: Optional[str] = None, link_id: Optional[str] = None):
        details: Dict[str, Any] = {}
        if share_code is not None:
            details["share_code"] = share_code
        if link_id is not None:
            details["link_id"] = link_id
        super().__init__(
            message="Shared link not found",
            error_code=ErrorCode.SHARED_LINK_NOT_FOUND,
            details=details
        )


class AuthenticationRequiredError(PoiSharingException):
    """Raised when no identity can be derived from the request."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTHENTICATION_REQUIRED,
            status_code=401
        )


class AuthorizationError(PoiSharingException):
    """Raised when the requester does not own the resource."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.NOT_LINK_OWNER,
            details=details,
            status_code=403
        )


class ConflictError(PoiSharingException):
    """Raised when a remote write loses a race with a concurrent writer."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FAVORITE_CONFLICT,
            details=details,
            status_code=409
        )


class TransientNetworkError(PoiSharingException):
    """Raised when a backing service is temporarily unreachable."""

    retryable = True

    def __init__(self, service_name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Service '{service_name}' is temporarily unavailable",
            error_code=ErrorCode.TRANSIENT_NETWORK_ERROR,
            details=details or {"service_name": service_name},
            status_code=503
        )


class CodeGenerationError(PoiSharingException):
    """Raised when no unique share code was found within the retry bound."""

    def __init__(self, attempts: int):
        super().__init__(
            message=f"Could not generate a unique share code after {attempts} attempts",
            error_code=ErrorCode.SHARE_CODE_GENERATION_FAILED,
            details={"attempts": attempts},
            status_code=500
        )


class EventsMissedError(PoiSharingException):
    """Raised by a realtime subscription when events may have been lost."""

    def __init__(self, owner_id: str, missed: Optional[int] = None):
        super().__init__(
            message=f"Realtime events for owner '{owner_id}' may have been missed",
            error_code=ErrorCode.REALTIME_EVENTS_MISSED,
            details={"owner_id": owner_id, "missed": missed},
            status_code=503
        )
