"""Custom exceptions for the briefing backend."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "BriefingNotFoundError": "No briefing has been started for this session.",
    "NotFoundError": "The requested resource was not found.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "EnrichmentFetchError": "Company research is still being prepared.",
    "ExternalServiceError": "An external service is temporarily unavailable.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit the message of the
    closest mapped ancestor. Internal details stay in the server logs.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class BriefingServiceError(Exception):
    """Base exception for all briefing-service errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(BriefingServiceError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class BriefingNotFoundError(NotFoundError):
    """No briefing exists for the requesting session."""

    def __init__(self, session_key: str | None = None) -> None:
        super().__init__("Briefing", session_key)


class ValidationError(BriefingServiceError):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class ExternalServiceError(BriefingServiceError):
    """External service error (502)."""

    def __init__(self, service: str, message: str | None = None) -> None:
        """Initialize external service error.

        Args:
            service: Name of the external service.
            message: Optional error message.
        """
        error_message = message or f"Error communicating with {service}"
        super().__init__(
            message=error_message,
            code="EXTERNAL_SERVICE_ERROR",
            status_code=502,
            details={"service": service},
        )


class EnrichmentFetchError(ExternalServiceError):
    """Soft failure while reading the enrichment profile.

    Raised for non-2xx responses, non-JSON bodies and transport errors.
    The poll loop counts it as an attempt and tries again on the normal
    cadence; it is never shown to the user.
    """

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        """Initialize enrichment fetch error.

        Args:
            reason: Short machine-readable cause (e.g. "http_status", "not_json").
            status_code: Upstream HTTP status, when a response was received.
        """
        message = f"Profile context unavailable: {reason}"
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(service="enrichment_api", message=message)
        self.code = "ENRICHMENT_FETCH_ERROR"
        self.reason = reason
        self.upstream_status = status_code
        self.details["reason"] = reason
        self.details["upstream_status"] = status_code
