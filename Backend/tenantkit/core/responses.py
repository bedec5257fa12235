"""
Standardized API Response Module

Provides consistent response formatting for the tenant config endpoints.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - CONFIG_SYNTAX_ERROR: Source text is not a well-formed document
    - CONFIG_INVALID: Source parsed but violates schema or business rules
    - NOT_FOUND: No active business for the given key
    - CONFLICT: Subdomain taken, or email registered under another role
    - BREAKING_CHANGE: Config update would invalidate existing bookings
    - STORE_TIMEOUT: Store call timed out (retryable)
    - INTERNAL_ERROR: Server-side error
"""

from typing import Any, Optional


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Validation errors (422)
    CONFIG_SYNTAX_ERROR = "CONFIG_SYNTAX_ERROR"
    CONFIG_INVALID = "CONFIG_INVALID"
    INVALID_INPUT = "INVALID_INPUT"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"
    BREAKING_CHANGE = "BREAKING_CHANGE"

    # Server errors (5xx)
    STORE_TIMEOUT = "STORE_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """
    Create a standardized success response dict.

    Use this for simple responses where Pydantic model isn't needed.
    """
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.

    Use this for simple error responses.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response


HTTP_STATUS_BY_CODE = {
    ErrorCodes.CONFIG_SYNTAX_ERROR: 422,
    ErrorCodes.CONFIG_INVALID: 422,
    ErrorCodes.INVALID_INPUT: 422,
    ErrorCodes.NOT_FOUND: 404,
    ErrorCodes.CONFLICT: 409,
    ErrorCodes.BREAKING_CHANGE: 409,
    ErrorCodes.STORE_TIMEOUT: 503,
    ErrorCodes.INTERNAL_ERROR: 500,
}
