from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_URL = "INVALID_URL"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    MAINTENANCE = "MAINTENANCE"
    PLATFORM_DISABLED = "PLATFORM_DISABLED"
    RATE_LIMITED = "RATE_LIMITED"
    CREDENTIAL_REQUIRED = "CREDENTIAL_REQUIRED"
    NO_CREDENTIAL_AVAILABLE = "NO_CREDENTIAL_AVAILABLE"
    AGE_RESTRICTED = "AGE_RESTRICTED"
    PRIVATE_CONTENT = "PRIVATE_CONTENT"
    NO_MEDIA_FOUND = "NO_MEDIA_FOUND"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_URL: "Please enter a valid URL.",
    ErrorCode.UNSUPPORTED_PLATFORM: "This platform is not supported.",
    ErrorCode.MAINTENANCE: "Service is under maintenance. Please try again later.",
    ErrorCode.PLATFORM_DISABLED: "This service is temporarily unavailable.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorCode.CREDENTIAL_REQUIRED: "This content requires login. Please add a cookie for this platform.",
    ErrorCode.NO_CREDENTIAL_AVAILABLE: "All cookies for this platform are busy. Please try again later.",
    ErrorCode.AGE_RESTRICTED: "This content is age-restricted and needs a logged-in cookie.",
    ErrorCode.PRIVATE_CONTENT: "This content is private or has been removed.",
    ErrorCode.NO_MEDIA_FOUND: "No downloadable media found in this post.",
    ErrorCode.UPSTREAM_TIMEOUT: "The platform took too long to respond. Please try again.",
    ErrorCode.UPSTREAM_ERROR: "Could not reach the platform. Please try again later.",
}

# Most specific first; used to pick the error surfaced after a chain fails.
ERROR_PRIORITY: tuple[ErrorCode, ...] = (
    ErrorCode.AGE_RESTRICTED,
    ErrorCode.PRIVATE_CONTENT,
    ErrorCode.CREDENTIAL_REQUIRED,
    ErrorCode.RATE_LIMITED,
    ErrorCode.UPSTREAM_TIMEOUT,
    ErrorCode.UPSTREAM_ERROR,
    ErrorCode.NO_MEDIA_FOUND,
)


def default_message(code: ErrorCode) -> str:
    return ERROR_MESSAGES.get(code, "An unexpected error occurred.")


def most_specific(codes: list[ErrorCode]) -> ErrorCode:
    """Return the highest-priority code in *codes* (``NO_MEDIA_FOUND`` if empty)."""
    for code in ERROR_PRIORITY:
        if code in codes:
            return code
    return codes[0] if codes else ErrorCode.NO_MEDIA_FOUND
