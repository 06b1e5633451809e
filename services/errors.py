# services/errors.py
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    API_KEY_MISSING = "api_key_missing"
    INVALID_CONFIGURATION = "invalid_configuration"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"
    IMAGE_PROCESSING_FAILED = "image_processing_failed"
    TIMEOUT = "timeout"
    NETWORK_UNAVAILABLE = "network_unavailable"
    UPSTREAM_ERROR = "upstream_error"


class AcquisitionError(Exception):
    """Terminal failure of a recognition session."""

    def __init__(self, kind: FailureKind, details: Optional[str] = None, code: Optional[int] = None):
        self.kind = kind
        self.details = details
        self.code = code
        message = kind.value
        if code is not None:
            message += f" ({code})"
        if details:
            message += f": {details}"
        super().__init__(message)

    @classmethod
    def timeout(cls, stage: str) -> "AcquisitionError":
        return cls(FailureKind.TIMEOUT, details=f"deadline exceeded before {stage}")


def _mentions_bad_key(details: Optional[str]) -> bool:
    if not details:
        return False
    return "API key" in details or "401" in details


def user_message(error: AcquisitionError) -> str:
    kind = error.kind

    if kind is FailureKind.API_KEY_MISSING:
        return "The narration service is not configured: no API key was found."
    if kind is FailureKind.INVALID_CONFIGURATION:
        return "The narration service configuration is invalid. Please check the settings."
    if kind is FailureKind.REQUEST_FAILED:
        if _mentions_bad_key(error.details):
            return "The API key was rejected. Please check that it is valid."
        return f"Narration could not be generated: {error.details or 'please check your network and retry.'}"
    if kind is FailureKind.INVALID_RESPONSE:
        return "The narration service returned an unreadable response. Please try again."
    if kind is FailureKind.IMAGE_PROCESSING_FAILED:
        return "The photo could not be processed. Please take another one."
    if kind is FailureKind.TIMEOUT:
        return "The request timed out. Please try again."
    if kind is FailureKind.NETWORK_UNAVAILABLE:
        return "No network connection is available."

    # UPSTREAM_ERROR
    if error.code == 401:
        return "The API key is invalid or has expired."
    if error.code == 429:
        return "Too many requests right now. Please wait a moment and try again."
    if error.details:
        return f"The narration service reported an error ({error.code}): {error.details}"
    return f"The narration service reported an error ({error.code}). Please try again."


HTTP_STATUS_BY_KIND = {
    FailureKind.IMAGE_PROCESSING_FAILED: 400,
    FailureKind.API_KEY_MISSING: 503,
    FailureKind.INVALID_CONFIGURATION: 503,
    FailureKind.NETWORK_UNAVAILABLE: 503,
    FailureKind.TIMEOUT: 504,
}


def http_status_for(kind: FailureKind) -> int:
    return HTTP_STATUS_BY_KIND.get(kind, 502)
