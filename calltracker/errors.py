"""
Error taxonomy for the call ledger.

Every error raised by the ingestion, reconciliation and metrics code derives
from CallTrackerError. The HTTP layer renders them as
{"error": ..., "details": ..., "code": ...} using status_code.
"""

from typing import Optional


class CallTrackerError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: Optional[str] = None

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        if self.code is not None:
            body["code"] = self.code
        return body


# =============================================================================
# Validation errors (400)
# =============================================================================

class ValidationError(CallTrackerError):
    status_code = 400


class MissingField(ValidationError):
    def __init__(self, field: str):
        super().__init__("Missing required fields", details=f"'{field}' is required")
        self.field = field


class InvalidPhoneNumber(ValidationError):
    def __init__(self, number: Optional[str] = None):
        super().__init__(
            "Invalid phone number format. Numbers should only contain digits "
            "and optionally start with +",
            details=f"Got: {number!r}" if number is not None else None,
        )


class PhoneNumberTooLong(ValidationError):
    def __init__(self, max_digits: int):
        super().__init__(
            f"Phone number is too long. Maximum length is {max_digits} digits.",
            details="This follows the E.164 international phone number format standard.",
        )


class InvalidTimestamp(ValidationError):
    def __init__(self, value: object = None):
        super().__init__("Invalid date format", details=f"Got: {value!r}")
        self.value = value


class InvalidDuration(ValidationError):
    def __init__(self):
        super().__init__("Invalid call duration. End time cannot be before start time.")


def _max_duration_label(max_seconds: int) -> str:
    if max_seconds % 3600 == 0:
        hours = max_seconds // 3600
        return "1 hour" if hours == 1 else f"{hours} hours"
    if max_seconds % 60 == 0:
        minutes = max_seconds // 60
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    return f"{max_seconds} seconds"


class DurationExceedsMaximum(ValidationError):
    def __init__(self, duration: str, max_seconds: int):
        super().__init__(
            f"Invalid call duration. Calls cannot exceed {_max_duration_label(max_seconds)}.",
        )
        # Formatted would-be duration, kept for diagnostics
        self.duration = duration

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["duration"] = self.duration
        return body


class InvalidEventType(ValidationError):
    def __init__(self, event_type: object):
        super().__init__("Invalid type provided", details=f"Got: {event_type!r}")


# =============================================================================
# Not found (404)
# =============================================================================

class NotFoundError(CallTrackerError):
    status_code = 404


class CallNotFound(NotFoundError):
    def __init__(self, call_id: str):
        super().__init__("Call not found", details=f"No call with id '{call_id}'")
        self.call_id = call_id


# =============================================================================
# Conflicts (409)
# =============================================================================

class ConflictError(CallTrackerError):
    status_code = 409


class DuplicateCallId(ConflictError):
    code = "DUPLICATE_CALL_ID"

    def __init__(self, call_id: str):
        super().__init__(
            "A call with this ID already exists.",
            details="Please generate a new UUID and try again.",
        )
        self.call_id = call_id


class AlreadyEnded(ConflictError):
    code = "ALREADY_ENDED"

    def __init__(self, call_id: str):
        super().__init__(
            "Call has already ended",
            details="Cannot end a call that has already been marked as ended.",
        )
        self.call_id = call_id


class UpdateConflict(ConflictError):
    code = "UPDATE_CONFLICT"

    def __init__(self, call_id: str):
        super().__init__(
            "Failed to update call",
            details=f"Call '{call_id}' was modified by another writer.",
        )
        self.call_id = call_id


# =============================================================================
# Store and availability errors
# =============================================================================

class TransientStoreError(CallTrackerError):
    """A storage operation failed in a way that may succeed on retry."""


class UnavailableError(CallTrackerError):
    status_code = 500


class MetricsUnavailable(UnavailableError):
    def __init__(self, details: Optional[str] = None):
        super().__init__("Failed to fetch metrics", details=details)


class Unauthorized(UnavailableError):
    status_code = 401

    def __init__(self):
        super().__init__("Unauthorized")


# =============================================================================
# Duration calculator errors (internal, mapped by the ingestion service)
# =============================================================================

class DurationError(Exception):
    """Base class for duration calculation failures."""


class NegativeDuration(DurationError):
    def __init__(self, seconds: int):
        super().__init__(f"Negative duration: {seconds}s")
        self.seconds = seconds


class DurationTooLong(DurationError):
    def __init__(self, seconds: int, max_seconds: int):
        super().__init__(f"Duration {seconds}s exceeds maximum of {max_seconds}s")
        self.seconds = seconds
        self.max_seconds = max_seconds
