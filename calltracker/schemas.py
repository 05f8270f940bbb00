"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming call events
- Response models for API responses
"""

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from calltracker.models import CallStatus


class EventType(str, enum.Enum):
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"


# =============================================================================
# Pydantic Request Models
# =============================================================================

class EventRequest(BaseModel):
    """
    Body of a telephony webhook notification.

    Only the JSON shape is checked here. Field rules (phone grammar, required
    fields per type, timestamps) are enforced by EventIngestionService so that
    each failure maps to its own error.
    """
    call_id: Optional[str] = Field(None, description="Caller-supplied unique call identifier")
    # Note: 'from' is a reserved word in Python, so we use alias
    from_number: Optional[str] = Field(None, alias="from", description="Caller phone number")
    to: Optional[str] = Field(None, description="Callee phone number")
    started: Optional[str] = Field(None, description="Call start time, ISO-8601")
    ended: Optional[str] = Field(None, description="Call end time, ISO-8601")
    type: Optional[str] = Field(None, description="call_started or call_ended")

    model_config = {
        "populate_by_name": True,  # Allow both 'from' and 'from_number'
        "json_schema_extra": {
            "examples": [
                {
                    "call_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
                    "from": "+14155550100",
                    "to": "+919876543210",
                    "started": "2025-01-15T10:00:00Z",
                    "type": "call_started",
                },
                {
                    "call_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
                    "from": "+14155550100",
                    "to": "+919876543210",
                    "ended": "2025-01-15T10:01:30Z",
                    "type": "call_ended",
                },
            ]
        },
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class EventResponse(BaseModel):
    """Response model for a successfully applied call event."""
    message: str = Field(..., description="What was recorded")
    duration: Optional[str] = Field(None, description="Formatted call duration (call_ended only)")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Machine-readable error message")
    details: Optional[str] = Field(None, description="Additional context")
    code: Optional[str] = Field(None, description="Conflict code, e.g. DUPLICATE_CALL_ID")
    duration: Optional[str] = Field(None, description="Rejected duration, when relevant")


class CallResponse(BaseModel):
    """A single call record from the ledger."""
    id: str
    from_number: str = Field(..., alias="from")
    to_number: str = Field(..., alias="to")
    started: datetime
    ended: Optional[datetime] = None
    duration: Optional[int] = None
    status: CallStatus

    model_config = ConfigDict(populate_by_name=True)


class MetricsSnapshot(BaseModel):
    """
    Aggregate view of the calls ledger.

    Serialized with camelCase keys for the dashboard.
    """
    total_calls: int = Field(..., ge=0, alias="totalCalls")
    failed_calls: int = Field(..., ge=0, alias="failedCalls")
    pending_calls: int = Field(..., ge=0, alias="pendingCalls")
    error_rate: float = Field(..., ge=0, alias="errorRate")
    average_duration: float = Field(..., ge=0, alias="averageDuration")
    max_duration: int = Field(..., ge=0, alias="maxDuration")
    min_duration: int = Field(..., ge=0, alias="minDuration")

    model_config = ConfigDict(populate_by_name=True)


class ReconciliationResponse(BaseModel):
    success: bool = True
    updated_calls: int = Field(..., ge=0, alias="updatedCalls")

    model_config = ConfigDict(populate_by_name=True)


class MonitorResponse(BaseModel):
    """Calls still open past the reconciliation window."""
    failed_calls: int = Field(..., ge=0, alias="failedCalls")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
