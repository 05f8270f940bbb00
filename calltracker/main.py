import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from calltracker.aggregator import MetricsAggregator
from calltracker.config import settings
from calltracker.errors import CallNotFound, CallTrackerError, Unauthorized, ValidationError
from calltracker.ingestion import EventIngestionService
from calltracker.logging_utils import RequestLoggingMiddleware, log_event_data, setup_logging
from calltracker.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_call_event,
    record_overdue_calls,
    record_reconciliation,
)
from calltracker.reconciler import StaleCallReconciler
from calltracker.schemas import (
    CallResponse,
    ErrorResponse,
    EventRequest,
    EventResponse,
    EventType,
    HealthResponse,
    MetricsSnapshot,
    MonitorResponse,
    ReconciliationResponse,
)
from calltracker.storage import CallStore, check_db_health, get_db, init_db
from calltracker.utils import verify_api_key


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Call Tracker API",
    description="Tracks call lifecycle events, reconciles stale calls and reports call metrics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(CallTrackerError)
async def call_tracker_error_handler(request: Request, exc: CallTrackerError) -> JSONResponse:
    """Render domain errors as {"error", "details"?, "code"?}."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# Dependencies
# =============================================================================

def require_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    if not verify_api_key(x_api_key, settings.API_SECRET_KEY):
        logger.warning("Rejected request with missing or invalid API key")
        raise Unauthorized()


def get_call_store(db: Session = Depends(get_db)) -> CallStore:
    return CallStore(db)


def get_ingestion_service(store: CallStore = Depends(get_call_store)) -> EventIngestionService:
    return EventIngestionService(store, max_duration=settings.MAX_CALL_DURATION_SECONDS)


def get_reconciler(store: CallStore = Depends(get_call_store)) -> StaleCallReconciler:
    return StaleCallReconciler(
        store,
        stale_after=timedelta(minutes=settings.STALE_CALL_AFTER_MINUTES),
        window=timedelta(minutes=settings.STALE_CALL_WINDOW_MINUTES),
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
    )


def get_aggregator(store: CallStore = Depends(get_call_store)) -> MetricsAggregator:
    return MetricsAggregator(
        store,
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
    )


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    500: {"model": ErrorResponse, "description": "Unexpected failure"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. API_SECRET_KEY is set (non-empty)
    2. DB is reachable and the calls table exists

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.API_SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="API_SECRET_KEY not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


api = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])


# =============================================================================
# Event Ingestion Route
# =============================================================================

@api.post(
    "/events",
    response_model=EventResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    responses={
        **ERROR_RESPONSES,
        201: {"model": EventResponse, "description": "Call started event logged"},
        404: {"model": ErrorResponse, "description": "Call not found"},
        409: {"model": ErrorResponse, "description": "Duplicate id, already ended or lost update"},
    },
)
async def post_event(
    request: Request,
    response: Response,
    service: EventIngestionService = Depends(get_ingestion_service),
) -> EventResponse:
    """
    Apply a call_started or call_ended notification.

    - call_started: 201, the call is recorded as 'started'
    - call_ended: 200 with the formatted duration, the call is closed
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    try:
        body = json.loads(raw_body)
        if not isinstance(body, dict):
            raise ValidationError("Invalid request body", details="Expected a JSON object")
        event = EventRequest.model_validate(body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        record_call_event("unknown", "validation_error")
        log_event_data(request, result="validation_error")
        raise ValidationError("Invalid JSON", details=str(e))
    except SchemaValidationError as e:
        logger.error(f"Validation error: {e}")
        record_call_event("unknown", "validation_error")
        log_event_data(request, call_id=body.get("call_id"), result="validation_error")
        raise ValidationError("Invalid request body", details=str(e))
    except ValidationError:
        record_call_event("unknown", "validation_error")
        log_event_data(request, result="validation_error")
        raise

    event_type = event.type if event.type in (EventType.CALL_STARTED, EventType.CALL_ENDED) else "unknown"
    logger.info(f"Event received: type={event.type}, call_id={event.call_id}")

    try:
        # The store is synchronous; keep it off the event loop
        result = await run_in_threadpool(service.handle_event, event)
    except CallTrackerError as e:
        outcome = type(e).__name__
        logger.info(f"Event rejected: call_id={event.call_id}, result={outcome}")
        record_call_event(event_type, outcome)
        log_event_data(request, call_id=event.call_id, event_type=event.type, result=outcome)
        raise

    outcome = "created" if event_type == EventType.CALL_STARTED else "ended"
    if event_type == EventType.CALL_STARTED:
        response.status_code = status.HTTP_201_CREATED
    record_call_event(event_type, outcome)
    log_event_data(request, call_id=event.call_id, event_type=event.type, result=outcome)

    return result


# =============================================================================
# Call Lookup Route
# =============================================================================

@api.get(
    "/calls/{call_id}",
    response_model=CallResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Call not found"}},
)
def get_call(call_id: str, store: CallStore = Depends(get_call_store)) -> CallResponse:
    """Return one call record from the ledger."""
    call = store.get_call(call_id)
    if call is None:
        raise CallNotFound(call_id)
    return CallResponse(
        id=call.id,
        from_number=call.from_number,
        to_number=call.to_number,
        started=call.started,
        ended=call.ended,
        duration=call.duration,
        status=call.status,
    )


# =============================================================================
# Metrics, Reconciliation and Monitor Routes
# =============================================================================

@api.get("/metrics", response_model=MetricsSnapshot, responses=ERROR_RESPONSES)
def call_metrics(aggregator: MetricsAggregator = Depends(get_aggregator)) -> MetricsSnapshot:
    """
    Summary statistics over all calls:
    totalCalls, failedCalls, pendingCalls, errorRate (percent),
    averageDuration, maxDuration, minDuration (seconds).
    """
    return aggregator.compute()


@api.get("/cron", response_model=ReconciliationResponse, responses=ERROR_RESPONSES)
def run_reconciliation(reconciler: StaleCallReconciler = Depends(get_reconciler)) -> ReconciliationResponse:
    """Close calls left open without an end event. Triggered by an external scheduler."""
    logger.info("Cron job started: checking for stale calls")
    updated = reconciler.run()
    record_reconciliation(updated)
    logger.info(f"Cron job completed: updated {updated} stale calls")
    return ReconciliationResponse(updated_calls=updated)


@api.get("/monitor", response_model=MonitorResponse, responses=ERROR_RESPONSES)
def monitor(reconciler: StaleCallReconciler = Depends(get_reconciler)) -> MonitorResponse:
    """Count calls still open past the reconciliation window."""
    overdue = reconciler.count_overdue()
    record_overdue_calls(overdue)
    return MonitorResponse(failed_calls=overdue)


app.include_router(api)


# =============================================================================
# Prometheus Route
# =============================================================================

@app.get("/metrics")
async def prometheus_metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
