import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from calltracker.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Routes that are not logged or instrumented per request
QUIET_PATHS = {"/metrics", "/health/live"}


class CallTrackerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 'ts', the level name and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            now = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record["ts"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname

        if "request_id" not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record["request_id"] = req_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send all application, Uvicorn and SQLAlchemy logs to stdout as JSON lines.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CallTrackerJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))
    root.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [json_handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware replaces the access log
    logging.getLogger("uvicorn.access").disabled = True

    # SQL echo only when explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if log_level.upper() == "DEBUG" else logging.WARNING
    )

    return root


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one structured line per HTTP request and records request metrics.

    Every line carries request_id, method, path, status and latency_ms.
    Requests to /api/events also carry call_id, event_type and result when
    the handler attached them with log_event_data().
    The request id is returned in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)

        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path in QUIET_PATHS:
                return response

            latency_seconds = time.perf_counter() - start
            record_http_request(
                method=request.method,
                path=path,
                status=response.status_code,
                latency_seconds=latency_seconds,
            )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            log_data.update(getattr(request.state, "event_log_data", {}))

            logger = logging.getLogger("calltracker.requests")
            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_event_data(
    request: Request,
    call_id: Optional[str] = None,
    event_type: Optional[str] = None,
    result: Optional[str] = None,
):
    """
    Attach call-event fields to the request state so the middleware can
    include them in the request log line.

    Args:
        request: FastAPI request object
        call_id: Call ID from the event payload
        event_type: call_started / call_ended as sent by the caller
        result: Processing result (created, ended, or the error name)
    """
    event_data = {}
    if call_id is not None:
        event_data["call_id"] = call_id
    if event_type is not None:
        event_data["event_type"] = event_type
    if result is not None:
        event_data["result"] = result

    request.state.event_log_data = event_data
