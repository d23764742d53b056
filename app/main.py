import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Query, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.delivery import WebhookDeliveryClient
from app.executor import SendBatchExecutor
from app.logging_utils import setup_logging, RequestLoggingMiddleware
from app.metrics import get_metrics, get_metrics_content_type
from app.scheduler import Scheduler
from app.storage import MessageStore, StorageError, init_db, check_db_health
from app.utils import is_valid_msisdn, truncate_content
from app.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageCreateRequest,
    MessageResponse,
    SchedulerStateResponse,
    StatusResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, wire store -> delivery client -> executor -> scheduler
    - Shutdown: stop the scheduler (waits for an in-flight tick), close HTTP pool
    """
    init_db()

    store = MessageStore()
    delivery_client = WebhookDeliveryClient.from_settings(settings)
    executor = SendBatchExecutor(
        store=store,
        delivery_client=delivery_client,
        max_per_tick=settings.MSG_PER_TICK,
        char_limit=settings.MSG_CHAR_LIMIT,
    )
    scheduler = Scheduler(executor, settings)

    app.state.store = store
    app.state.scheduler = scheduler

    if settings.SCHEDULER_AUTOSTART:
        scheduler.start()

    try:
        yield
    finally:
        scheduler.stop()
        delivery_client.close()
        logger.info("Shutdown complete")


app = FastAPI(
    title="Message Dispatch API",
    description="Periodically forwards unsent messages to a webhook",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def error_response(status_code: int, error: str, message: str = None, code: str = None) -> JSONResponse:
    if status_code >= 500:
        logger.error(f"API error: {error}")
    else:
        logger.warning(f"Request rejected: {error}")
    body = ErrorResponse(error=error, message=message, code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    messages table exists, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Scheduler Control Routes
# =============================================================================

# Plain `def` handlers: stop() joins the loop thread, so these run in the
# threadpool instead of blocking the event loop.

@app.api_route(
    "/api/auto",
    methods=["GET", "POST"],
    response_model=StatusResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid action"}},
)
def start_stop(
    action: Annotated[str | None, Query(description="start or stop")] = None,
    scheduler: Scheduler = Depends(get_scheduler),
):
    """
    Start or stop automatic message sending.

    Both actions are idempotent. Stop returns once any in-flight batch has
    finished.
    """
    if action == "start":
        scheduler.start()
        return StatusResponse(status="started")
    if action == "stop":
        scheduler.stop()
        return StatusResponse(status="stopped")

    return error_response(
        status.HTTP_400_BAD_REQUEST,
        error="Invalid action parameter",
        message="Action must be either 'start' or 'stop'",
        code="INVALID_ACTION",
    )


@app.get("/api/auto/status", response_model=SchedulerStateResponse)
def scheduler_state(scheduler: Scheduler = Depends(get_scheduler)) -> SchedulerStateResponse:
    return SchedulerStateResponse(running=scheduler.is_running())


# =============================================================================
# Messages Routes
# =============================================================================

@app.post(
    "/api/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Storage error"},
    },
)
async def create_message(request: Request, store: MessageStore = Depends(get_store)):
    """
    Create a message to be sent by a later batch.

    - `to` must be in international format (e.g. +905551111111)
    - `content` must be non-empty; it is truncated to MSG_CHAR_LIMIT characters
    """
    raw_body = await request.body()

    try:
        payload = MessageCreateRequest.model_validate(json.loads(raw_body))
    except ValueError as e:
        logger.debug(f"Rejected message payload: {e}")
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            error="Invalid request payload",
            message="Request body must be valid JSON",
            code="INVALID_PAYLOAD",
        )

    to = payload.to.strip()
    content = payload.content.strip()

    if not is_valid_msisdn(to):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            error="Invalid phone number format",
            message="Phone number must be in international format (e.g., +905551111111)",
            code="INVALID_PHONE_NUMBER",
        )

    if not content:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            error="Content cannot be empty",
            message="Message content is required",
            code="EMPTY_CONTENT",
        )

    content = truncate_content(content, settings.MSG_CHAR_LIMIT)

    try:
        message = store.create(to_msisdn=to, content=content)
    except StorageError:
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Failed to create message in database",
        )

    return MessageResponse.from_orm_message(message)


@app.get(
    "/api/sent",
    response_model=list[MessageResponse],
    responses={500: {"model": ErrorResponse, "description": "Storage error"}},
)
def list_sent(store: MessageStore = Depends(get_store)):
    """List every message that has been delivered, most recent first."""
    try:
        messages = store.list_sent()
    except StorageError:
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Failed to retrieve sent messages",
        )

    logger.info(f"GET /api/sent: returned {len(messages)} messages")
    return [MessageResponse.from_orm_message(m) for m in messages]


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
