import asyncio
from contextlib import suppress
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shift_attendance.db import SessionLocal
from shift_attendance.errors import ApiError, error_response
from shift_attendance.logging_utils import setup_json_logging
from shift_attendance.routers import attendance
from shift_attendance.schemas import HealthResponse
from shift_attendance.services.trusted_clock import get_trusted_clock, sync_with_database
from shift_attendance.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("shift_attendance.request")
clock_worker_logger = logging.getLogger("shift_attendance.clock_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "user_id": getattr(request.state, "user_id", None),
                "event_id": getattr(request.state, "event_id", None),
                "flags": getattr(request.state, "flags", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)


def _sync_clock_once() -> float:
    with SessionLocal() as db:
        offset = sync_with_database(get_trusted_clock(), db)
    return offset.total_seconds()


async def _clock_sync_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(10, int(settings.clock_sync_interval_seconds))
    while not stop_event.is_set():
        try:
            offset_seconds = await asyncio.to_thread(_sync_clock_once)
        except Exception:
            clock_worker_logger.exception("clock_sync_failed")
        else:
            clock_worker_logger.debug("clock_sync_ok", extra={"offset_s": offset_seconds})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def start_clock_sync_worker() -> None:
    if not settings.clock_sync_worker_enabled:
        return
    if getattr(app.state, "clock_sync_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_clock_sync_loop(stop_event))
    app.state.clock_sync_stop_event = stop_event
    app.state.clock_sync_task = task
    clock_worker_logger.info(
        "clock_sync_worker_started",
        extra={"interval_seconds": max(10, int(settings.clock_sync_interval_seconds))},
    )


@app.on_event("shutdown")
async def stop_clock_sync_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "clock_sync_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "clock_sync_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.clock_sync_stop_event = None
    app.state.clock_sync_task = None


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    clock = get_trusted_clock()
    offset = clock.offset
    return HealthResponse(
        status="ok",
        clock_synced=clock.is_synced(),
        clock_offset_seconds=offset.total_seconds() if offset is not None else None,
    )
