import logging
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from shiftdesk.db import engine
from shiftdesk.errors import ApiError, error_response
from shiftdesk.logging_utils import setup_json_logging
from shiftdesk.routers import admin, attendance, auth, changes, duties, leaves, swaps
from shiftdesk.services.change_feed import ChangeFeed, QueryGenerations
from shiftdesk.services.collaborators import build_proof_storage
from shiftdesk.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level.upper())
logger = logging.getLogger("shiftdesk.request")
lifecycle_logger = logging.getLogger("shiftdesk.lifecycle")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.change_feed = ChangeFeed()
app.state.query_generations = QueryGenerations()
app.state.proof_storage = build_proof_storage(settings)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

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
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
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
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        429: "TOO_MANY_ATTEMPTS",
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


app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(leaves.router)
app.include_router(duties.router)
app.include_router(swaps.router)
app.include_router(admin.router)
app.include_router(changes.router)


@app.on_event("startup")
async def prepare_proof_directories() -> None:
    for directory in (settings.proof_storage_dir, settings.proof_fallback_dir):
        Path(directory).mkdir(parents=True, exist_ok=True)
    lifecycle_logger.info(
        "app_started",
        extra={
            "timezone": settings.attendance_timezone,
            "proof_storage_dir": settings.proof_storage_dir,
        },
    )


@app.on_event("shutdown")
async def close_change_feed() -> None:
    lifecycle_logger.info(
        "app_stopped",
        extra={"change_feed_subscribers": app.state.change_feed.subscriber_count},
    )


@app.get("/health")
def health() -> dict[str, Any]:
    database = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        lifecycle_logger.warning("health_database_unreachable", exc_info=True)
        database = "unreachable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "change_feed_subscribers": app.state.change_feed.subscriber_count,
    }


app.mount(
    settings.proof_public_base_url,
    StaticFiles(directory=settings.proof_storage_dir, check_dir=False),
    name="proofs",
)
app.mount(
    settings.proof_fallback_base_url,
    StaticFiles(directory=settings.proof_fallback_dir, check_dir=False),
    name="proofs-fallback",
)
