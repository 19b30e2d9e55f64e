"""Content Strategist API - Main FastAPI Application."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from strategist import __version__
from strategist.api.routes import conversations, health, memories, messages, profile
from strategist.core.config import settings
from strategist.core.exceptions import StrategistError, sanitize_error


# JSON for production log collectors, text for local development
def _configure_logging() -> None:
    """Set up logging from the LOG_FORMAT and LOG_LEVEL settings.

    json: Structured JSON via python-json-logger.
    text: Human-readable format.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "strategist-api"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> Any:
    """Validate required secrets on startup."""
    logger.info("Starting Content Strategist API...")
    settings.validate_startup()
    yield
    logger.info("Shutting down Content Strategist API...")


app = FastAPI(
    title="Content Strategist API",
    description="Conversational social media content strategist",
    version=__version__,
    lifespan=lifespan,
)

CORS_ORIGINS = settings.cors_origins_list
logger.info("CORS allowed origins: %s", CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router, prefix="/api/v1")
app.include_router(messages.router, prefix="/api/v1")
app.include_router(memories.router, prefix="/api/v1")
app.include_router(profile.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def root_health_check() -> dict[str, str]:
    """Lightweight liveness check. For circuit states, use /api/v1/health."""
    return {"status": "healthy"}


@app.exception_handler(StrategistError)
async def strategist_exception_handler(request: Request, exc: StrategistError) -> JSONResponse:
    """Render application errors with a consistent body.

    Args:
        request: The incoming request.
        exc: The application exception.

    Returns:
        JSON error response carrying the error's status and details.
    """
    request_id = str(uuid.uuid4())
    logger.warning(
        "Application exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "code": exc.code,
            "request_id": request_id,
            "retryable": exc.retryable,
            **exc.details,
        },
    )


def _validation_response(request: Request, errors: list[Any]) -> JSONResponse:
    request_id = str(uuid.uuid4())
    logger.warning(
        "Request validation failed",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "error_count": len(errors),
        },
    )
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Validation error",
            "code": "VALIDATION_ERROR",
            "request_id": request_id,
            "retryable": False,
            "errors": errors,
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render malformed request bodies and parameters as 400."""
    return _validation_response(request, _jsonable_errors(exc.errors()))


@app.exception_handler(PydanticValidationError)
async def pydantic_validation_handler(
    request: Request, exc: PydanticValidationError
) -> JSONResponse:
    return _validation_response(request, _jsonable_errors(exc.errors()))


def _jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    # ctx can hold the raw exception, which is not JSON serializable
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in errors
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; never leaks internals."""
    request_id = str(uuid.uuid4())
    logger.exception(
        "Unhandled exception",
        extra={"request_id": request_id, "path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": sanitize_error(exc),
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
            "retryable": True,
        },
    )
