"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from prometheus_client import generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from guitar_dice.api.admin_routes import router as admin_router
from guitar_dice.api.auth_routes import router as auth_router
from guitar_dice.api.chat_routes import router as chat_router
from guitar_dice.api.chat_socket import router as chat_socket_router
from guitar_dice.api.referral_routes import router as referral_router
from guitar_dice.api.status_routes import router as status_router
from guitar_dice.api.subscription_routes import router as subscription_router
from guitar_dice.api.usage_routes import router as usage_router
from guitar_dice.config import settings
from guitar_dice.db.migration_runner import run_migrations
from guitar_dice.db.session import close_engines, get_write_engine
from guitar_dice.exceptions import (
    AudioValidationError,
    AuthenticationError,
    CSRFValidationError,
    DatabaseError,
    DurationExceededError,
    EmailAlreadyRegisteredError,
    GuitarDiceError,
    InvalidMessageContentError,
    PathTraversalError,
    RateLimitExceededError,
    UserNotFoundError,
    WebhookVerificationError,
)
from guitar_dice.models.api import ChatErrorCode, ChatErrorResponse
from guitar_dice.observability import get_logger, metrics, setup_logging, setup_tracing
from guitar_dice.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from guitar_dice.services.audio import decoder_available
from guitar_dice.services.relay import ChatRelay

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        environment=settings.environment,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        ad_rewards_enabled=settings.ad_rewards_enabled,
    )
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)
    if not decoder_available():
        # Non-WAV uploads will all fail with INVALID_AUDIO_METADATA
        logger.warning("audio_decoder_missing", converter="ffmpeg")
    instrument_sqlalchemy(get_write_engine())

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

# One relay per process; the chat socket and REST chat routes share it
app.state.relay = ChatRelay()


# ============================================================================
# Exception handlers
# ============================================================================


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log detailed validation errors for debugging."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold non-serializable objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request data", "errors": sanitized_errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = {"message": exc.detail} if isinstance(exc.detail, str) else {"detail": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(InvalidMessageContentError)
async def invalid_content_handler(request: Request, exc: InvalidMessageContentError):
    body = ChatErrorResponse(message=exc.message, code=exc.code)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.exception_handler(AudioValidationError)
async def audio_validation_handler(request: Request, exc: AudioValidationError):
    body = ChatErrorResponse(message=exc.message, code=exc.code)
    if isinstance(exc, DurationExceededError):
        body.max_duration = exc.max_duration
        body.file_duration = exc.duration
    status_code = (
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        if exc.code == ChatErrorCode.FILE_TOO_LARGE
        else status.HTTP_400_BAD_REQUEST
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.exception_handler(PathTraversalError)
async def path_traversal_handler(request: Request, exc: PathTraversalError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": str(exc), "code": exc.code.value},
    )


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"message": exc.message})


@app.exception_handler(CSRFValidationError)
async def csrf_handler(request: Request, exc: CSRFValidationError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"message": str(exc), "code": exc.code},
    )


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"message": str(exc), "retryAfter": exc.retry_after, "rateLimited": True},
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(UserNotFoundError)
async def user_not_found_handler(request: Request, exc: UserNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": "User not found"})


@app.exception_handler(EmailAlreadyRegisteredError)
async def email_registered_handler(request: Request, exc: EmailAlreadyRegisteredError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"message": str(exc)})


@app.exception_handler(WebhookVerificationError)
async def webhook_verification_handler(request: Request, exc: WebhookVerificationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": exc.message})


@app.exception_handler(GuitarDiceError)
async def service_error_handler(request: Request, exc: GuitarDiceError):
    """Storage and other unexpected service failures: logged, never retried."""
    metrics.record_error(type(exc).__name__, request.url.path)
    logger.error(
        "service_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    message = "Database operation failed" if isinstance(exc, DatabaseError) else "Internal error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": message}
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Proxy headers - X-Forwarded-For/Proto are applied only when the peer is a
# trusted proxy (FORWARDED_ALLOW_IPS)
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.forwarded_allow_ips)

# Signed session cookie shared by REST and the chat socket handshake
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret_key,
    session_cookie=settings.session_cookie_name,
    max_age=settings.session_max_age,
    same_site="lax",
    https_only=settings.session_https_only or settings.is_production,
)

# CORS: credentials require explicit origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.extra_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    try:
        response = await call_next(request)
    except Exception as e:
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")
        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise

    duration = time.perf_counter() - start_time
    metrics.record_http_request(endpoint, method, response.status_code, duration)
    logger.info(
        "request_completed",
        method=method,
        path=endpoint,
        status_code=response.status_code,
        duration_seconds=duration,
        request_id=request_id,
    )
    return response


# Register routes
app.include_router(status_router)
app.include_router(usage_router)
app.include_router(referral_router)
app.include_router(chat_router)
app.include_router(chat_socket_router)
app.include_router(auth_router)
app.include_router(subscription_router)
app.include_router(admin_router)

# Uploaded audio clips
Path(settings.chat_upload_dir).mkdir(parents=True, exist_ok=True)
app.mount(
    settings.chat_upload_url_prefix,
    StaticFiles(directory=settings.chat_upload_dir),
    name="chat_uploads",
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=status.HTTP_404_NOT_FOUND)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "guitar_dice.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
