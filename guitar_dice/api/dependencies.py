"""
FastAPI Dependencies - Session authentication, CSRF and rate limiting.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit
from uuid import UUID

from fastapi import Depends, Header, Request
from starlette.requests import HTTPConnection

from guitar_dice.config import settings
from guitar_dice.exceptions import (
    AuthenticationError,
    CSRFValidationError,
    RateLimitExceededError,
)
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics
from guitar_dice.services.audio import AudioStorage, AudioValidator
from guitar_dice.services.identity import CookieSessionResolver, SessionResolver
from guitar_dice.services.rate_limiter import RateLimiter
from guitar_dice.services.relay import ChatRelay
from guitar_dice.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

_session_resolver = CookieSessionResolver()


# ============================================================================
# Session identity
# ============================================================================


def get_session_resolver() -> SessionResolver:
    """Resolver used by REST routes and the chat socket handshake."""
    return _session_resolver


def client_ip(connection: HTTPConnection) -> str:
    """
    Peer address of the connection.

    Headers are never read here: ProxyHeadersMiddleware has already replaced
    the peer with the forwarded client when the request came through a
    trusted proxy.
    """
    if connection.client is not None:
        return connection.client.host
    return "unknown"


async def get_current_user_id(
    request: Request,
    resolver: SessionResolver = Depends(get_session_resolver),
) -> UUID:
    """
    FastAPI dependency requiring a logged-in session.

    Usage:
        @router.get("/api/usage/status")
        async def status(user_id: UUID = Depends(get_current_user_id)):
            ...
    """
    user_id = resolver.resolve(request)
    if user_id is None:
        raise AuthenticationError("Unauthorized")
    return user_id


# ============================================================================
# CSRF (Origin / Referer validation)
# ============================================================================


def allowed_origins(host: str | None) -> list[str]:
    """Origins accepted for state-changing requests addressed to host."""
    origins: list[str] = []
    if host:
        if settings.is_production:
            origins.append(f"https://{host}")
        else:
            origins.extend([f"http://{host}", f"https://{host}"])
    origins.extend(settings.extra_allowed_origins)
    return origins


def is_allowed_origin(origin: str | None, host: str | None) -> bool:
    if not origin:
        return False
    return origin.rstrip("/") in allowed_origins(host)


def request_origin(connection: HTTPConnection) -> str | None:
    """Origin header, or scheme://host of the Referer when Origin is absent."""
    origin = connection.headers.get("Origin")
    if origin:
        return origin
    referer = connection.headers.get("Referer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


async def verify_same_origin(request: Request) -> None:
    """Reject state-changing requests that do not come from our own origin."""
    if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return
    origin = request_origin(request)
    if not is_allowed_origin(origin, request.headers.get("Host")):
        logger.warning("csrf_origin_rejected", origin=origin, path=request.url.path)
        raise CSRFValidationError(origin)


# ============================================================================
# Rate limiting
# ============================================================================


def rate_limit(limiter: RateLimiter, action: str) -> Callable[..., Awaitable[None]]:
    """
    Dependency factory throttling by session user, falling back to client IP.

    Usage:
        @router.post(
            "/increment-dice-roll",
            dependencies=[Depends(rate_limit(mutation_rate_limiter, "dice roll"))],
        )
    """

    async def _check(
        request: Request,
        resolver: SessionResolver = Depends(get_session_resolver),
    ) -> None:
        user_id = resolver.resolve(request)
        key = str(user_id) if user_id is not None else client_ip(request)
        if not limiter.is_allowed(key):
            metrics.record_rate_limited(limiter.name)
            logger.warning("rate_limited", limiter=limiter.name, action=action, key=key)
            raise RateLimitExceededError(action, limiter.retry_after(key))

    return _check


# ============================================================================
# Admin
# ============================================================================


async def require_admin_token(
    x_admin_token: str | None = Header(None, description="Admin maintenance token"),
) -> None:
    """Guard for maintenance endpoints (reward processing, counter resets)."""
    expected = settings.admin_api_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("admin_token_rejected", token_present=bool(x_admin_token))
        raise AuthenticationError("Invalid admin token")


# ============================================================================
# Services
# ============================================================================


def get_relay(connection: HTTPConnection) -> ChatRelay:
    """The process-wide chat relay stored on the application."""
    return connection.app.state.relay  # type: ignore[no-any-return]


def get_audio_validator() -> AudioValidator:
    return AudioValidator()


def get_audio_storage() -> AudioStorage:
    return AudioStorage()


def get_stripe_provider() -> StripeProvider:
    return StripeProvider(settings.stripe_api_key, settings.stripe_webhook_secret)
