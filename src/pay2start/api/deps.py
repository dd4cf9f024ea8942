"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the authenticated contractor, the payment gateway, the notifier, and
configuration.
"""

from __future__ import annotations

import hashlib
from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pay2start.config import Settings, get_settings
from pay2start.domain.exceptions import AuthenticationRequiredError
from pay2start.infrastructure.database.engine import get_async_session
from pay2start.infrastructure.database.orm_models import Contractor
from pay2start.infrastructure.database.repositories import ContractorRepository
from pay2start.logging_config import get_logger
from pay2start.services.notification_service import NotificationService
from pay2start.services.payment_service import PaymentGateway

logger = get_logger(__name__)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


@lru_cache(maxsize=1)
def _build_gateway(api_key: str, currency: str) -> PaymentGateway:
    return PaymentGateway(api_key=api_key, currency=currency)


def get_payment_gateway(
    settings: Settings = Depends(get_app_settings),
) -> PaymentGateway | None:
    """Provide the Stripe gateway, or None when no secret key is configured."""
    if not settings.stripe_secret_key:
        return None
    return _build_gateway(settings.stripe_secret_key, settings.stripe_currency)


def get_notifier(settings: Settings = Depends(get_app_settings)) -> NotificationService:
    return NotificationService(settings)


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


async def get_current_contractor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> Contractor:
    """Resolve the contractor from a `Bearer <api key>` header.

    Raises:
        AuthenticationRequiredError: Missing, malformed, or unknown key.
    """
    token = _extract_bearer_token(authorization)
    if token is None:
        raise AuthenticationRequiredError()
    contractor = await ContractorRepository(session).get_by_api_key_hash(hash_api_key(token))
    if contractor is None:
        logger.warning("auth.unknown_api_key")
        raise AuthenticationRequiredError()
    return contractor


def get_client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """Best-effort caller IP.

    Forwarding headers are client-controlled unless a proxy rewrites them, so
    they are read only when trust_proxy_headers is set. Otherwise the socket
    peer address is used.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"
