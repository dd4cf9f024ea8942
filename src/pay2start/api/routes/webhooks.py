"""Stripe webhook endpoint.

Routes:
    POST   /api/v1/webhooks/stripe   Receive a signed Stripe event

Signature problems are rejected with 400 so Stripe surfaces them. Once the
signature checks out, the delivery is acknowledged with 200: a handler
error is logged, and retrying the same event would not fix it. Only a
failed commit answers 500, and the event id is not remembered until the
commit succeeds, so Stripe's retry is processed.
"""

from __future__ import annotations

import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pay2start.api.deps import get_app_settings, get_db_session, get_notifier
from pay2start.config import Settings
from pay2start.domain.exceptions import (
    DuplicateOperationError,
    InternalFailureError,
    MalformedInputError,
)
from pay2start.logging_config import get_logger
from pay2start.schemas.common import WebhookAckResponse
from pay2start.services.notification_service import NotificationService
from pay2start.services.payment_service import construct_webhook_event
from pay2start.services.webhook_service import WebhookService

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post(
    "/stripe",
    response_model=WebhookAckResponse,
    response_model_exclude_none=True,
    summary="Stripe webhook receiver",
)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str | None = Header(default=None),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    notifier: NotificationService = Depends(get_notifier),
) -> WebhookAckResponse:
    if not stripe_signature:
        raise MalformedInputError("Missing stripe-signature header", code="MISSING_SIGNATURE")
    if not settings.stripe_webhook_secret:
        logger.error("webhook.secret_not_configured")
        raise InternalFailureError("Webhook secret not configured")

    payload = await request.body()
    try:
        event = construct_webhook_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("webhook.verification_failed", error=str(exc))
        raise MalformedInputError(
            "Webhook verification failed", code="WEBHOOK_VERIFICATION_FAILED"
        ) from exc

    svc = WebhookService(session)
    try:
        outcome = await svc.handle_event(event)
    except DuplicateOperationError:
        return WebhookAckResponse(received=True, duplicate=True)

    if outcome.idempotency_key is not None:
        # A commit failure must leave the event retryable.
        await session.commit()
        await svc.mark_processed(outcome)

    if outcome.handled and outcome.contractor is not None and outcome.amount is not None:
        background_tasks.add_task(
            notifier.payment_received,
            contractor_email=outcome.contractor.email,
            contractor_name=outcome.contractor.name,
            client_name=outcome.client.name if outcome.client else "Your client",
            contract_title=outcome.contract.title,
            amount=outcome.amount,
        )

    logger.info(
        "webhook.received",
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        handled=outcome.handled,
    )
    return WebhookAckResponse(received=True)
