"""HTTP tests for the Stripe webhook receiver and the health check."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pay2start.domain.enums import ContractStatus, PaymentStatus

WEBHOOK_URL = "/api/v1/webhooks/stripe"


def _signed(payload: dict[str, Any], secret: str = "whsec_test") -> tuple[bytes, dict[str, str]]:
    """Serialize an event and build the matching stripe-signature header."""
    body = json.dumps(payload)
    timestamp = int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    headers = {"stripe-signature": f"t={timestamp},v1={digest}", "content-type": "application/json"}
    return body.encode("utf-8"), headers


def _deposit_event(contract_id: Any, event_id: str = "evt_http_1") -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_checkout",
                "object": "checkout.session",
                "mode": "payment",
                "payment_status": "paid",
                "amount_total": 25000,
                "payment_intent": "pi_test_123",
                "metadata": {"contract_id": str(contract_id), "type": "deposit"},
            }
        },
    }


class TestStripeWebhook:
    @pytest.mark.asyncio
    async def test_missing_signature_is_400(self, api) -> None:
        response = await api.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_SIGNATURE"

    @pytest.mark.asyncio
    async def test_bad_signature_is_400(self, api, session, make_contract) -> None:
        contract = await make_contract(ContractStatus.SIGNED, deposit="250")
        await session.commit()
        body, headers = _signed(_deposit_event(contract.id), secret="whsec_someone_else")

        response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Webhook verification failed"
        await session.refresh(contract)
        assert contract.status == ContractStatus.SIGNED.value

    @pytest.mark.asyncio
    async def test_secret_not_configured_is_500(self, api, settings) -> None:
        settings.stripe_webhook_secret = ""

        response = await api.post(WEBHOOK_URL, content=b"{}", headers={"stripe-signature": "t=1"})

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_deposit_marks_contract_paid(
        self, api, session, make_contract, make_payment
    ) -> None:
        contract = await make_contract(ContractStatus.SIGNED, deposit="250")
        pending = await make_payment(
            contract, "250", status=PaymentStatus.PENDING, payment_intent_id="cs_test_checkout"
        )
        await session.commit()
        body, headers = _signed(_deposit_event(contract.id))

        response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        await session.refresh(contract)
        await session.refresh(pending)
        assert contract.status == ContractStatus.PAID.value
        assert pending.status == PaymentStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_handler_failure_is_still_acknowledged(self, api) -> None:
        event = _deposit_event("not-a-uuid")
        event["data"]["object"]["metadata"] = {}
        body, headers = _signed(event)

        response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True}

    @pytest.mark.asyncio
    async def test_duplicate_event(self, api) -> None:
        body, headers = _signed(
            {"id": "evt_dup", "object": "event", "type": "customer.created", "data": {"object": {}}}
        )

        with patch(
            "pay2start.services.webhook_service.check_idempotency",
            new=AsyncMock(return_value=True),
        ):
            response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True, "duplicate": True}

    @pytest.mark.asyncio
    async def test_event_is_remembered_after_commit(
        self, api, session, make_contract, make_payment
    ) -> None:
        contract = await make_contract(ContractStatus.SIGNED, deposit="250")
        await make_payment(
            contract, "250", status=PaymentStatus.PENDING, payment_intent_id="cs_test_checkout"
        )
        await session.commit()
        body, headers = _signed(_deposit_event(contract.id))

        with patch(
            "pay2start.services.webhook_service.set_idempotency", new=AsyncMock()
        ) as remember:
            response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        remember.assert_awaited_once_with("stripe_event:evt_http_1")

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_event_retryable(
        self, api, session, make_contract, make_payment
    ) -> None:
        contract = await make_contract(ContractStatus.SIGNED, deposit="250")
        await make_payment(
            contract, "250", status=PaymentStatus.PENDING, payment_intent_id="cs_test_checkout"
        )
        await session.commit()
        body, headers = _signed(_deposit_event(contract.id))

        with (
            patch(
                "pay2start.services.webhook_service.set_idempotency", new=AsyncMock()
            ) as remember,
            patch.object(
                AsyncSession, "commit", new=AsyncMock(side_effect=SQLAlchemyError("disk full"))
            ),
        ):
            response = await api.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 500
        remember.assert_not_awaited()
        await session.refresh(contract)
        assert contract.status == ContractStatus.SIGNED.value


class TestHealth:
    @pytest.mark.asyncio
    async def test_database_up_without_redis(self, api, engine) -> None:
        with patch("pay2start.infrastructure.database.engine.get_engine", return_value=engine):
            response = await api.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "healthy"
        assert body["redis"] == "disabled"
        assert body["status"] == "degraded"
