"""Webhook Service: reconciles Stripe events with local payments.

Handled event types:
    checkout.session.completed      completes the payment, advances the contract
    payment_intent.payment_failed   fails the oldest pending payment
    charge.refunded                 records the refund in the audit trail

Stripe retries deliveries, so every handler is idempotent. Event ids are
also remembered in Redis when it is available, but only once the caller
has committed the event's writes (see mark_processed). Each event is processed
inside a savepoint: a handler error rolls back only that event's writes and
is reported to the caller, which still acknowledges the delivery.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from pay2start.domain.enums import (
    ActorType,
    ContractStatus,
    EventType,
    PaymentStatus,
    PaymentType,
)
from pay2start.domain.exceptions import DuplicateOperationError, Pay2StartError
from pay2start.domain.refunds import ZERO, amounts_match, from_cents, to_decimal
from pay2start.domain.state_machine import ContractStateMachine
from pay2start.infrastructure.database.orm_models import Payment
from pay2start.infrastructure.database.repositories import (
    ClientRepository,
    ContractorRepository,
    ContractRepository,
    PaymentRepository,
)
from pay2start.infrastructure.redis_client import check_idempotency, set_idempotency
from pay2start.logging_config import get_logger
from pay2start.services.audit import AuditTrail

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.infrastructure.database.orm_models import Client, Contract, Contractor

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    handled: bool = False
    error: str | None = None
    contract: Contract | None = None
    contractor: Contractor | None = None
    client: Client | None = None
    amount: Decimal | None = None
    idempotency_key: str | None = None


def _contract_id_from(metadata: Mapping[str, Any] | None) -> uuid.UUID | None:
    metadata = metadata or {}
    raw = metadata.get("contract_id") or metadata.get("contractId")
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


def _object_id(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


class WebhookService:
    """Applies verified Stripe events to contracts and payments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._contract_repo = ContractRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._contractor_repo = ContractorRepository(session)
        self._client_repo = ClientRepository(session)
        self._audit = AuditTrail(session)

    async def handle_event(self, event: Mapping[str, Any]) -> WebhookOutcome:
        """Process one verified event.

        Raises:
            DuplicateOperationError: The event id was already processed.
        """
        event_id = event["id"]
        event_type = event["type"]
        idempotency_key = f"stripe_event:{event_id}"
        if await check_idempotency(idempotency_key):
            logger.info("webhook.duplicate_event", event_id=event_id, event_type=event_type)
            raise DuplicateOperationError(idempotency_key)

        outcome = WebhookOutcome(event_id=event_id, event_type=event_type)
        data_object = event["data"]["object"]
        handler = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            PAYMENT_FAILED: self._on_payment_failed,
            CHARGE_REFUNDED: self._on_charge_refunded,
        }.get(event_type)

        if handler is None:
            logger.debug("webhook.unhandled_type", event_id=event_id, event_type=event_type)
            return outcome

        try:
            async with self._session.begin_nested():
                await handler(data_object, outcome)
        except (Pay2StartError, SQLAlchemyError, KeyError, ValueError) as exc:
            logger.exception(
                "webhook.processing_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(exc),
            )
            outcome.handled = False
            outcome.error = str(exc)
            return outcome

        outcome.idempotency_key = idempotency_key
        return outcome

    async def mark_processed(self, outcome: WebhookOutcome) -> None:
        """Remember a processed event. Call only after its writes are committed."""
        if outcome.idempotency_key is None:
            return
        await set_idempotency(outcome.idempotency_key)

    # ------------------------------------------------------------------
    # checkout.session.completed
    # ------------------------------------------------------------------

    async def _on_checkout_completed(self, session_obj: Mapping[str, Any], outcome: WebhookOutcome) -> None:
        session_id = session_obj["id"]
        log = logger.bind(session_id=session_id)

        if session_obj.get("mode") != "payment":
            log.info("webhook.checkout_not_payment_mode", mode=session_obj.get("mode"))
            return

        metadata = session_obj.get("metadata") or {}
        contract_id = _contract_id_from(metadata)
        if contract_id is None:
            log.warning("webhook.checkout_missing_contract_id")
            return
        log = log.bind(contract_id=str(contract_id))

        existing = await self._payment_repo.get_by_intent_id(session_id)
        if existing is not None and existing.status == PaymentStatus.COMPLETED.value:
            log.info("webhook.checkout_already_processed", payment_id=str(existing.id))
            return

        if session_obj.get("payment_status") != "paid":
            log.info("webhook.checkout_not_paid", payment_status=session_obj.get("payment_status"))
            return

        contract = await self._contract_repo.get_by_id(contract_id)
        if contract is None:
            log.warning("webhook.checkout_contract_not_found")
            return
        if contract.status == ContractStatus.CANCELLED.value:
            # Money arrived for a voided contract; the contractor has to refund it by hand.
            log.error("webhook.payment_for_cancelled_contract")
            return

        try:
            payment_type = PaymentType(metadata.get("type") or PaymentType.DEPOSIT.value)
        except ValueError:
            log.warning("webhook.unknown_payment_type", payment_type=metadata.get("type"))
            payment_type = PaymentType.DEPOSIT

        amount = from_cents(int(session_obj.get("amount_total") or 0))
        if payment_type is PaymentType.DEPOSIT and not amounts_match(amount, contract.deposit_amount):
            log.error(
                "webhook.deposit_amount_mismatch",
                paid=str(amount),
                expected=str(contract.deposit_amount),
            )
            return

        payment_intent_id = _object_id(session_obj.get("payment_intent"))
        payment_metadata = {
            "checkout_session_id": session_id,
            "payment_intent_id": payment_intent_id,
            "type": payment_type.value,
        }
        if existing is not None:
            existing.amount = amount
            existing.metadata_json = {**(existing.metadata_json or {}), **payment_metadata}
            await self._payment_repo.update_status(existing, PaymentStatus.COMPLETED)
            payment = existing
        else:
            payment = await self._payment_repo.create(
                Payment(
                    contract_id=contract.id,
                    company_id=contract.company_id,
                    amount=amount,
                    status=PaymentStatus.COMPLETED.value,
                    payment_type=payment_type.value,
                    payment_intent_id=session_id,
                    metadata_json=payment_metadata,
                    completed_at=datetime.now(UTC),
                )
            )

        previous_status = contract.status
        await self._advance_contract(contract, payment_type)

        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.PAYMENT_COMPLETED,
            actor_type=ActorType.WEBHOOK,
            actor_id=session_id,
            metadata={
                "paymentId": str(payment.id),
                "amount": str(amount),
                "type": payment_type.value,
                "previousStatus": previous_status,
                "newStatus": contract.status,
            },
        )

        outcome.handled = True
        outcome.contract = contract
        outcome.amount = amount
        outcome.contractor = await self._contractor_repo.get_by_id(contract.contractor_id)
        outcome.client = await self._client_repo.get_by_id(contract.client_id)
        log.info(
            "webhook.payment_completed",
            payment_id=str(payment.id),
            amount=str(amount),
            payment_type=payment_type.value,
            status=contract.status,
        )

    async def _advance_contract(self, contract: Contract, payment_type: PaymentType) -> None:
        """Move a contract to paid and/or completed after a successful payment."""
        sm = ContractStateMachine(current_status=contract.status)
        now = datetime.now(UTC)

        if contract.status == ContractStatus.SIGNED.value and payment_type in (
            PaymentType.DEPOSIT,
            PaymentType.FULL_PAYMENT,
            PaymentType.INCREMENTAL_PAYMENT,
        ):
            sm.payment_received()
            contract.paid_at = now
            await self._contract_repo.update_status(contract, ContractStatus.PAID)

        if payment_type in (PaymentType.REMAINING_BALANCE, PaymentType.FULL_PAYMENT):
            payments = await self._payment_repo.get_by_contract(contract.id)
            total_completed = sum(
                (
                    to_decimal(p.amount)
                    for p in payments
                    if p.status == PaymentStatus.COMPLETED.value
                ),
                ZERO,
            )
            total = to_decimal(contract.total_amount)
            fully_paid = total > 0 and (
                total_completed >= total or amounts_match(total_completed, total)
            )
            if fully_paid and "complete" in sm.get_allowed_events():
                sm.complete()
                await self._contract_repo.update_status(contract, ContractStatus.COMPLETED)

    # ------------------------------------------------------------------
    # payment_intent.payment_failed
    # ------------------------------------------------------------------

    async def _on_payment_failed(self, intent: Mapping[str, Any], outcome: WebhookOutcome) -> None:
        contract_id = _contract_id_from(intent.get("metadata"))
        if contract_id is None:
            logger.warning("webhook.payment_failed_missing_contract_id", intent_id=intent.get("id"))
            return

        payments = await self._payment_repo.get_by_contract(contract_id)
        pending = next((p for p in payments if p.status == PaymentStatus.PENDING.value), None)
        if pending is None:
            logger.info("webhook.payment_failed_no_pending", contract_id=str(contract_id))
            return

        await self._payment_repo.update_status(pending, PaymentStatus.FAILED)
        error = intent.get("last_payment_error") or {}
        await self._audit.record(
            contract_id=contract_id,
            event_type=EventType.PAYMENT_FAILED,
            actor_type=ActorType.WEBHOOK,
            actor_id=intent.get("id"),
            metadata={
                "paymentId": str(pending.id),
                "reason": error.get("message"),
            },
        )
        outcome.handled = True
        logger.info(
            "webhook.payment_failed",
            contract_id=str(contract_id),
            payment_id=str(pending.id),
        )

    # ------------------------------------------------------------------
    # charge.refunded
    # ------------------------------------------------------------------

    async def _on_charge_refunded(self, charge: Mapping[str, Any], outcome: WebhookOutcome) -> None:
        contract_id = _contract_id_from(charge.get("metadata"))
        amount_refunded = from_cents(int(charge.get("amount_refunded") or 0))
        logger.info(
            "webhook.charge_refunded",
            charge_id=charge.get("id"),
            contract_id=str(contract_id) if contract_id else None,
            amount_refunded=str(amount_refunded),
        )
        if contract_id is None or await self._contract_repo.get_by_id(contract_id) is None:
            return

        await self._audit.record(
            contract_id=contract_id,
            event_type=EventType.REFUND_RECORDED,
            actor_type=ActorType.WEBHOOK,
            actor_id=charge.get("id"),
            metadata={
                "chargeId": charge.get("id"),
                "paymentIntentId": _object_id(charge.get("payment_intent")),
                "amountRefunded": str(amount_refunded),
                "fullyRefunded": bool(charge.get("refunded")),
            },
        )
        outcome.handled = True
