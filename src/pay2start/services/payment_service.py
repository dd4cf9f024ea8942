"""Payment gateway: Stripe Checkout, payment-intent lookup, and refunds.

The Stripe SDK is synchronous, so every call runs in a worker thread via
asyncio.to_thread. Amounts cross this boundary as Decimal dollars and are
converted to integer cents here and only here.

Stripe errors raised while refunding are mapped onto the domain taxonomy:
    charge already refunded        -> AlreadyRefundedError
    insufficient balance for refund -> InsufficientFundsError
    anything else                  -> ProcessorError
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import stripe

from pay2start.domain.exceptions import (
    AlreadyRefundedError,
    InsufficientFundsError,
    ProcessorError,
)
from pay2start.domain.refunds import to_cents
from pay2start.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from pay2start.infrastructure.database.orm_models import Contract

logger = get_logger(__name__)

_INSUFFICIENT_FUNDS_CODES = frozenset({"insufficient_funds", "balance_insufficient"})


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None


@dataclass(frozen=True)
class ResolvedCharge:
    """The payment intent behind a stored reference, and its latest charge."""

    payment_intent_id: str
    charge_id: str | None
    charge_status: str | None
    refunded: bool
    amount_refunded_cents: int = 0

    @property
    def succeeded(self) -> bool:
        return self.charge_id is not None and self.charge_status == "succeeded"


@dataclass(frozen=True)
class RefundReceipt:
    id: str
    status: str | None


def _field(obj: Any, name: str) -> Any:
    if obj is None or isinstance(obj, str):
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def map_refund_error(exc: stripe.StripeError) -> ProcessorError:
    """Translate a Stripe error raised by a refund call."""
    code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc)
    lowered = message.lower()
    if code == "charge_already_refunded" or "already been refunded" in lowered:
        return AlreadyRefundedError(message)
    if code in _INSUFFICIENT_FUNDS_CODES or "insufficient" in lowered:
        return InsufficientFundsError(message)
    return ProcessorError(message, processor_code=code)


class PaymentGateway:
    """Thin async adapter over stripe.StripeClient."""

    def __init__(
        self,
        api_key: str,
        currency: str = "usd",
        client: stripe.StripeClient | None = None,
    ) -> None:
        self._client = client or stripe.StripeClient(api_key)
        self._currency = currency

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_deposit_checkout(
        self,
        contract: Contract,
        client_email: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a hosted Checkout Session for the contract's deposit."""
        metadata = {
            "contract_id": str(contract.id),
            "contractId": str(contract.id),
            "company_id": str(contract.company_id),
            "type": "deposit",
        }
        params = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self._currency,
                        "product_data": {
                            "name": f"Deposit for {contract.title}",
                            "description": (
                                f"Contract deposit payment - Contract #{str(contract.id)[:8]}"
                            ),
                        },
                        "unit_amount": to_cents(contract.deposit_amount),
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": client_email,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "billing_address_collection": "auto",
        }
        try:
            session = await asyncio.to_thread(
                self._client.checkout.sessions.create, params=params
            )
        except stripe.StripeError as exc:
            raise ProcessorError(str(exc), processor_code=getattr(exc, "code", None)) from exc

        logger.info(
            "payment.checkout_created",
            contract_id=str(contract.id),
            session_id=session.id,
            amount=str(contract.deposit_amount),
        )
        return CheckoutSession(id=session.id, url=session.url)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def resolve_charge(self, reference: str) -> ResolvedCharge | None:
        """Resolve a stored payment reference to its payment intent and charge.

        The reference may be a Checkout Session id or a PaymentIntent id.
        The session interpretation is tried first. Returns None when neither
        lookup succeeds.
        """
        intent: Any = None
        try:
            session = await asyncio.to_thread(
                self._client.checkout.sessions.retrieve,
                reference,
                params={"expand": ["payment_intent", "payment_intent.latest_charge"]},
            )
            intent = _field(session, "payment_intent")
        except stripe.StripeError as exc:
            logger.debug("payment.session_lookup_failed", reference=reference, error=str(exc))

        if intent is None or isinstance(intent, str):
            intent_id = intent or reference
            try:
                intent = await asyncio.to_thread(
                    self._client.payment_intents.retrieve,
                    intent_id,
                    params={"expand": ["latest_charge"]},
                )
            except stripe.StripeError as exc:
                logger.warning("payment.intent_not_found", reference=reference, error=str(exc))
                return None

        charge = _field(intent, "latest_charge")
        if isinstance(charge, str):
            try:
                charge = await asyncio.to_thread(self._client.charges.retrieve, charge)
            except stripe.StripeError as exc:
                logger.warning("payment.charge_lookup_failed", charge_id=charge, error=str(exc))
                charge = None

        return ResolvedCharge(
            payment_intent_id=_field(intent, "id"),
            charge_id=_field(charge, "id"),
            charge_status=_field(charge, "status"),
            refunded=bool(_field(charge, "refunded")),
            amount_refunded_cents=int(_field(charge, "amount_refunded") or 0),
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal,
        metadata: dict[str, str],
    ) -> RefundReceipt:
        """Refund part or all of a payment intent.

        Raises:
            AlreadyRefundedError, InsufficientFundsError, ProcessorError
        """
        try:
            refund = await asyncio.to_thread(
                self._client.refunds.create,
                params={
                    "payment_intent": payment_intent_id,
                    "amount": to_cents(amount),
                    "metadata": metadata,
                },
            )
        except stripe.StripeError as exc:
            raise map_refund_error(exc) from exc

        logger.info(
            "payment.refund_created",
            payment_intent_id=payment_intent_id,
            refund_id=refund.id,
            amount=str(amount),
        )
        return RefundReceipt(id=refund.id, status=getattr(refund, "status", None))


def construct_webhook_event(payload: bytes, signature: str, secret: str) -> stripe.Event:
    """Verify a webhook signature and parse the event.

    Raises:
        ValueError: Malformed payload.
        stripe.SignatureVerificationError: Signature does not match.
    """
    return stripe.Webhook.construct_event(payload, signature, secret)
