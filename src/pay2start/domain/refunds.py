"""Refund arithmetic and per-payment refund outcomes.

Amounts are Decimal dollars everywhere inside the service. They become
integer cents only at the payment processor boundary (to_cents).

A cancellation fee is split evenly across the completed payments being
refunded, regardless of each payment's size. Each share is rounded to the
cent, so an uneven split can leave the total fee a cent or two off.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pay2start.domain.enums import RefundStatus

AMOUNT_EPSILON = Decimal("0.01")
CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_dollars(amount: Decimal) -> Decimal:
    """Round to whole cents, the precision the processor actually moves."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def amounts_match(a: Decimal, b: Decimal) -> bool:
    """Compare two dollar amounts with a one-cent tolerance."""
    return abs(to_decimal(a) - to_decimal(b)) <= AMOUNT_EPSILON


def fee_share(cancellation_fee: Decimal, completed_count: int) -> Decimal:
    """Portion of the cancellation fee charged against each completed payment."""
    if completed_count <= 0 or cancellation_fee <= 0:
        return ZERO
    return to_dollars(to_decimal(cancellation_fee) / completed_count)


def refund_amount(payment_amount: Decimal, share: Decimal) -> Decimal:
    """Payment amount less its fee share, floored at zero."""
    return max(ZERO, to_dollars(to_decimal(payment_amount) - to_decimal(share)))


@dataclass
class RefundResult:
    """Outcome of handling one payment (or one aggregate entry) during a void."""

    payment_id: str
    original_amount: Decimal
    actual_refund_amount: Decimal
    status: RefundStatus
    payment_type: str | None = None
    refund_id: str | None = None
    processor_status: str | None = None
    cancellation_fee_applied: Decimal = ZERO
    requires_manual_refund: bool = False
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (RefundStatus.REFUNDED, RefundStatus.ALREADY_REFUNDED)

    @property
    def is_failure(self) -> bool:
        return self.status in (
            RefundStatus.INTENT_NOT_FOUND,
            RefundStatus.REFUND_FAILED,
        )

    def to_metadata(self) -> dict[str, Any]:
        """JSON-safe dict for the audit event payload."""
        data = asdict(self)
        for key in ("original_amount", "actual_refund_amount", "cancellation_fee_applied"):
            data[key] = str(data[key])
        data["status"] = self.status.value
        return data
