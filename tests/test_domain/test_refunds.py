"""Tests for refund arithmetic."""

from __future__ import annotations

from decimal import Decimal

from pay2start.domain.enums import RefundStatus
from pay2start.domain.refunds import (
    RefundResult,
    amounts_match,
    fee_share,
    from_cents,
    refund_amount,
    to_cents,
)


class TestCents:
    def test_to_cents_rounds_half_up(self) -> None:
        assert to_cents(Decimal("85.005")) == 8501
        assert to_cents(Decimal("100")) == 10000

    def test_from_cents(self) -> None:
        assert from_cents(18500) == Decimal("185.00")


class TestFeeSplit:
    def test_even_split(self) -> None:
        share = fee_share(Decimal("30"), 2)
        assert share == Decimal("15")
        assert refund_amount(Decimal("100"), share) == Decimal("85")
        assert refund_amount(Decimal("200"), share) == Decimal("185")

    def test_fee_exceeding_payment_floors_at_zero(self) -> None:
        assert refund_amount(Decimal("50"), Decimal("60")) == Decimal("0")

    def test_uneven_split_is_rounded_to_cents(self) -> None:
        share = fee_share(Decimal("10"), 3)
        assert share == Decimal("3.33")
        refund = refund_amount(Decimal("100"), share)
        assert refund == Decimal("96.67")
        assert to_cents(refund) == 9667
        assert from_cents(to_cents(refund)) == refund

    def test_no_fee_or_no_payments(self) -> None:
        assert fee_share(Decimal("0"), 3) == Decimal("0")
        assert fee_share(Decimal("30"), 0) == Decimal("0")


class TestAmountsMatch:
    def test_within_one_cent(self) -> None:
        assert amounts_match(Decimal("250.00"), Decimal("250.01"))
        assert not amounts_match(Decimal("250.00"), Decimal("250.02"))


class TestRefundResult:
    def test_metadata_is_json_safe(self) -> None:
        result = RefundResult(
            payment_id="p1",
            original_amount=Decimal("100"),
            actual_refund_amount=Decimal("85"),
            status=RefundStatus.REFUNDED,
            cancellation_fee_applied=Decimal("15"),
        )
        data = result.to_metadata()
        assert data["status"] == "refunded"
        assert data["actual_refund_amount"] == "85"
        assert result.is_success and not result.is_failure
