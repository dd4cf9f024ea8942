"""Tests for the SigningService: the signing-link guard and signature submission.

Runs against in-memory SQLite with a mocked payment gateway.
"""

from __future__ import annotations

import base64
import json
from datetime import timedelta
from urllib.parse import quote

import pytest

from pay2start.domain.enums import ContractStatus, EventType, PaymentStatus, PaymentType
from pay2start.domain.exceptions import (
    ContractCancelledError,
    InvalidStateError,
    MalformedInputError,
    PasswordInvalidError,
    PasswordRequiredError,
    PayloadTooLargeError,
    ProcessorError,
    RateLimitedError,
    SigningLinkInvalidError,
    SigningLinkUsedError,
    TokenExpiredError,
)
from pay2start.infrastructure.database.repositories import (
    EventRepository,
    PaymentRepository,
    SignatureRepository,
    SigningAttemptRepository,
)
from pay2start.services.passwords import hash_password
from pay2start.services.payment_service import CheckoutSession
from pay2start.services.signing_service import SigningService

TEST_IP = "203.0.113.7"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x01" * 64
SIGNATURE_PNG = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


def _body(**overrides) -> bytes:
    payload = {
        "fullName": "Riley Homeowner",
        "signatureDataUrl": SIGNATURE_PNG,
        "userAgent": "pytest-browser/1.0",
        "agree": True,
    }
    payload.update(overrides)
    return json.dumps(payload).encode()


@pytest.fixture
def service(session, settings, gateway) -> SigningService:
    return SigningService(session, settings, gateway)


# ============================================================
# Access guard
# ============================================================


class TestAccessGuard:
    @pytest.mark.asyncio
    async def test_valid_link_shows_contract_and_client(
        self, service, make_contract, issue_link, client
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        view = await service.view(token, TEST_IP)

        assert view.contract.id == contract.id
        assert view.client.id == client.id

    @pytest.mark.asyncio
    async def test_unknown_token_is_rejected_and_not_counted(
        self, service, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        for i in range(10):
            with pytest.raises(SigningLinkInvalidError):
                await service.view(f"no-such-token-{i}", TEST_IP)

        assert await SigningAttemptRepository(session).count_recent(TEST_IP, 15) == 0
        # Still under the limit, so the real link opens.
        view = await service.view(token, TEST_IP)
        assert view.contract.id == contract.id

    @pytest.mark.asyncio
    async def test_rate_limit_rejects_even_a_valid_token(
        self, service, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        attempts = SigningAttemptRepository(session)
        for _ in range(5):
            await attempts.record(TEST_IP, success=False, contract_id=contract.id)

        with pytest.raises(RateLimitedError):
            await service.view(token, TEST_IP)

        # The rejection itself is logged as another failed attempt.
        assert await attempts.count_recent(TEST_IP, 15) == 6
        # Other callers are unaffected.
        view = await service.view(token, "198.51.100.20")
        assert view.contract.id == contract.id

    @pytest.mark.asyncio
    async def test_successful_views_consume_the_window(
        self, service, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        for _ in range(5):
            await service.view(token, TEST_IP)

        with pytest.raises(RateLimitedError):
            await service.view(token, TEST_IP)

    @pytest.mark.asyncio
    async def test_expired_link(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract, expires_in=timedelta(hours=-1))

        with pytest.raises(TokenExpiredError):
            await service.view(token, TEST_IP)

    @pytest.mark.asyncio
    async def test_cancelled_contract(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.CANCELLED)
        token = await issue_link(contract)

        with pytest.raises(ContractCancelledError):
            await service.view(token, TEST_IP)

    @pytest.mark.asyncio
    async def test_legacy_raw_token_is_matched_url_decoded(self, service, make_contract) -> None:
        contract = await make_contract(ContractStatus.SENT, signing_token="legacy token/42")

        view = await service.view(quote("legacy token/42", safe=""), TEST_IP)

        assert view.contract.id == contract.id


# ============================================================
# Password gate
# ============================================================


class TestPasswordGate:
    @pytest.mark.asyncio
    async def test_password_required_before_any_data(
        self, service, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(
            ContractStatus.SENT, password_hash=hash_password("open-sesame")
        )
        token = await issue_link(contract)

        with pytest.raises(PasswordRequiredError) as exc_info:
            await service.view(token, TEST_IP)
        assert exc_info.value.extra == {"requiresPassword": True}

        with pytest.raises(PasswordInvalidError):
            await service.view(token, TEST_IP, password="wrong")

        view = await service.view(token, TEST_IP, password="open-sesame")
        assert view.contract.id == contract.id

    @pytest.mark.asyncio
    async def test_password_checked_on_submit(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(
            ContractStatus.SENT, password_hash=hash_password("open-sesame")
        )
        token = await issue_link(contract)

        with pytest.raises(PasswordRequiredError):
            await service.sign(token, TEST_IP, _body())

        outcome = await service.sign(token, TEST_IP, _body(password="open-sesame"))
        assert outcome.contract.status == ContractStatus.SIGNED.value


# ============================================================
# Signature submission
# ============================================================


class TestSign:
    @pytest.mark.asyncio
    async def test_sign_marks_contract_and_link(
        self, service, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        outcome = await service.sign(token, TEST_IP, _body())

        assert outcome.contract.status == ContractStatus.SIGNED.value
        assert outcome.contract.signed_at is not None
        assert outcome.contract.signing_token_used_at is not None
        assert outcome.checkout_url is None

        signatures = await SignatureRepository(session).get_by_contract(contract.id)
        assert len(signatures) == 1
        assert signatures[0].full_name == "Riley Homeowner"
        assert signatures[0].user_agent == "pytest-browser/1.0"

        events = await EventRepository(session).get_by_contract(contract.id)
        signed = [e for e in events if e.event_type == EventType.SIGNED.value]
        assert len(signed) == 1
        assert signed[0].metadata_json["hasSignatureImage"] is True

    @pytest.mark.asyncio
    async def test_link_is_one_time(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await service.sign(token, TEST_IP, _body())

        with pytest.raises(SigningLinkUsedError):
            await service.sign(token, TEST_IP, _body())

        # The signed document can still be opened with the same link.
        view = await service.view(token, TEST_IP)
        assert view.contract.status == ContractStatus.SIGNED.value

    @pytest.mark.asyncio
    async def test_deposit_creates_checkout_and_pending_payment(
        self, service, session, gateway, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)

        outcome = await service.sign(token, TEST_IP, _body())

        assert outcome.checkout_url == "https://checkout.stripe.test/c/pay/cs_test_checkout"
        kwargs = gateway.create_deposit_checkout.await_args.kwargs
        assert kwargs["success_url"].startswith(f"https://app.pay2start.test/sign/{token}/complete")
        assert kwargs["cancel_url"] == f"https://app.pay2start.test/sign/{token}?canceled=1"

        payments = await PaymentRepository(session).get_by_contract(contract.id)
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.PENDING.value
        assert payments[0].payment_type == PaymentType.DEPOSIT.value
        assert payments[0].payment_intent_id == "cs_test_checkout"

    @pytest.mark.asyncio
    async def test_checkout_failure_does_not_fail_signing(
        self, service, gateway, make_contract, issue_link
    ) -> None:
        gateway.create_deposit_checkout.side_effect = ProcessorError("card network unavailable")
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)

        outcome = await service.sign(token, TEST_IP, _body())

        assert outcome.contract.status == ContractStatus.SIGNED.value
        assert outcome.checkout_url is None

    @pytest.mark.asyncio
    async def test_body_over_ceiling(self, session, settings, make_contract, issue_link) -> None:
        small = settings.model_copy(update={"signing_max_body_bytes": 64})
        service = SigningService(session, small)
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        with pytest.raises(PayloadTooLargeError):
            await service.sign(token, TEST_IP, _body())

    @pytest.mark.asyncio
    async def test_must_agree(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        with pytest.raises(MalformedInputError) as exc_info:
            await service.sign(token, TEST_IP, _body(agree=False))
        assert exc_info.value.extra["errors"]

    @pytest.mark.asyncio
    async def test_invalid_json(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        with pytest.raises(MalformedInputError) as exc_info:
            await service.sign(token, TEST_IP, b"{not json")
        assert exc_info.value.code == "INVALID_JSON"

    @pytest.mark.asyncio
    async def test_bad_signature_image_leaves_contract_unsigned(
        self, service, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)

        with pytest.raises(MalformedInputError):
            await service.sign(token, TEST_IP, _body(signatureDataUrl="data:image/png;base64,###"))
        assert contract.status == ContractStatus.SENT.value
        assert contract.signing_token_used_at is None

    @pytest.mark.asyncio
    async def test_already_signed_contract_without_used_link(
        self, service, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SIGNED)
        token = await issue_link(contract)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.sign(token, TEST_IP, _body())
        assert exc_info.value.code == "NOT_SIGNABLE"


# ============================================================
# Deposit checkout after signing
# ============================================================


class TestCreateCheckout:
    @pytest.mark.asyncio
    async def test_restart_reuses_pending_deposit(
        self, service, session, gateway, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)
        await service.sign(token, TEST_IP, _body())

        gateway.create_deposit_checkout.return_value = CheckoutSession(
            id="cs_test_retry", url="https://checkout.stripe.test/retry"
        )
        checkout = await service.create_checkout(token, TEST_IP)

        assert checkout.id == "cs_test_retry"
        payments = await PaymentRepository(session).get_by_contract(contract.id)
        assert [p.payment_intent_id for p in payments] == ["cs_test_retry"]

    @pytest.mark.asyncio
    async def test_requires_signed_contract(self, service, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.create_checkout(token, TEST_IP)
        assert exc_info.value.code == "NOT_SIGNED"
