"""HTTP tests for the public signing-link routes."""

from __future__ import annotations

import pytest

from pay2start.domain.enums import ContractStatus
from pay2start.services.passwords import hash_password


class TestViewRoute:
    @pytest.mark.asyncio
    async def test_view_returns_camel_case_contract(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)
        await session.commit()

        response = await api.get(f"/api/v1/contracts/sign/{token}")

        assert response.status_code == 200
        body = response.json()
        assert body["contract"]["id"] == str(contract.id)
        assert body["contract"]["depositAmount"] == 250.0
        assert "signingTokenHash" not in body["contract"]
        assert "passwordHash" not in body["contract"]
        assert body["client"]["name"] == "Riley Homeowner"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_unknown_token_is_404(self, api) -> None:
        response = await api.get("/api/v1/contracts/sign/not-a-real-token")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "INVALID_SIGNING_LINK"
        assert set(body) == {"error", "message"}

    @pytest.mark.asyncio
    async def test_password_gate(self, api, session, make_contract, issue_link) -> None:
        contract = await make_contract(
            ContractStatus.SENT, password_hash=hash_password("open-sesame")
        )
        token = await issue_link(contract)
        await session.commit()

        missing = await api.get(f"/api/v1/contracts/sign/{token}")
        wrong = await api.get(f"/api/v1/contracts/sign/{token}", params={"password": "nope"})
        right = await api.get(
            f"/api/v1/contracts/sign/{token}", params={"password": "open-sesame"}
        )

        assert missing.status_code == 401
        assert missing.json()["error"] == "PASSWORD_REQUIRED"
        assert missing.json()["requiresPassword"] is True
        assert wrong.status_code == 401
        assert wrong.json()["error"] == "PASSWORD_INVALID"
        assert right.status_code == 200

    @pytest.mark.asyncio
    async def test_rate_limit_after_max_attempts(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await session.commit()

        for _ in range(5):
            assert (await api.get(f"/api/v1/contracts/sign/{token}")).status_code == 200
        blocked = await api.get(f"/api/v1/contracts/sign/{token}")

        assert blocked.status_code == 404
        assert blocked.json()["error"] == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_rotating_forwarded_for_does_not_reset_limit(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await session.commit()

        for attempt in range(5):
            spoofed = {"X-Forwarded-For": f"203.0.113.{attempt}"}
            response = await api.get(f"/api/v1/contracts/sign/{token}", headers=spoofed)
            assert response.status_code == 200
        blocked = await api.get(
            f"/api/v1/contracts/sign/{token}", headers={"X-Forwarded-For": "203.0.113.99"}
        )

        assert blocked.json()["error"] == "RATE_LIMITED"


class TestSignRoute:
    @pytest.mark.asyncio
    async def test_sign_then_link_is_spent(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await session.commit()

        response = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True},
        )
        again = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["contract"]["status"] == ContractStatus.SIGNED.value
        assert body["contract"]["signingTokenUsedAt"] is not None
        assert body["checkoutUrl"] is None
        assert again.status_code == 404
        assert again.json()["error"] == "LINK_ALREADY_USED"

    @pytest.mark.asyncio
    async def test_deposit_returns_checkout_url(
        self, api, session, gateway, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)
        await session.commit()

        response = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True},
        )

        assert response.status_code == 200
        assert response.json()["checkoutUrl"] == (
            "https://checkout.stripe.test/c/pay/cs_test_checkout"
        )
        gateway.create_deposit_checkout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_oversized_body_is_413(
        self, api, session, settings, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await session.commit()
        settings.signing_max_body_bytes = 1024

        padding = "x" * 2048
        response = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True, "userAgent": padding},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "PAYLOAD_TOO_LARGE"

    @pytest.mark.asyncio
    async def test_must_agree(self, api, session, make_contract, issue_link) -> None:
        contract = await make_contract(ContractStatus.SENT)
        token = await issue_link(contract)
        await session.commit()

        response = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": False},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "MALFORMED_INPUT"
        await session.refresh(contract)
        assert contract.status == ContractStatus.SENT.value

    @pytest.mark.asyncio
    async def test_cancelled_contract_is_404(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.CANCELLED)
        token = await issue_link(contract)
        await session.commit()

        response = await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "CONTRACT_CANCELLED"


class TestCheckoutRoute:
    @pytest.mark.asyncio
    async def test_checkout_for_signed_contract(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)
        await session.commit()
        await api.post(
            f"/api/v1/contracts/sign/{token}",
            json={"fullName": "Riley Homeowner", "agree": True},
        )

        response = await api.post(f"/api/v1/contracts/sign/{token}/checkout")

        assert response.status_code == 200
        assert response.json() == {
            "sessionId": "cs_test_checkout",
            "url": "https://checkout.stripe.test/c/pay/cs_test_checkout",
        }

    @pytest.mark.asyncio
    async def test_unsigned_contract_is_rejected(
        self, api, session, make_contract, issue_link
    ) -> None:
        contract = await make_contract(ContractStatus.SENT, deposit="250")
        token = await issue_link(contract)
        await session.commit()

        response = await api.post(f"/api/v1/contracts/sign/{token}/checkout")

        assert response.status_code == 400
        assert response.json()["error"] == "NOT_SIGNED"
