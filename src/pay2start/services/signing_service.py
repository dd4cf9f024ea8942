"""Signing Service: the public signing-link flow.

Every request against a signing link goes through verify_access():

    1. Resolve the token (legacy raw column, then keyed hash, then the same
       two lookups on the URL-decoded token).
    2. Count the caller's recent attempts.
    3. decide_access() turns both into an allow/deny decision.
    4. The attempt is recorded (or not) as the decision says, then committed
       so a rejection's rollback cannot erase it.

The password gate runs after that and before any contract field leaves the
service. Submitting a signature then validates the payload, stores the
signature, and flips the contract to signed and the link to used in one
conditional UPDATE.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from pydantic import ValidationError

from pay2start.domain.enums import (
    SIGNABLE_STATUSES,
    ActorType,
    ContractStatus,
    EventType,
    PaymentStatus,
    PaymentType,
)
from pay2start.domain.exceptions import (
    ClientNotFoundError,
    InvalidStateError,
    MalformedInputError,
    PasswordInvalidError,
    PasswordRequiredError,
    PayloadTooLargeError,
    ProcessorError,
    SigningLinkUsedError,
)
from pay2start.domain.signatures import (
    contract_content_hash,
    decode_signature_data_url,
    sanitize_full_name,
)
from pay2start.domain.tokens import (
    AccessMode,
    HashMatch,
    NoMatch,
    RawMatch,
    TokenMatch,
    decide_access,
    hash_token,
    verify_token,
)
from pay2start.infrastructure.database.orm_models import Payment, Signature
from pay2start.infrastructure.database.repositories import (
    ClientRepository,
    ContractorRepository,
    ContractRepository,
    PaymentRepository,
    SignatureRepository,
    SigningAttemptRepository,
)
from pay2start.logging_config import get_logger
from pay2start.schemas.contracts import SignContractRequest
from pay2start.services.audit import AuditTrail
from pay2start.services.passwords import verify_password

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.config import Settings
    from pay2start.infrastructure.database.orm_models import Client, Contract, Contractor
    from pay2start.services.payment_service import CheckoutSession, PaymentGateway

logger = get_logger(__name__)


@dataclass
class SigningView:
    contract: Contract
    client: Client | None


@dataclass
class SigningOutcome:
    """Result of a successful signature, plus what the notifications need."""

    contract: Contract
    client: Client | None
    contractor: Contractor | None
    checkout_url: str | None


class SigningService:
    """Guards and executes the public signing-link endpoints."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        gateway: PaymentGateway | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._gateway = gateway
        self._contract_repo = ContractRepository(session)
        self._attempt_repo = SigningAttemptRepository(session)
        self._signature_repo = SignatureRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._client_repo = ClientRepository(session)
        self._contractor_repo = ContractorRepository(session)
        self._audit = AuditTrail(session)

    # ------------------------------------------------------------------
    # Token resolution and access guard
    # ------------------------------------------------------------------

    async def resolve_token_match(self, token: str) -> TokenMatch:
        """Look the token up as presented, then once more URL-decoded."""
        token_match = await self._lookup(token)
        if isinstance(token_match, NoMatch):
            decoded = unquote(token)
            if decoded != token:
                token_match = await self._lookup(decoded)
        return token_match

    async def _lookup(self, token: str) -> TokenMatch:
        contract = await self._contract_repo.get_by_signing_token(token)
        if contract is not None:
            return RawMatch(contract)

        secret = self._settings.signing_token_secret
        contract = await self._contract_repo.get_by_signing_token_hash(hash_token(token, secret))
        if contract is not None:
            verified = verify_token(token, contract.signing_token_hash, secret)
            return HashMatch(contract, verified=verified)
        return NoMatch()

    async def verify_access(self, token: str, ip_address: str, mode: AccessMode) -> Contract:
        """Run the signing-link guard and return the contract it unlocks.

        Raises:
            SigningLinkError: One of the specific rejection reasons.
        """
        token_match = await self.resolve_token_match(token)
        recent = await self._attempt_repo.count_recent(
            ip_address, self._settings.signing_rate_limit_window_minutes
        )
        decision = decide_access(
            token_match,
            mode=mode,
            recent_attempts=recent,
            max_attempts=self._settings.signing_rate_limit_max_attempts,
        )

        if decision.attempt_success is not None:
            await self._attempt_repo.record(
                ip_address=ip_address,
                success=decision.attempt_success,
                contract_id=decision.contract_id,
            )
            # Must outlive the rollback that follows a rejection.
            await self._session.commit()

        if not decision.allowed:
            logger.warning(
                "signing.access_denied",
                reason=decision.error.code,
                ip=ip_address,
                contract_id=str(decision.contract_id) if decision.contract_id else None,
                recent_attempts=recent,
                mode=mode.value,
            )
            raise decision.error

        return decision.contract

    @staticmethod
    def check_password(contract: Contract, password: str | None) -> None:
        """Password gate. No-op for contracts without a password."""
        if not contract.password_hash:
            return
        if not password:
            raise PasswordRequiredError()
        if not verify_password(password, contract.password_hash):
            logger.warning("signing.password_invalid", contract_id=str(contract.id))
            raise PasswordInvalidError()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    async def view(self, token: str, ip_address: str, password: str | None = None) -> SigningView:
        contract = await self.verify_access(token, ip_address, AccessMode.VIEW)
        self.check_password(contract, password)
        client = await self._client_repo.get_by_id(contract.client_id)
        logger.info("signing.viewed", contract_id=str(contract.id), status=contract.status)
        return SigningView(contract=contract, client=client)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def sign(self, token: str, ip_address: str, raw_body: bytes) -> SigningOutcome:
        """Validate and record a signature submitted through a signing link."""
        contract = await self.verify_access(token, ip_address, AccessMode.SUBMIT)

        if len(raw_body) > self._settings.signing_max_body_bytes:
            logger.warning(
                "signing.body_too_large",
                contract_id=str(contract.id),
                size=len(raw_body),
            )
            raise PayloadTooLargeError()

        body = self._parse_body(raw_body)
        password = body.pop("password", None)
        self.check_password(contract, password if isinstance(password, str) else None)

        if ContractStatus(contract.status) not in SIGNABLE_STATUSES:
            raise InvalidStateError(
                "Contract already signed or cannot be signed",
                code="NOT_SIGNABLE",
            )

        try:
            payload = SignContractRequest.model_validate(body)
        except ValidationError as err:
            logger.warning(
                "signing.payload_invalid",
                contract_id=str(contract.id),
                errors=err.errors(include_url=False, include_context=False),
            )
            raise MalformedInputError(
                errors=err.errors(include_url=False, include_context=False)
            ) from err

        full_name = sanitize_full_name(payload.full_name)
        if payload.signature_data_url:
            decode_signature_data_url(
                payload.signature_data_url, self._settings.signing_max_image_bytes
            )

        signer_ip = payload.ip or ip_address
        user_agent = payload.user_agent or "unknown"
        now = datetime.now(UTC)

        await self._signature_repo.create(
            Signature(
                contract_id=contract.id,
                client_id=contract.client_id,
                full_name=full_name,
                signature_image=payload.signature_data_url,
                ip_address=signer_ip,
                user_agent=user_agent,
                contract_hash=contract_content_hash(contract.content),
                signed_at=now,
            )
        )

        signed = await self._contract_repo.mark_signed(contract.id, now)
        if signed is None:
            # A concurrent submission consumed the link first.
            logger.warning("signing.race_lost", contract_id=str(contract.id))
            raise SigningLinkUsedError()

        await self._audit.record(
            contract_id=signed.id,
            event_type=EventType.SIGNED,
            actor_type=ActorType.CLIENT,
            actor_id=str(signed.client_id),
            metadata={
                "fullName": full_name,
                "ip": signer_ip,
                "userAgent": user_agent,
                "hasSignatureImage": bool(payload.signature_data_url),
            },
        )

        client = await self._client_repo.get_by_id(signed.client_id)
        contractor = await self._contractor_repo.get_by_id(signed.contractor_id)

        checkout_url = None
        if signed.deposit_amount and signed.deposit_amount > 0 and client is not None:
            try:
                checkout = await self.start_deposit_checkout(signed, client, token)
                checkout_url = checkout.url
            except ProcessorError as exc:
                # Signing stands; the client can start payment again from the signing page.
                logger.error(
                    "signing.checkout_failed",
                    contract_id=str(signed.id),
                    error=exc.message,
                )

        logger.info(
            "signing.signed",
            contract_id=str(signed.id),
            client_id=str(signed.client_id),
            has_signature_image=bool(payload.signature_data_url),
            deposit_required=bool(signed.deposit_amount and signed.deposit_amount > 0),
        )
        return SigningOutcome(
            contract=signed,
            client=client,
            contractor=contractor,
            checkout_url=checkout_url,
        )

    @staticmethod
    def _parse_body(raw_body: bytes) -> dict[str, Any]:
        try:
            body = json.loads(raw_body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as err:
            raise MalformedInputError("Request body must be valid JSON", code="INVALID_JSON") from err
        if not isinstance(body, dict):
            raise MalformedInputError("Request body must be a JSON object", code="INVALID_JSON")
        return body

    # ------------------------------------------------------------------
    # Deposit checkout
    # ------------------------------------------------------------------

    async def create_checkout(
        self,
        token: str,
        ip_address: str,
        password: str | None = None,
    ) -> CheckoutSession:
        """Start (or restart) deposit payment for a signed contract."""
        contract = await self.verify_access(token, ip_address, AccessMode.VIEW)
        self.check_password(contract, password)

        if ContractStatus(contract.status) is not ContractStatus.SIGNED:
            raise InvalidStateError("Contract must be signed before payment", code="NOT_SIGNED")
        if not contract.deposit_amount or contract.deposit_amount <= 0:
            raise InvalidStateError("Contract has no deposit to pay", code="NO_DEPOSIT")

        client = await self._client_repo.get_by_id(contract.client_id)
        if client is None:
            raise ClientNotFoundError(str(contract.client_id))

        return await self.start_deposit_checkout(contract, client, token)

    async def start_deposit_checkout(
        self,
        contract: Contract,
        client: Client,
        token: str,
    ) -> CheckoutSession:
        """Create a Checkout Session and the pending deposit payment it settles.

        A pending deposit left over from an abandoned checkout is re-pointed at
        the new session rather than duplicated.
        """
        if self._gateway is None:
            raise ProcessorError("Payment processing is not configured")

        base_url = self._settings.app_base_url.rstrip("/")
        checkout = await self._gateway.create_deposit_checkout(
            contract,
            client_email=client.email,
            success_url=f"{base_url}/sign/{token}/complete?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/sign/{token}?canceled=1",
        )

        pending = next(
            (
                p
                for p in await self._payment_repo.get_by_contract(contract.id)
                if p.status == PaymentStatus.PENDING.value
                and p.payment_type == PaymentType.DEPOSIT.value
            ),
            None,
        )
        if pending is not None:
            pending.payment_intent_id = checkout.id
            pending.amount = contract.deposit_amount
            await self._session.flush()
        else:
            await self._payment_repo.create(
                Payment(
                    contract_id=contract.id,
                    company_id=contract.company_id,
                    amount=contract.deposit_amount,
                    status=PaymentStatus.PENDING.value,
                    payment_type=PaymentType.DEPOSIT.value,
                    payment_intent_id=checkout.id,
                    metadata_json={"checkout_session_id": checkout.id},
                )
            )

        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.PAYMENT_INITIATED,
            actor_type=ActorType.CLIENT,
            actor_id=str(contract.client_id),
            metadata={
                "sessionId": checkout.id,
                "amount": str(contract.deposit_amount),
                "type": PaymentType.DEPOSIT.value,
            },
        )
        return checkout
