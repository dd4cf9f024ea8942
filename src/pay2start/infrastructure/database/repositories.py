"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from pay2start.domain.enums import ContractStatus, PaymentStatus
from pay2start.infrastructure.database.orm_models import (
    Client,
    Contract,
    ContractEvent,
    Contractor,
    Payment,
    Signature,
    SigningAttempt,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.domain.enums import ActorType, EventType


class ContractRepository:
    """Data access for contracts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, contract: Contract) -> Contract:
        self._session.add(contract)
        await self._session.flush()
        return contract

    async def get_by_id(self, contract_id: uuid.UUID) -> Contract | None:
        result = await self._session.execute(
            select(Contract).where(Contract.id == contract_id)
        )
        return result.scalar_one_or_none()

    async def get_by_signing_token(self, token: str) -> Contract | None:
        """Legacy lookup by the raw token column."""
        result = await self._session.execute(
            select(Contract).where(Contract.signing_token == token)
        )
        return result.scalar_one_or_none()

    async def get_by_signing_token_hash(self, token_hash: str) -> Contract | None:
        result = await self._session.execute(
            select(Contract).where(Contract.signing_token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        contract: Contract,
        new_status: ContractStatus,
    ) -> Contract:
        """Update the status of a contract (call AFTER state machine validation)."""
        contract.status = new_status.value
        contract.updated_at = datetime.now(UTC)
        await self._session.flush()
        return contract

    async def mark_signed(self, contract_id: uuid.UUID, signed_at: datetime) -> Contract | None:
        """Mark a contract signed and its signing link used in one statement.

        Matches only while the link is unused, so of two concurrent submissions
        exactly one gets a row back.
        """
        result = await self._session.execute(
            update(Contract)
            .where(
                Contract.id == contract_id,
                Contract.signing_token_used_at.is_(None),
                Contract.status.in_(
                    [ContractStatus.DRAFT.value, ContractStatus.READY.value, ContractStatus.SENT.value]
                ),
            )
            .values(
                status=ContractStatus.SIGNED.value,
                signed_at=signed_at,
                signing_token_used_at=signed_at,
            )
            .returning(Contract)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim_cancellation(self, contract_id: uuid.UUID) -> Contract | None:
        """Atomically move a contract to cancelled.

        Returns None if the contract is already cancelled or completed (or was
        moved there by a concurrent request).
        """
        result = await self._session.execute(
            update(Contract)
            .where(
                Contract.id == contract_id,
                Contract.status.not_in(
                    [ContractStatus.CANCELLED.value, ContractStatus.COMPLETED.value]
                ),
            )
            .values(status=ContractStatus.CANCELLED.value)
            .returning(Contract)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def issue_signing_token(
        self,
        contract: Contract,
        token_hash: str,
        expires_at: datetime,
    ) -> Contract:
        """Store a fresh signing-link hash, dropping any legacy raw token."""
        contract.signing_token = None
        contract.signing_token_hash = token_hash
        contract.signing_token_expires_at = expires_at
        contract.signing_token_used_at = None
        await self._session.flush()
        return contract

    async def set_password_hash(self, contract: Contract, password_hash: str | None) -> Contract:
        contract.password_hash = password_hash
        await self._session.flush()
        return contract


class PaymentRepository:
    """Data access for payments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, payment: Payment) -> Payment:
        self._session.add(payment)
        await self._session.flush()
        return payment

    async def get_by_contract(self, contract_id: uuid.UUID) -> list[Payment]:
        """Fetch all payments for a contract, oldest first."""
        result = await self._session.execute(
            select(Payment)
            .where(Payment.contract_id == contract_id)
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_by_intent_id(self, intent_or_session_id: str) -> Payment | None:
        result = await self._session.execute(
            select(Payment)
            .where(Payment.payment_intent_id == intent_or_session_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        payment: Payment,
        new_status: PaymentStatus,
    ) -> Payment:
        payment.status = new_status.value
        if new_status is PaymentStatus.COMPLETED and payment.completed_at is None:
            payment.completed_at = datetime.now(UTC)
        await self._session.flush()
        return payment


class SignatureRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, signature: Signature) -> Signature:
        self._session.add(signature)
        await self._session.flush()
        return signature

    async def get_by_contract(self, contract_id: uuid.UUID) -> list[Signature]:
        result = await self._session.execute(
            select(Signature)
            .where(Signature.contract_id == contract_id)
            .order_by(Signature.signed_at.asc())
        )
        return list(result.scalars().all())


class SigningAttemptRepository:
    """Append-and-count store behind signing-link rate limiting."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        ip_address: str,
        success: bool,
        contract_id: uuid.UUID | None = None,
    ) -> SigningAttempt:
        attempt = SigningAttempt(
            ip_address=ip_address,
            contract_id=contract_id,
            success=success,
        )
        self._session.add(attempt)
        await self._session.flush()
        return attempt

    async def count_recent(
        self,
        ip_address: str,
        window_minutes: int,
        now: datetime | None = None,
    ) -> int:
        """Count attempts from an IP inside the sliding window ending now."""
        window_start = (now or datetime.now(UTC)) - timedelta(minutes=window_minutes)
        result = await self._session.execute(
            select(func.count(SigningAttempt.id)).where(
                SigningAttempt.ip_address == ip_address,
                SigningAttempt.created_at >= window_start,
            )
        )
        return int(result.scalar_one())


class ContractorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, contractor_id: uuid.UUID) -> Contractor | None:
        result = await self._session.execute(
            select(Contractor).where(Contractor.id == contractor_id)
        )
        return result.scalar_one_or_none()

    async def get_by_api_key_hash(self, api_key_hash: str) -> Contractor | None:
        result = await self._session.execute(
            select(Contractor).where(Contractor.api_key_hash == api_key_hash)
        )
        return result.scalar_one_or_none()


class ClientRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, client_id: uuid.UUID) -> Client | None:
        result = await self._session.execute(select(Client).where(Client.id == client_id))
        return result.scalar_one_or_none()


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        contract_id: uuid.UUID,
        event_type: EventType,
        actor_type: ActorType,
        actor_id: str | None = None,
        metadata: dict | None = None,
    ) -> ContractEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = ContractEvent(
            contract_id=contract_id,
            event_type=event_type.value,
            actor_type=actor_type.value,
            actor_id=actor_id,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_contract(self, contract_id: uuid.UUID) -> list[ContractEvent]:
        """Fetch all events for a contract in chronological order."""
        result = await self._session.execute(
            select(ContractEvent)
            .where(ContractEvent.contract_id == contract_id)
            .order_by(ContractEvent.created_at.asc())
        )
        return list(result.scalars().all())
