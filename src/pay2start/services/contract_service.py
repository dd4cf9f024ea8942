"""Contract Service: contractor-side operations on a single contract.

Coordinates the lifecycle state machine, repositories, and the audit trail
for sending contracts out, managing the signing-link password, and reading
the event log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pay2start.domain.enums import ActorType, ContractStatus, EventType
from pay2start.domain.exceptions import (
    ContractNotFoundError,
    InvalidStateTransitionError,
    MalformedInputError,
)
from pay2start.domain.state_machine import ContractStateMachine
from pay2start.domain.tokens import generate_token, hash_token, token_expiry
from pay2start.infrastructure.database.repositories import (
    ClientRepository,
    ContractRepository,
    EventRepository,
)
from pay2start.logging_config import get_logger
from pay2start.services.audit import AuditTrail
from pay2start.services.passwords import MIN_PASSWORD_LENGTH, hash_password

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.config import Settings
    from pay2start.infrastructure.database.orm_models import (
        Client,
        Contract,
        ContractEvent,
        Contractor,
    )

logger = get_logger(__name__)


@dataclass
class SentContract:
    """A freshly issued signing link. The raw token exists only here."""

    contract: Contract
    client: Client | None
    signing_url: str
    expires_at: datetime


class ContractService:
    """Contractor operations, always scoped to the calling contractor."""

    def __init__(self, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings
        self._contract_repo = ContractRepository(session)
        self._client_repo = ClientRepository(session)
        self._event_repo = EventRepository(session)
        self._audit = AuditTrail(session)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_contract(self, contract_id: uuid.UUID, contractor: Contractor) -> SentContract:
        """Issue a new one-time signing link and move the contract to sent.

        Re-sending a contract that is already sent replaces its link; the old
        one stops resolving.
        """
        contract = await self.get_owned_contract(contract_id, contractor)
        self._fire_transition(contract, "send_for_signature")

        token = generate_token()
        now = datetime.now(UTC)
        expires_at = token_expiry(self._settings.signing_token_expiry_days, now)
        await self._contract_repo.issue_signing_token(
            contract,
            token_hash=hash_token(token, self._settings.signing_token_secret),
            expires_at=expires_at,
        )
        contract.sent_at = now
        await self._contract_repo.update_status(contract, ContractStatus.SENT)

        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.SENT,
            actor_type=ActorType.CONTRACTOR,
            actor_id=str(contractor.id),
            metadata={"expiresAt": expires_at.isoformat()},
        )

        logger.info(
            "contract.sent",
            contract_id=str(contract.id),
            expires_at=expires_at.isoformat(),
        )
        return SentContract(
            contract=contract,
            client=await self._client_repo.get_by_id(contract.client_id),
            signing_url=f"{self._settings.app_base_url.rstrip('/')}/sign/{token}",
            expires_at=expires_at,
        )

    # ------------------------------------------------------------------
    # Password
    # ------------------------------------------------------------------

    async def set_password(
        self,
        contract_id: uuid.UUID,
        contractor: Contractor,
        password: str,
    ) -> Contract:
        password = password.strip()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise MalformedInputError(
                message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                code="PASSWORD_TOO_SHORT",
            )
        contract = await self.get_owned_contract(contract_id, contractor)
        await self._contract_repo.set_password_hash(contract, hash_password(password))
        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.PASSWORD_CHANGED,
            actor_type=ActorType.CONTRACTOR,
            actor_id=str(contractor.id),
            metadata={"passwordProtected": True},
        )
        logger.info("contract.password_set", contract_id=str(contract.id))
        return contract

    async def remove_password(self, contract_id: uuid.UUID, contractor: Contractor) -> Contract:
        contract = await self.get_owned_contract(contract_id, contractor)
        await self._contract_repo.set_password_hash(contract, None)
        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.PASSWORD_CHANGED,
            actor_type=ActorType.CONTRACTOR,
            actor_id=str(contractor.id),
            metadata={"passwordProtected": False},
        )
        logger.info("contract.password_removed", contract_id=str(contract.id))
        return contract

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_events(self, contract_id: uuid.UUID, contractor: Contractor) -> list[ContractEvent]:
        """Get audit trail."""
        contract = await self.get_owned_contract(contract_id, contractor)
        return await self._event_repo.get_by_contract(contract.id)

    async def get_owned_contract(self, contract_id: uuid.UUID, contractor: Contractor) -> Contract:
        contract = await self._contract_repo.get_by_id(contract_id)
        if contract is None or contract.contractor_id != contractor.id:
            raise ContractNotFoundError(str(contract_id))
        return contract

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fire_transition(self, contract: Contract, event_name: str) -> None:
        """Validate a state machine transition.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        from statemachine.exceptions import TransitionNotAllowed

        sm = ContractStateMachine(current_status=contract.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(contract.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(contract.status, event_name) from err
