"""Best-effort audit trail writes.

Each event is written inside a SAVEPOINT so that a failed insert rolls back
only the event, never the business change it describes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from pay2start.infrastructure.database.repositories import EventRepository
from pay2start.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.domain.enums import ActorType, EventType

logger = get_logger(__name__)


class AuditTrail:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._events = EventRepository(session)

    async def record(
        self,
        contract_id: uuid.UUID,
        event_type: EventType,
        actor_type: ActorType,
        actor_id: str | None = None,
        metadata: dict | None = None,
    ) -> bool:
        """Append an event. Returns False (and logs) if the write fails."""
        try:
            async with self._session.begin_nested():
                await self._events.record(
                    contract_id=contract_id,
                    event_type=event_type,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    metadata=metadata,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "audit.write_failed",
                contract_id=str(contract_id),
                event_type=event_type.value,
                error=str(exc),
            )
            return False
        return True
