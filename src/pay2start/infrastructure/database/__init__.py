"""Database infrastructure: engine, ORM models, and repositories."""

from pay2start.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from pay2start.infrastructure.database.orm_models import (
    Base,
    Client,
    Contract,
    ContractEvent,
    Contractor,
    Payment,
    Signature,
    SigningAttempt,
)
from pay2start.infrastructure.database.repositories import (
    ClientRepository,
    ContractorRepository,
    ContractRepository,
    EventRepository,
    PaymentRepository,
    SignatureRepository,
    SigningAttemptRepository,
)

__all__ = [
    "Base",
    "Client",
    "Contract",
    "ContractEvent",
    "Contractor",
    "Payment",
    "Signature",
    "SigningAttempt",
    "ClientRepository",
    "ContractorRepository",
    "ContractRepository",
    "EventRepository",
    "PaymentRepository",
    "SignatureRepository",
    "SigningAttemptRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
