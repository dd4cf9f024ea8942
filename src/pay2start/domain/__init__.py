"""Domain layer: pure business logic with zero framework dependencies."""

from pay2start.domain.enums import (
    ActorType,
    ContractStatus,
    EventType,
    PaymentStatus,
    PaymentType,
    RefundOption,
    RefundStatus,
)
from pay2start.domain.exceptions import (
    ContractNotFoundError,
    InvalidStateTransitionError,
    Pay2StartError,
    SigningLinkError,
)
from pay2start.domain.refunds import RefundResult
from pay2start.domain.state_machine import (
    ContractStateMachine,
    validate_transition,
)
from pay2start.domain.tokens import (
    AccessDecision,
    AccessMode,
    HashMatch,
    NoMatch,
    RawMatch,
    TokenMatch,
    decide_access,
)

__all__ = [
    "ActorType",
    "ContractStatus",
    "EventType",
    "PaymentStatus",
    "PaymentType",
    "RefundOption",
    "RefundStatus",
    "ContractNotFoundError",
    "InvalidStateTransitionError",
    "Pay2StartError",
    "SigningLinkError",
    "RefundResult",
    "ContractStateMachine",
    "validate_transition",
    "AccessDecision",
    "AccessMode",
    "HashMatch",
    "NoMatch",
    "RawMatch",
    "TokenMatch",
    "decide_access",
]
