"""Domain enumerations for Pay2Start.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ContractStatus(enum.StrEnum):
    """Lifecycle states of a contract.

    Transitions are guarded by ContractStateMachine (domain/state_machine.py).
    """

    DRAFT = "draft"
    READY = "ready"
    SENT = "sent"
    SIGNED = "signed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# A used signing link may still open the document in these states.
FINALIZED_STATUSES = frozenset(
    {ContractStatus.SIGNED, ContractStatus.PAID, ContractStatus.COMPLETED}
)

SIGNABLE_STATUSES = frozenset(
    {ContractStatus.DRAFT, ContractStatus.READY, ContractStatus.SENT}
)


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentType(enum.StrEnum):
    """How a payment relates to the contract's schedule.

    Stored on the payment row when it is created; never inferred from amounts.
    """

    DEPOSIT = "deposit"
    FULL_PAYMENT = "full_payment"
    INCREMENTAL_PAYMENT = "incremental_payment"
    REMAINING_BALANCE = "remaining_balance"


class RefundOption(enum.StrEnum):
    """What a contractor chooses to do with collected money when voiding."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"
    KEEP = "keep"


class RefundStatus(enum.StrEnum):
    """Outcome recorded for each payment (or aggregate) in a void operation."""

    REFUNDED = "refunded"
    ALREADY_REFUNDED = "already_refunded"
    FEE_EXCEEDS_PAYMENT = "fee_exceeds_payment"
    KEPT = "kept"
    MANUAL_REFUND_REQUIRED = "manual_refund_required"
    INTENT_NOT_FOUND = "intent_not_found"
    REFUND_FAILED = "refund_failed"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the contract_events table."""

    SENT = "sent"
    SIGNED = "signed"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_RECORDED = "refund_recorded"
    PAID = "paid"
    COMPLETED = "completed"
    VOIDED = "voided"
    PASSWORD_CHANGED = "password_changed"
    STATUS_CHANGED = "status_changed"


class ActorType(enum.StrEnum):
    CONTRACTOR = "contractor"
    CLIENT = "client"
    SYSTEM = "system"
    WEBHOOK = "webhook"
