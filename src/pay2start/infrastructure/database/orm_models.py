"""SQLAlchemy 2.0 ORM models for Pay2Start.

Tables:
    1. contractors        Dashboard users who own contracts (API-key authenticated).
    2. clients            The counterparties who receive signing links.
    3. contracts          The agreements, their signing-link state and amounts.
    4. payments           Money collected (or scheduled) against a contract.
    5. signatures         Client signature records, one per signing.
    6. signing_attempts   Append-only log used for sliding-window rate limiting.
    7. contract_events    Append-only audit log.

Design decisions:
    - UUIDs as primary keys (signing links and API responses never leak sequence).
    - Numeric(12, 2) for dollar amounts, mapped to Decimal.
    - Payment type is a column set when the payment is created.
    - JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
    - signing_attempts and contract_events are append-only at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. contractors
# ---------------------------------------------------------------------------
class Contractor(Base):
    __tablename__ = "contractors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    api_key_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
        comment="SHA-256 hex of the contractor's bearer API key",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_contractor_company", "company_id"),)

    def __repr__(self) -> str:
        return f"<Contractor id={self.id} company={self.company_id}>"


# ---------------------------------------------------------------------------
# 2. clients
# ---------------------------------------------------------------------------
class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Client id={self.id} email={self.email}>"


# ---------------------------------------------------------------------------
# 3. contracts
# ---------------------------------------------------------------------------
class Contract(Base):
    """A contract between a contractor's company and a client."""

    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Ownership ---
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False
    )

    # --- Content ---
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    field_values: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment="Template field values; may carry paymentSchedule / paymentScheduleConfig",
    )

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        comment="Current lifecycle state (guarded by ContractStateMachine)",
    )

    # --- Signing link ---
    signing_token: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Legacy raw token for contracts sent before hashing",
    )
    signing_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signing_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    signing_token_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set exactly once, in the same UPDATE that marks the contract signed",
    )
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Financials ---
    deposit_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )

    # --- Timestamps ---
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contractor_signed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'ready', 'sent', 'signed', 'paid', 'completed', 'cancelled')",
            name="ck_contract_valid_status",
        ),
        CheckConstraint("deposit_amount >= 0", name="ck_contract_deposit_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_contract_total_non_negative"),
        Index("idx_contract_contractor", "contractor_id"),
        Index("idx_contract_status", "status"),
        Index("idx_contract_signing_token_hash", "signing_token_hash", unique=True),
        Index("idx_contract_signing_token", "signing_token", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Contract id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. payments
# ---------------------------------------------------------------------------
class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="deposit",
        comment="PaymentType value, recorded when the payment is created",
    )
    payment_intent_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Stripe payment intent id, or a checkout session id awaiting resolution",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_payment_valid_status",
        ),
        CheckConstraint(
            "payment_type IN ('deposit', 'full_payment', 'incremental_payment', "
            "'remaining_balance')",
            name="ck_payment_valid_type",
        ),
        CheckConstraint("amount >= 0", name="ck_payment_non_negative"),
        Index("idx_payment_contract", "contract_id"),
        Index("idx_payment_intent", "payment_intent_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment id={self.id} contract={self.contract_id} "
            f"{self.payment_type} {self.amount} {self.status}>"
        )


# ---------------------------------------------------------------------------
# 5. signatures
# ---------------------------------------------------------------------------
class Signature(Base):
    __tablename__ = "signatures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    signature_image: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Signature image as submitted (data URL)"
    )
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)
    contract_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="SHA-256 of the contract content at signing"
    )
    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_signature_contract", "contract_id"),)


# ---------------------------------------------------------------------------
# 6. signing_attempts (append-only)
# ---------------------------------------------------------------------------
class SigningAttempt(Base):
    __tablename__ = "signing_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_attempt_ip_created", "ip_address", "created_at"),)


# ---------------------------------------------------------------------------
# 7. contract_events (append-only audit log)
# ---------------------------------------------------------------------------
class ContractEvent(Base):
    """Immutable audit record. No UPDATE or DELETE at the application level."""

    __tablename__ = "contract_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_contract", "contract_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<ContractEvent id={self.id} type={self.event_type}>"


event.listen(Contract, "before_update", _set_updated_at)
event.listen(Payment, "before_update", _set_updated_at)
