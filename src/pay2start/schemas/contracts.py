"""Pydantic schemas for contract, signing, and void endpoints.

Requests accept camelCase (what the dashboard and signing page send) as
well as snake_case. Responses are serialized as camelCase.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator

from pay2start.domain.enums import RefundOption
from pay2start.domain.signatures import MAX_NAME_LENGTH
from pay2start.schemas.common import CamelModel

# ---------------------------------------------------------------------------
# Shared response pieces
# ---------------------------------------------------------------------------


class ContractResponse(CamelModel):
    """A contract as shown to its contractor or to a verified signer.

    Token hashes and the password hash are never included.
    """

    id: uuid.UUID
    contractor_id: uuid.UUID
    company_id: uuid.UUID
    client_id: uuid.UUID
    title: str
    content: str
    field_values: dict | None = None
    status: str
    deposit_amount: float
    total_amount: float | None = None
    signing_token_expires_at: datetime | None = None
    signing_token_used_at: datetime | None = None
    sent_at: datetime | None = None
    contractor_signed_at: datetime | None = None
    signed_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ClientResponse(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    phone: str | None = None


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


class SignContractRequest(CamelModel):
    """Signature submission body. The optional password is removed before validation."""

    full_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    signature_data_url: str | None = None
    ip: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=500)
    agree: bool

    @field_validator("agree")
    @classmethod
    def must_agree(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("You must agree to the contract terms")
        return value


class SigningViewResponse(CamelModel):
    contract: ContractResponse
    client: ClientResponse | None = None


class SignContractResponse(CamelModel):
    success: bool = True
    contract: ContractResponse
    checkout_url: str | None = None


class CheckoutRequest(CamelModel):
    password: str | None = None


class CheckoutResponse(CamelModel):
    session_id: str
    url: str | None = None


# ---------------------------------------------------------------------------
# Void
# ---------------------------------------------------------------------------


class VoidContractRequest(CamelModel):
    refund_option: RefundOption = RefundOption.AUTOMATIC
    cancellation_fee: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    refund_reason: str | None = Field(default=None, max_length=1000)


class RefundResultResponse(CamelModel):
    payment_id: str
    original_amount: float
    actual_refund_amount: float
    status: str
    payment_type: str | None = None
    refund_id: str | None = None
    processor_status: str | None = None
    cancellation_fee_applied: float = 0.0
    requires_manual_refund: bool = False
    error: str | None = None


class PaymentInfoResponse(CamelModel):
    total_paid: float
    total_pending: float
    completed_payments_count: int
    pending_payments_count: int
    payment_schedule: str | None = None


class VoidContractResponse(CamelModel):
    success: bool = True
    message: str
    contract: ContractResponse
    payment_info: PaymentInfoResponse
    refund_option: RefundOption
    refunds_processed: int
    refunds_failed: int
    refunds_kept: int
    refunds_manual: int
    refund_results: list[RefundResultResponse]
    warning: str | None = None


# ---------------------------------------------------------------------------
# Sending, passwords, audit trail
# ---------------------------------------------------------------------------


class SendContractResponse(CamelModel):
    success: bool = True
    contract: ContractResponse
    signing_url: str
    expires_at: datetime


class SetPasswordRequest(CamelModel):
    password: str = Field(..., max_length=128)


class PasswordResponse(CamelModel):
    success: bool = True
    password_protected: bool


class ContractEventResponse(CamelModel):
    id: uuid.UUID
    contract_id: uuid.UUID
    event_type: str
    actor_type: str
    actor_id: str | None = None
    metadata: dict | None = Field(
        default=None,
        validation_alias="metadata_json",
        serialization_alias="metadata",
    )
    created_at: datetime
