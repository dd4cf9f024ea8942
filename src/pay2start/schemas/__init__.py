"""Pydantic API schemas."""

from pay2start.schemas.common import (
    CamelModel,
    HealthResponse,
    MessageResponse,
    WebhookAckResponse,
)
from pay2start.schemas.contracts import (
    CheckoutRequest,
    CheckoutResponse,
    ClientResponse,
    ContractEventResponse,
    ContractResponse,
    PasswordResponse,
    PaymentInfoResponse,
    RefundResultResponse,
    SendContractResponse,
    SetPasswordRequest,
    SignContractRequest,
    SignContractResponse,
    SigningViewResponse,
    VoidContractRequest,
    VoidContractResponse,
)

__all__ = [
    "CamelModel",
    "HealthResponse",
    "MessageResponse",
    "WebhookAckResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "ClientResponse",
    "ContractEventResponse",
    "ContractResponse",
    "PasswordResponse",
    "PaymentInfoResponse",
    "RefundResultResponse",
    "SendContractResponse",
    "SetPasswordRequest",
    "SignContractRequest",
    "SignContractResponse",
    "SigningViewResponse",
    "VoidContractRequest",
    "VoidContractResponse",
]
