"""Domain exceptions for Pay2Start.

These exceptions are framework-agnostic and represent business rule violations.
Each carries the HTTP status it should surface as; the API layer's middleware
translates them into JSON responses.
"""

from __future__ import annotations

from typing import Any


class Pay2StartError(Exception):
    """Base exception for all domain errors."""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "PAY2START_ERROR",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.extra = extra or {}
        super().__init__(self.message)


# --- Authentication / ownership ---


class AuthenticationRequiredError(Pay2StartError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__(message="Unauthorized", code="AUTHENTICATION_REQUIRED")


class ForbiddenError(Pay2StartError):
    """Raised when a contractor acts on a contract of another company."""

    status_code = 403

    def __init__(self) -> None:
        super().__init__(message="Unauthorized", code="FORBIDDEN")


# --- Not found ---


class ContractNotFoundError(Pay2StartError):
    status_code = 404

    def __init__(self, contract_id: str) -> None:
        super().__init__(message="Contract not found", code="CONTRACT_NOT_FOUND")
        self.contract_id = contract_id


class ClientNotFoundError(Pay2StartError):
    status_code = 404

    def __init__(self, client_id: str) -> None:
        super().__init__(message="Client not found", code="CLIENT_NOT_FOUND")
        self.client_id = client_id


# --- State ---


class InvalidStateError(Pay2StartError):
    """Raised when a contract is not in a state that allows the operation."""

    def __init__(self, message: str, code: str = "INVALID_STATE") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(InvalidStateError):
    """Raised when the lifecycle state machine rejects a transition."""

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_event}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


# --- Signing link rejections ---
# All surface as 404 so a public caller learns as little as possible.


class SigningLinkError(Pay2StartError):
    status_code = 404


class SigningLinkInvalidError(SigningLinkError):
    """Unknown token or token failing hash verification (same wording for both)."""

    def __init__(self) -> None:
        super().__init__(
            message="Invalid or unknown signing link",
            code="INVALID_SIGNING_LINK",
        )


class RateLimitedError(SigningLinkError):
    def __init__(self) -> None:
        super().__init__(
            message="Too many attempts. Please try again later.",
            code="RATE_LIMITED",
        )


class TokenExpiredError(SigningLinkError):
    def __init__(self) -> None:
        super().__init__(message="This signing link has expired", code="LINK_EXPIRED")


class ContractCancelledError(SigningLinkError):
    def __init__(self) -> None:
        super().__init__(
            message="This contract has been cancelled",
            code="CONTRACT_CANCELLED",
        )


class SigningLinkUsedError(SigningLinkError):
    def __init__(self) -> None:
        super().__init__(
            message="This signing link has already been used",
            code="LINK_ALREADY_USED",
        )


# --- Password gate ---


class PasswordRequiredError(Pay2StartError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__(
            message="Password required",
            code="PASSWORD_REQUIRED",
            extra={"requiresPassword": True},
        )


class PasswordInvalidError(Pay2StartError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__(
            message="Invalid password",
            code="PASSWORD_INVALID",
            extra={"requiresPassword": True},
        )


# --- Input ---


class PayloadTooLargeError(Pay2StartError):
    status_code = 413

    def __init__(self, message: str = "Request payload too large") -> None:
        super().__init__(message=message, code="PAYLOAD_TOO_LARGE")


class MalformedInputError(Pay2StartError):
    """Schema or format violation in a request body."""

    def __init__(
        self,
        message: str = "Validation failed",
        code: str = "MALFORMED_INPUT",
        errors: list | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=code,
            extra={"errors": errors} if errors else None,
        )


# --- Payment processor ---


class ProcessorError(Pay2StartError):
    """Raised when the payment processor rejects or fails an operation."""

    status_code = 502

    def __init__(self, message: str, processor_code: str | None = None) -> None:
        super().__init__(message=message, code="PROCESSOR_ERROR")
        self.processor_code = processor_code


class AlreadyRefundedError(ProcessorError):
    def __init__(self, message: str = "Charge has already been refunded") -> None:
        super().__init__(message=message, processor_code="charge_already_refunded")
        self.code = "ALREADY_REFUNDED"


class InsufficientFundsError(ProcessorError):
    """The connected balance cannot cover the refund; needs manual follow-up."""

    def __init__(self, message: str = "Insufficient funds for refund") -> None:
        super().__init__(message=message, processor_code="insufficient_funds")
        self.code = "INSUFFICIENT_FUNDS"


# --- Internal ---


class InternalFailureError(Pay2StartError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INTERNAL_FAILURE")


# --- Idempotency ---


class DuplicateOperationError(Pay2StartError):
    """Raised when a duplicate idempotency key is detected."""

    status_code = 409

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
