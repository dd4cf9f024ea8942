"""Void Service: cancel a contract and settle the money already collected.

The cancelled status is claimed first, with one conditional UPDATE. Only the
request that wins the claim goes on to touch payments, so two concurrent
voids can never both refund.

Per-payment work is isolated: an unresolvable payment intent or a refund
error becomes an itemized result entry, and the loop moves on. Pending
payments are failed one by one, each in its own savepoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from pay2start.domain.enums import (
    ActorType,
    ContractStatus,
    EventType,
    PaymentStatus,
    RefundOption,
    RefundStatus,
)
from pay2start.domain.exceptions import (
    AlreadyRefundedError,
    ContractNotFoundError,
    ForbiddenError,
    InsufficientFundsError,
    InternalFailureError,
    InvalidStateError,
    ProcessorError,
)
from pay2start.domain.refunds import (
    ZERO,
    RefundResult,
    fee_share,
    refund_amount,
    to_decimal,
)
from pay2start.infrastructure.database.repositories import (
    ClientRepository,
    ContractRepository,
    PaymentRepository,
)
from pay2start.logging_config import get_logger
from pay2start.services.audit import AuditTrail

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from pay2start.infrastructure.database.orm_models import (
        Client,
        Contract,
        Contractor,
        Payment,
    )
    from pay2start.services.payment_service import PaymentGateway

logger = get_logger(__name__)

BOTH_SIGNED_WARNING = (
    "This contract was signed by both parties. Voiding it may have legal "
    "implications; make sure the client has been informed."
)


@dataclass
class PaymentSummary:
    total_paid: Decimal
    total_pending: Decimal
    completed_payments_count: int
    pending_payments_count: int
    payment_schedule: str | None = None


@dataclass
class VoidOutcome:
    contract: Contract
    client: Client | None
    message: str
    payment_info: PaymentSummary
    refund_option: RefundOption
    refund_results: list[RefundResult] = field(default_factory=list)
    warning: str | None = None

    @property
    def refunds_processed(self) -> int:
        return sum(1 for r in self.refund_results if r.status is RefundStatus.REFUNDED)

    @property
    def refunds_failed(self) -> int:
        return sum(1 for r in self.refund_results if r.is_failure)

    @property
    def refunds_kept(self) -> int:
        return sum(1 for r in self.refund_results if r.status is RefundStatus.KEPT)

    @property
    def refunds_manual(self) -> int:
        return sum(
            1
            for r in self.refund_results
            if r.status is RefundStatus.MANUAL_REFUND_REQUIRED or r.requires_manual_refund
        )


def _payment_schedule(contract: Contract) -> str | None:
    values = contract.field_values or {}
    schedule = values.get("paymentSchedule")
    if schedule is None:
        schedule = (values.get("paymentScheduleConfig") or {}).get("type")
    return str(schedule) if schedule is not None else None


def void_message(option: RefundOption, fee: Decimal) -> str:
    if option is RefundOption.KEEP:
        return "Contract has been voided. Payments have been kept."
    if option is RefundOption.MANUAL:
        return "Contract has been voided. Refunds must be processed manually."
    if fee > 0:
        return (
            "Contract has been voided and refunds have been processed "
            f"(cancellation fee of ${fee:,.2f} applied)."
        )
    return "Contract has been voided and refunds have been processed."


class VoidService:
    """Cancels contracts on behalf of their contractor."""

    def __init__(self, session: AsyncSession, gateway: PaymentGateway | None = None) -> None:
        self._session = session
        self._gateway = gateway
        self._contract_repo = ContractRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._client_repo = ClientRepository(session)
        self._audit = AuditTrail(session)

    async def void_contract(
        self,
        contract_id: uuid.UUID,
        contractor: Contractor,
        refund_option: RefundOption = RefundOption.AUTOMATIC,
        cancellation_fee: Decimal | None = None,
        refund_reason: str | None = None,
    ) -> VoidOutcome:
        """Void a contract and resolve each of its payments.

        Raises:
            ContractNotFoundError: Unknown contract or owned by someone else.
            ForbiddenError: Contractor and contract belong to different companies.
            InvalidStateError: Already cancelled, or completed.
            InternalFailureError: The cancelled status could not be written.
        """
        contract = await self._contract_repo.get_by_id(contract_id)
        if contract is None or contract.contractor_id != contractor.id:
            raise ContractNotFoundError(str(contract_id))

        if contract.company_id != contractor.company_id:
            logger.warning(
                "void.company_mismatch",
                contract_id=str(contract_id),
                contractor_id=str(contractor.id),
            )
            raise ForbiddenError()

        previous_status = ContractStatus(contract.status)
        self._check_voidable(previous_status)

        # Claim the transition before any money moves.
        claimed = await self._contract_repo.claim_cancellation(contract.id)
        if claimed is None:
            current = await self._contract_repo.get_by_id(contract.id)
            if current is not None and current.status == ContractStatus.CANCELLED.value:
                raise InvalidStateError("Contract is already cancelled", code="ALREADY_CANCELLED")
            logger.error("void.status_update_failed", contract_id=str(contract_id))
            raise InternalFailureError("Failed to update contract")
        # The claim must survive a rollback of anything that follows.
        await self._session.commit()

        fee = to_decimal(cancellation_fee) if cancellation_fee is not None else ZERO
        both_signed = contract.contractor_signed_at is not None and contract.signed_at is not None

        payments = await self._payment_repo.get_by_contract(contract.id)
        completed = [p for p in payments if p.status == PaymentStatus.COMPLETED.value]
        pending = [p for p in payments if p.status == PaymentStatus.PENDING.value]
        summary = PaymentSummary(
            total_paid=sum((to_decimal(p.amount) for p in completed), ZERO),
            total_pending=sum((to_decimal(p.amount) for p in pending), ZERO),
            completed_payments_count=len(completed),
            pending_payments_count=len(pending),
            payment_schedule=_payment_schedule(contract),
        )

        log = logger.bind(contract_id=str(contract.id), refund_option=refund_option.value)
        log.info(
            "void.started",
            previous_status=previous_status.value,
            completed=len(completed),
            pending=len(pending),
            fee=str(fee),
        )

        if refund_option is RefundOption.KEEP:
            results = [self._aggregate_result(completed, summary, RefundStatus.KEPT)]
        elif refund_option is RefundOption.MANUAL:
            results = [
                self._aggregate_result(completed, summary, RefundStatus.MANUAL_REFUND_REQUIRED)
            ]
        else:
            results = await self._refund_completed(
                contract, completed, fee, refund_reason, contractor
            )

        await self._cancel_pending(pending)

        await self._audit.record(
            contract_id=contract.id,
            event_type=EventType.VOIDED,
            actor_type=ActorType.CONTRACTOR,
            actor_id=str(contractor.id),
            metadata={
                "previousStatus": previous_status.value,
                "bothPartiesSigned": both_signed,
                "paymentSchedule": summary.payment_schedule,
                "paymentScheduleConfig": (contract.field_values or {}).get("paymentScheduleConfig"),
                "totalPaid": str(summary.total_paid),
                "totalPending": str(summary.total_pending),
                "refundOption": refund_option.value,
                "cancellationFee": str(fee),
                "refundReason": refund_reason,
                "refundResults": [r.to_metadata() for r in results],
                "voidedAt": datetime.now(UTC).isoformat(),
            },
        )

        outcome = VoidOutcome(
            contract=claimed,
            client=await self._client_repo.get_by_id(claimed.client_id),
            message=void_message(refund_option, fee),
            payment_info=summary,
            refund_option=refund_option,
            refund_results=results,
            warning=BOTH_SIGNED_WARNING if both_signed else None,
        )
        log.info(
            "void.completed",
            refunds_processed=outcome.refunds_processed,
            refunds_failed=outcome.refunds_failed,
            refunds_manual=outcome.refunds_manual,
        )
        return outcome

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    @staticmethod
    def _check_voidable(status: ContractStatus) -> None:
        if status is ContractStatus.CANCELLED:
            raise InvalidStateError("Contract is already cancelled", code="ALREADY_CANCELLED")
        if status is ContractStatus.COMPLETED:
            raise InvalidStateError(
                "Cannot cancel a completed contract", code="CONTRACT_COMPLETED"
            )

    # ------------------------------------------------------------------
    # Refund policies
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_result(
        completed: list[Payment],
        summary: PaymentSummary,
        status: RefundStatus,
    ) -> RefundResult:
        """Single entry covering every completed payment (keep / manual)."""
        return RefundResult(
            payment_id="all",
            original_amount=summary.total_paid,
            actual_refund_amount=ZERO,
            status=status,
            payment_type=",".join(sorted({p.payment_type for p in completed})) or None,
            requires_manual_refund=status is RefundStatus.MANUAL_REFUND_REQUIRED,
        )

    async def _refund_completed(
        self,
        contract: Contract,
        completed: list[Payment],
        fee: Decimal,
        reason: str | None,
        contractor: Contractor,
    ) -> list[RefundResult]:
        share = fee_share(fee, len(completed))
        results = []
        for payment in completed:
            try:
                result = await self._refund_one(contract, payment, share, reason, contractor)
            except ProcessorError as exc:
                logger.error(
                    "void.refund_failed",
                    contract_id=str(contract.id),
                    payment_id=str(payment.id),
                    error=exc.message,
                )
                result = RefundResult(
                    payment_id=str(payment.id),
                    original_amount=to_decimal(payment.amount),
                    actual_refund_amount=ZERO,
                    status=RefundStatus.REFUND_FAILED,
                    payment_type=payment.payment_type,
                    cancellation_fee_applied=share,
                    error=exc.message,
                )
            except Exception:
                logger.exception(
                    "void.refund_crashed",
                    contract_id=str(contract.id),
                    payment_id=str(payment.id),
                )
                result = RefundResult(
                    payment_id=str(payment.id),
                    original_amount=to_decimal(payment.amount),
                    actual_refund_amount=ZERO,
                    status=RefundStatus.REFUND_FAILED,
                    payment_type=payment.payment_type,
                    cancellation_fee_applied=share,
                    error="Refund failed unexpectedly",
                )
            results.append(result)
        return results

    async def _refund_one(
        self,
        contract: Contract,
        payment: Payment,
        share: Decimal,
        reason: str | None,
        contractor: Contractor,
    ) -> RefundResult:
        amount = to_decimal(payment.amount)
        base = {
            "payment_id": str(payment.id),
            "original_amount": amount,
            "payment_type": payment.payment_type,
        }

        if self._gateway is None:
            raise ProcessorError("Payment processing is not configured")

        charge = None
        if payment.payment_intent_id:
            charge = await self._gateway.resolve_charge(payment.payment_intent_id)
        if charge is None:
            logger.warning(
                "void.intent_not_found",
                contract_id=str(contract.id),
                payment_id=str(payment.id),
                reference=payment.payment_intent_id,
            )
            return RefundResult(
                **base,
                actual_refund_amount=ZERO,
                status=RefundStatus.INTENT_NOT_FOUND,
                error="Payment intent not found",
            )

        if charge.succeeded and charge.refunded:
            return RefundResult(
                **base,
                actual_refund_amount=ZERO,
                status=RefundStatus.ALREADY_REFUNDED,
            )

        to_refund = refund_amount(amount, share)
        if to_refund <= 0:
            logger.info(
                "void.fee_exceeds_payment",
                contract_id=str(contract.id),
                payment_id=str(payment.id),
                amount=str(amount),
                fee_share=str(share),
            )
            return RefundResult(
                **base,
                actual_refund_amount=ZERO,
                status=RefundStatus.FEE_EXCEEDS_PAYMENT,
                cancellation_fee_applied=share,
                error="Cancellation fee equals or exceeds payment amount; no refund issued",
            )

        try:
            receipt = await self._gateway.create_refund(
                charge.payment_intent_id,
                to_refund,
                metadata={
                    "contract_id": str(contract.id),
                    "reason": reason or "Contract voided",
                    "voided_by": str(contractor.id),
                    "cancellation_fee_applied": str(share),
                    "original_amount": str(amount),
                },
            )
        except AlreadyRefundedError:
            return RefundResult(
                **base,
                actual_refund_amount=ZERO,
                status=RefundStatus.ALREADY_REFUNDED,
            )
        except InsufficientFundsError as exc:
            logger.error(
                "void.refund_insufficient_funds",
                contract_id=str(contract.id),
                payment_id=str(payment.id),
            )
            return RefundResult(
                **base,
                actual_refund_amount=ZERO,
                status=RefundStatus.REFUND_FAILED,
                cancellation_fee_applied=share,
                requires_manual_refund=True,
                error=exc.message,
            )

        return RefundResult(
            **base,
            actual_refund_amount=to_refund,
            status=RefundStatus.REFUNDED,
            refund_id=receipt.id,
            processor_status=receipt.status,
            cancellation_fee_applied=share,
        )

    # ------------------------------------------------------------------
    # Pending payments
    # ------------------------------------------------------------------

    async def _cancel_pending(self, pending: list[Payment]) -> None:
        for payment in pending:
            try:
                async with self._session.begin_nested():
                    await self._payment_repo.update_status(payment, PaymentStatus.FAILED)
            except SQLAlchemyError as exc:
                logger.error(
                    "void.pending_cancel_failed",
                    payment_id=str(payment.id),
                    error=str(exc),
                )
