"""Contractor contract routes.

All endpoints require `Authorization: Bearer <api key>` and only act on
contracts owned by the calling contractor.

Routes:
    POST   /api/v1/contracts/{id}/send      Issue a signing link and send it
    POST   /api/v1/contracts/{id}/void      Void the contract and settle payments
    PUT    /api/v1/contracts/{id}/password  Protect the signing link with a password
    DELETE /api/v1/contracts/{id}/password  Remove the password
    GET    /api/v1/contracts/{id}/events    Audit trail
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pay2start.api.deps import (
    get_app_settings,
    get_current_contractor,
    get_db_session,
    get_notifier,
    get_payment_gateway,
)
from pay2start.config import Settings
from pay2start.infrastructure.database.orm_models import Contractor
from pay2start.logging_config import get_logger
from pay2start.schemas.common import MessageResponse
from pay2start.schemas.contracts import (
    ContractEventResponse,
    ContractResponse,
    PasswordResponse,
    PaymentInfoResponse,
    RefundResultResponse,
    SendContractResponse,
    SetPasswordRequest,
    VoidContractRequest,
    VoidContractResponse,
)
from pay2start.services.contract_service import ContractService
from pay2start.services.notification_service import NotificationService
from pay2start.services.payment_service import PaymentGateway
from pay2start.services.void_service import VoidService

router = APIRouter(
    prefix="/api/v1/contracts",
    tags=["Contracts"],
    responses={401: {"model": MessageResponse}, 404: {"model": MessageResponse}},
)
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/send",
    response_model=SendContractResponse,
    summary="Send a contract for signature",
)
async def send_contract(
    contract_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    contractor: Contractor = Depends(get_current_contractor),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    notifier: NotificationService = Depends(get_notifier),
) -> SendContractResponse:
    """Issue a fresh one-time signing link. The URL is only ever returned here."""
    svc = ContractService(session, settings)
    sent = await svc.send_contract(contract_id, contractor)

    if sent.client is not None:
        background_tasks.add_task(
            notifier.contract_sent,
            client_email=sent.client.email,
            client_name=sent.client.name,
            contractor_name=contractor.name,
            contract_title=sent.contract.title,
            signing_url=sent.signing_url,
        )

    return SendContractResponse(
        contract=ContractResponse.model_validate(sent.contract),
        signing_url=sent.signing_url,
        expires_at=sent.expires_at,
    )


# ---------------------------------------------------------------------------
# Void
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/void",
    response_model=VoidContractResponse,
    summary="Void a contract",
)
async def void_contract(
    contract_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    request: VoidContractRequest | None = Body(default=None),
    contractor: Contractor = Depends(get_current_contractor),
    session: AsyncSession = Depends(get_db_session),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notifier),
) -> VoidContractResponse:
    """Cancel the contract and refund, keep, or flag collected payments."""
    request = request or VoidContractRequest()
    svc = VoidService(session, gateway)
    outcome = await svc.void_contract(
        contract_id,
        contractor,
        refund_option=request.refund_option,
        cancellation_fee=request.cancellation_fee,
        refund_reason=request.refund_reason,
    )

    if outcome.client is not None:
        background_tasks.add_task(
            notifier.contract_voided,
            client_email=outcome.client.email,
            client_name=outcome.client.name,
            contractor_name=contractor.name,
            contract_title=outcome.contract.title,
            refund_summary=outcome.message,
        )

    info = outcome.payment_info
    return VoidContractResponse(
        success=True,
        message=outcome.message,
        contract=ContractResponse.model_validate(outcome.contract),
        payment_info=PaymentInfoResponse(
            total_paid=info.total_paid,
            total_pending=info.total_pending,
            completed_payments_count=info.completed_payments_count,
            pending_payments_count=info.pending_payments_count,
            payment_schedule=info.payment_schedule,
        ),
        refund_option=outcome.refund_option,
        refunds_processed=outcome.refunds_processed,
        refunds_failed=outcome.refunds_failed,
        refunds_kept=outcome.refunds_kept,
        refunds_manual=outcome.refunds_manual,
        refund_results=[
            RefundResultResponse.model_validate(r.to_metadata()) for r in outcome.refund_results
        ],
        warning=outcome.warning,
    )


# ---------------------------------------------------------------------------
# Password
# ---------------------------------------------------------------------------


@router.put(
    "/{contract_id}/password",
    response_model=PasswordResponse,
    summary="Set the signing-link password",
)
async def set_password(
    contract_id: uuid.UUID,
    request: SetPasswordRequest,
    contractor: Contractor = Depends(get_current_contractor),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> PasswordResponse:
    svc = ContractService(session, settings)
    await svc.set_password(contract_id, contractor, request.password)
    return PasswordResponse(password_protected=True)


@router.delete(
    "/{contract_id}/password",
    response_model=PasswordResponse,
    summary="Remove the signing-link password",
)
async def remove_password(
    contract_id: uuid.UUID,
    contractor: Contractor = Depends(get_current_contractor),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> PasswordResponse:
    svc = ContractService(session, settings)
    await svc.remove_password(contract_id, contractor)
    return PasswordResponse(password_protected=False)


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


@router.get(
    "/{contract_id}/events",
    response_model=list[ContractEventResponse],
    summary="Get the audit trail of a contract",
)
async def get_events(
    contract_id: uuid.UUID,
    contractor: Contractor = Depends(get_current_contractor),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> list[ContractEventResponse]:
    svc = ContractService(session, settings)
    events = await svc.get_events(contract_id, contractor)
    return [ContractEventResponse.model_validate(e) for e in events]
