"""Public signing-link routes.

These endpoints are unauthenticated; the signing token in the path is the
only credential. Every request passes the signing-link guard (and, for
password-protected contracts, the password gate) before any contract data
is returned.

Routes:
    GET    /api/v1/contracts/sign/{token}           View the contract
    POST   /api/v1/contracts/sign/{token}           Submit a signature
    POST   /api/v1/contracts/sign/{token}/checkout  Start deposit payment
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pay2start.api.deps import (
    get_app_settings,
    get_client_ip,
    get_db_session,
    get_notifier,
    get_payment_gateway,
)
from pay2start.config import Settings
from pay2start.logging_config import get_logger
from pay2start.schemas.common import MessageResponse
from pay2start.schemas.contracts import (
    CheckoutRequest,
    CheckoutResponse,
    ClientResponse,
    ContractResponse,
    SignContractResponse,
    SigningViewResponse,
)
from pay2start.services.notification_service import NotificationService
from pay2start.services.payment_service import PaymentGateway
from pay2start.services.signing_service import SigningOutcome, SigningService

router = APIRouter(
    prefix="/api/v1/contracts/sign",
    tags=["Signing"],
    responses={401: {"model": MessageResponse}, 404: {"model": MessageResponse}},
)
logger = get_logger(__name__)


def _schedule_signed_notifications(
    background_tasks: BackgroundTasks,
    notifier: NotificationService,
    outcome: SigningOutcome,
) -> None:
    contract, client, contractor = outcome.contract, outcome.client, outcome.contractor
    if contractor is not None:
        background_tasks.add_task(
            notifier.contract_signed,
            contractor_email=contractor.email,
            contractor_name=contractor.name,
            client_name=client.name if client else "Your client",
            contract_title=contract.title,
        )
    if client is not None and outcome.checkout_url:
        background_tasks.add_task(
            notifier.signed_but_unpaid,
            client_email=client.email,
            client_name=client.name,
            contractor_name=contractor.name if contractor else "Your contractor",
            contract_title=contract.title,
            payment_url=outcome.checkout_url,
            deposit_amount=contract.deposit_amount,
            total_amount=contract.total_amount,
        )


# ---------------------------------------------------------------------------
# View
# ---------------------------------------------------------------------------


@router.get(
    "/{token}",
    response_model=SigningViewResponse,
    summary="View a contract through its signing link",
)
async def view_contract(
    token: str,
    request: Request,
    password: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> SigningViewResponse:
    svc = SigningService(session, settings)
    client_ip = get_client_ip(request, settings.trust_proxy_headers)
    view = await svc.view(token, client_ip, password)
    return SigningViewResponse(
        contract=ContractResponse.model_validate(view.contract),
        client=ClientResponse.model_validate(view.client) if view.client else None,
    )


# ---------------------------------------------------------------------------
# Sign
# ---------------------------------------------------------------------------


@router.post(
    "/{token}",
    response_model=SignContractResponse,
    summary="Sign a contract",
)
async def sign_contract(
    token: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notifier),
) -> SignContractResponse:
    """Record the client's signature.

    The body is read raw so its size can be checked before JSON parsing and
    the password field can be removed before schema validation.
    """
    svc = SigningService(session, settings, gateway)
    raw_body = await request.body()
    client_ip = get_client_ip(request, settings.trust_proxy_headers)
    outcome = await svc.sign(token, client_ip, raw_body)

    # Runs after the response is sent; failures are logged by the notifier.
    _schedule_signed_notifications(background_tasks, notifier, outcome)

    return SignContractResponse(
        success=True,
        contract=ContractResponse.model_validate(outcome.contract),
        checkout_url=outcome.checkout_url,
    )


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@router.post(
    "/{token}/checkout",
    response_model=CheckoutResponse,
    summary="Start deposit payment for a signed contract",
)
async def create_checkout(
    token: str,
    request: Request,
    body: CheckoutRequest | None = Body(default=None),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> CheckoutResponse:
    svc = SigningService(session, settings, gateway)
    checkout = await svc.create_checkout(
        token,
        get_client_ip(request, settings.trust_proxy_headers),
        password=body.password if body else None,
    )
    return CheckoutResponse(session_id=checkout.id, url=checkout.url)
