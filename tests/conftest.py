"""Shared test fixtures for the Pay2Start test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with SAVEPOINT support
    - Settings with a strong signing secret and no external services
    - Factory fixtures for contractors, clients, contracts, and payments
    - A mocked payment gateway (no Stripe calls)
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from pay2start.api.deps import hash_api_key
from pay2start.config import Settings
from pay2start.domain.enums import ContractStatus, PaymentStatus, PaymentType
from pay2start.domain.tokens import generate_token, hash_token
from pay2start.infrastructure.database.orm_models import (
    Base,
    Client,
    Contract,
    Contractor,
    Payment,
)
from pay2start.services.payment_service import (
    CheckoutSession,
    PaymentGateway,
    RefundReceipt,
    ResolvedCharge,
)

TEST_SIGNING_SECRET = "test-signing-secret-0123456789-abcdefghijklmnop"
TEST_API_KEY = "p2s_test_api_key"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        app_base_url="https://app.pay2start.test",
        database_url="sqlite+aiosqlite://",
        signing_token_secret=TEST_SIGNING_SECRET,
        signing_rate_limit_window_minutes=15,
        signing_rate_limit_max_attempts=5,
        stripe_secret_key="",
        stripe_webhook_secret="whsec_test",
        smtp_host="",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


@pytest.fixture
def company_id() -> uuid.UUID:
    return uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
async def contractor(session: AsyncSession, company_id: uuid.UUID) -> Contractor:
    contractor = Contractor(
        company_id=company_id,
        name="Dana Builder",
        email="dana@builder.test",
        company_name="Builder & Co",
        api_key_hash=hash_api_key(TEST_API_KEY),
    )
    session.add(contractor)
    await session.flush()
    return contractor


@pytest.fixture
async def client(session: AsyncSession, company_id: uuid.UUID) -> Client:
    client = Client(
        company_id=company_id,
        name="Riley Homeowner",
        email="riley@home.test",
    )
    session.add(client)
    await session.flush()
    return client


@pytest.fixture
def make_contract(session: AsyncSession, contractor: Contractor, client: Client):
    """Factory: persist a contract owned by `contractor` for `client`."""

    async def _make(
        status: ContractStatus = ContractStatus.DRAFT,
        deposit: str = "0",
        total: str = "1000",
        **overrides,
    ) -> Contract:
        contract = Contract(
            contractor_id=contractor.id,
            company_id=contractor.company_id,
            client_id=client.id,
            title="Kitchen Remodel",
            content="The contractor will remodel the kitchen.",
            status=status.value,
            deposit_amount=Decimal(deposit),
            total_amount=Decimal(total),
            **overrides,
        )
        session.add(contract)
        await session.flush()
        return contract

    return _make


@pytest.fixture
def issue_link(session: AsyncSession):
    """Factory: give a contract a hashed signing link and return the raw token."""

    async def _issue(contract: Contract, expires_in: timedelta = timedelta(days=7)) -> str:
        token = generate_token()
        contract.signing_token_hash = hash_token(token, TEST_SIGNING_SECRET)
        contract.signing_token_expires_at = datetime.now(UTC) + expires_in
        await session.flush()
        return token

    return _issue


@pytest.fixture
def make_payment(session: AsyncSession):
    """Factory: persist a payment against a contract."""
    sequence = count(1)

    async def _make(
        contract: Contract,
        amount: str,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        payment_type: PaymentType = PaymentType.DEPOSIT,
        payment_intent_id: str | None = None,
    ) -> Payment:
        payment = Payment(
            contract_id=contract.id,
            company_id=contract.company_id,
            amount=Decimal(amount),
            status=status.value,
            payment_type=payment_type.value,
            payment_intent_id=payment_intent_id or f"cs_test_{next(sequence)}",
            # Keeps oldest-first ordering deterministic within one test.
            created_at=datetime.now(UTC) + timedelta(seconds=next(sequence)),
        )
        session.add(payment)
        await session.flush()
        return payment

    return _make


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> MagicMock:
    """PaymentGateway double: every reference resolves to a succeeded, unrefunded charge."""
    gateway = MagicMock(spec=PaymentGateway)
    refund_ids = count(1)

    async def _resolve(reference: str) -> ResolvedCharge:
        return ResolvedCharge(
            payment_intent_id=f"pi_for_{reference}",
            charge_id=f"ch_for_{reference}",
            charge_status="succeeded",
            refunded=False,
        )

    async def _refund(payment_intent_id: str, amount: Decimal, metadata: dict) -> RefundReceipt:
        return RefundReceipt(id=f"re_test_{next(refund_ids)}", status="succeeded")

    gateway.create_deposit_checkout = AsyncMock(
        return_value=CheckoutSession(
            id="cs_test_checkout",
            url="https://checkout.stripe.test/c/pay/cs_test_checkout",
        )
    )
    gateway.resolve_charge = AsyncMock(side_effect=_resolve)
    gateway.create_refund = AsyncMock(side_effect=_refund)
    return gateway
