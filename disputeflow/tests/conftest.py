import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, event, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from disputeflow.common.enums import DisputeCategory, OrderStatus
from disputeflow.core.disputes.assessment import AssessmentAggregator
from disputeflow.core.disputes.criteria import build_criteria
from disputeflow.core.disputes.resolution import ResolutionExecutor
from disputeflow.core.disputes.scheduler import AssessmentScheduler
from disputeflow.core.disputes import workflow
from disputeflow.core.disputes.schemas import EscrowTransaction, OrderSnapshot
from disputeflow.core.disputes.service import DisputeService
from disputeflow.db.base import Base
from disputeflow.db.models.dispute import Dispute
from disputeflow.integrations.marketplace import MarketplaceClient
from disputeflow.tests.fakes import (
    ADMIN_ID,
    BUYER_ID,
    SELLER_ID,
    FakeChain,
    FakeMarketplace,
    FakeModeration,
    FakeNotifier,
    FakePayments,
)


# Make JSONB render as JSON for SQLite
@event.listens_for(Base.metadata, "before_create")
def _remap_jsonb(target, connection, **kw):
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()


# ---------- Database ----------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------- Collaborators ----------


@pytest.fixture(autouse=True)
def clear_marketplace():
    MarketplaceClient.reset_mock_registry()
    yield
    MarketplaceClient.reset_mock_registry()


@pytest.fixture
def marketplace():
    return FakeMarketplace()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def moderation():
    return FakeModeration()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def executor(payments, chain, moderation, marketplace):
    return ResolutionExecutor(
        payments=payments, chain=chain, moderation=moderation, marketplace=marketplace
    )


@pytest.fixture
def aggregator():
    return AssessmentAggregator(build_criteria(), criterion_timeout=2)


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def scheduler(session_factory, enqueued):
    return AssessmentScheduler(
        session_factory=session_factory,
        enqueue=lambda dispute_id, delay: enqueued.append(dispute_id),
        settle_delay=0,
        timeout=5,
    )


@pytest.fixture
def service(marketplace, notifier, executor, aggregator, scheduler):
    svc = DisputeService(
        marketplace=marketplace,
        notifier=notifier,
        executor=executor,
        aggregator=aggregator,
        scheduler=scheduler,
    )
    scheduler._service_factory = lambda: svc
    return svc


@pytest.fixture
def seed_order():
    def _seed(
        order_id="order-1",
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        total="120.00",
        status=OrderStatus.SHIPPED.value,
        tracking_number="TRK123",
        estimated_delivery=None,
        transaction=None,
    ):
        order = OrderSnapshot(
            order_id=order_id,
            status=status,
            buyer_id=buyer_id,
            seller_id=seller_id,
            total=Decimal(total),
            tracking_number=tracking_number,
            estimated_delivery=estimated_delivery,
        )
        if transaction is True:
            transaction = EscrowTransaction(
                transaction_id=f"tx-{order_id}",
                amount=Decimal(total),
                currency="USD",
                type="escrow",
                contract_address="0xcontract",
            )
        MarketplaceClient.seed_order(order, transaction)
        return order

    return _seed


@pytest.fixture
def make_dispute(session_factory):
    """Persist a dispute directly, bypassing the creation flow."""

    async def _make(
        order_id="order-1",
        category=DisputeCategory.ITEM_DAMAGED,
        amount="100.00",
        status=None,
        now=None,
        **fields,
    ):
        dispute = workflow.new_dispute(
            order_id=order_id,
            buyer_id=BUYER_ID,
            seller_id=SELLER_ID,
            initiated_by=BUYER_ID,
            category=category,
            description="Item arrived broken",
            disputed_amount=Decimal(amount),
            escrow_amount=Decimal(amount),
            currency="USD",
            order_total=Decimal(amount),
            now=now,
        )
        if status is not None:
            dispute.status = status.value
        for key, value in fields.items():
            setattr(dispute, key, value)
        async with session_factory() as db:
            db.add(dispute)
            await db.commit()
        return dispute

    return _make


@pytest.fixture
def load(session_factory):
    async def _load(dispute_id):
        async with session_factory() as db:
            result = await db.execute(select(Dispute).where(Dispute.id == uuid.UUID(str(dispute_id))))
            return result.scalar_one()

    return _load


# ---------- API ----------


@pytest.fixture
async def client(session_factory, service):
    from disputeflow.api.deps import get_db, get_dispute_service
    from disputeflow.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispute_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def buyer_headers():
    return {"X-Actor-Id": BUYER_ID}


@pytest.fixture
def seller_headers():
    return {"X-Actor-Id": SELLER_ID}


@pytest.fixture
def admin_headers():
    return {"X-Actor-Id": ADMIN_ID, "X-Actor-Role": "admin"}


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock Celery dispatch so tests never reach a broker."""
    with (
        patch("disputeflow.tasks.dispute_tasks.run_automated_assessment.apply_async"),
        patch("disputeflow.tasks.dispute_tasks.retry_resolution_effects.delay"),
    ):
        yield