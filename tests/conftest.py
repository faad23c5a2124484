"""
Pytest configuration and fixtures for the repoquery tests.

This module provides:
- An in-memory SQLite database (aiosqlite) with the test entities created
- Session fixtures for database access
- A seeded order book shared by the execution tests
- A FastAPI app + HTTP client exposing an ``/orders`` collection endpoint
"""

from collections.abc import AsyncGenerator
from types import SimpleNamespace
from datetime import date

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from repoquery.api.deps import CollectionRequestDep, SessionDep
from repoquery.core.error_handlers import register_exception_handlers
from repoquery.db.session import get_session
from repoquery.services.entities import EntityDescriptor
from repoquery.services.repository import CollectionRepository
from repoquery.testing import (
    Order,
    OrderTag,
    create_customer,
    create_invoice,
    create_order,
    create_order_line,
    create_tag,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORDERS = EntityDescriptor(
    model=Order,
    searchable_fields=("reference", "notes", "customer.name"),
)


@pytest.fixture(scope="function")
async def engine():
    """Create a fresh in-memory database with every test table."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as test_session:
        yield test_session


@pytest.fixture
async def order_book(session: AsyncSession) -> SimpleNamespace:
    """
    Seed five orders across three customers.

    id  reference  status     total  paid   customer  notes           lines            tags
    1   A-100      shipped    50     yes    Acme      rush delivery   WIDGET x2        urgent
    2   B-200      pending    150    no     Globex    -               GADGET x1        -
    3   C-300      shipped    300    yes    Acme      gift wrap       WIDGET x5        -
    4   D-400      cancelled  500    no     Initech   -               -                urgent
    5   E-500      pending    700    yes    -         -               -                -

    Every order has an invoice whose reference mirrors the order's.
    Initech is the only inactive customer.
    """
    acme = await create_customer(session, name="Acme")
    globex = await create_customer(session, name="Globex")
    initech = await create_customer(session, name="Initech", is_active=False)

    orders = [
        await create_order(
            session, reference="A-100", status="shipped", total=50, is_paid=True,
            customer_id=acme.id, notes="rush delivery", placed_on=date(2026, 1, 10),
        ),
        await create_order(
            session, reference="B-200", status="pending", total=150, is_paid=False,
            customer_id=globex.id, placed_on=date(2026, 1, 15),
        ),
        await create_order(
            session, reference="C-300", status="shipped", total=300, is_paid=True,
            customer_id=acme.id, notes="gift wrap", placed_on=date(2026, 2, 1),
        ),
        await create_order(
            session, reference="D-400", status="cancelled", total=500, is_paid=False,
            customer_id=initech.id,
        ),
        await create_order(
            session, reference="E-500", status="pending", total=700, is_paid=True,
        ),
    ]
    for order in orders:
        await create_invoice(session, order)

    await create_order_line(session, orders[0], sku="WIDGET", quantity=2)
    await create_order_line(session, orders[1], sku="GADGET", quantity=1)
    await create_order_line(session, orders[2], sku="WIDGET", quantity=5)

    urgent = await create_tag(session, label="urgent")
    session.add(OrderTag(order_id=orders[0].id, tag_id=urgent.id))
    session.add(OrderTag(order_id=orders[3].id, tag_id=urgent.id))
    await session.commit()

    return SimpleNamespace(customers=[acme, globex, initech], orders=orders, urgent=urgent)


@pytest.fixture
def repository(session: AsyncSession) -> CollectionRepository:
    return CollectionRepository(session, ORDERS)


def create_collection_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/orders")
    async def list_orders(params: CollectionRequestDep, session: SessionDep) -> dict:
        page = await CollectionRepository(session, ORDERS).get_collection_for(params)
        return {
            "items": [order.id for order in page.items],
            "total_count": page.total_count,
            "page": page.page,
            "page_size": page.page_size,
            "has_next": page.has_next,
            "has_prev": page.has_prev,
        }

    return app


@pytest.fixture
async def client(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the test collection endpoint.

    Overrides the database session dependency to use the test session.
    """
    app = create_collection_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
