"""
Shared fixtures: one in-memory SQLite database per test, a small product
catalog, an event recorder and an HTTP client bound to the app.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pharmabatch import models  # noqa: F401
from pharmabatch.database import Base, enable_sqlite_savepoints
from pharmabatch.models.product import Category, Product
from pharmabatch.schemas.batch import BatchCreate
from pharmabatch.services.batch_events import BatchEventPublisher, EventRecorder
from pharmabatch.services.batch_service import BatchService


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def publisher(recorder):
    publisher = BatchEventPublisher()
    publisher.subscribe(recorder)
    return publisher


@dataclass
class Catalog:
    antibiotics: Category
    vaccines: Category
    amoxicillin: Product
    flu_vaccine: Product
    saline: Product


@pytest_asyncio.fixture
async def catalog(db):
    antibiotics = Category(id=uuid.uuid4(), name="Antibiotics")
    vaccines = Category(id=uuid.uuid4(), name="Vaccines")
    db.add_all([antibiotics, vaccines])
    await db.flush()

    amoxicillin = Product(
        id=uuid.uuid4(), name="Amoxicillin 500mg", code="AMX-500",
        category_id=antibiotics.id, unit_price=Decimal("12.50"),
    )
    flu_vaccine = Product(
        id=uuid.uuid4(), name="Influenza Vaccine", code="FLU-VAC",
        category_id=vaccines.id, unit_price=Decimal("40.00"),
    )
    saline = Product(id=uuid.uuid4(), name="Saline 0.9%", code="SAL-09")
    db.add_all([amoxicillin, flu_vaccine, saline])
    await db.flush()
    return Catalog(antibiotics, vaccines, amoxicillin, flu_vaccine, saline)


@pytest.fixture
def make_batch(db):
    """Create a batch through the service; its creation events are not recorded."""
    async def _make(
        product: Product,
        batch_number: str,
        expiry_date: date,
        quantity: int,
        cost_per_unit: Optional[str] = None,
    ):
        service = BatchService(db, BatchEventPublisher())
        result = await service.create_batch(
            BatchCreate(
                product_id=product.id,
                batch_number=batch_number,
                expiry_date=expiry_date,
                quantity=quantity,
                cost_per_unit=Decimal(cost_per_unit) if cost_per_unit is not None else None,
            )
        )
        assert result.ok, result
        return result.value
    return _make


@pytest_asyncio.fixture
async def client(session_factory, publisher):
    from pharmabatch.api.deps import get_job_session_factory, get_publisher
    from pharmabatch.database import get_db
    from pharmabatch.main import app
    from contextlib import asynccontextmanager

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def job_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_job_session_factory] = lambda: job_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
