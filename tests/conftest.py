"""
Pytest fixtures for the stocktake tests.

Every test gets a fresh in-memory SQLite database seeded with a small stock
snapshot: two locations, three products, a handful of serialized assets.
"""
import os
import uuid
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stocktake.core.permissions import Actor
from stocktake.database import Base, configure_sqlite_engine, custom_json_dumps
from stocktake.models import StockBalance, StockSerial
from stocktake.models.inventory import InventoryType
from stocktake.schemas.inventory import InventoryCreate
from stocktake.services.count_ledger_service import CountLedgerService
from stocktake.services.inventory_service import InventoryService


LOCATION_A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
LOCATION_B = uuid.UUID("00000000-0000-0000-0000-00000000000b")
PRODUCT_1 = uuid.UUID("00000000-0000-0000-0000-000000000001")
PRODUCT_2 = uuid.UUID("00000000-0000-0000-0000-000000000002")
PRODUCT_3 = uuid.UUID("00000000-0000-0000-0000-000000000003")
CATEGORY = uuid.UUID("00000000-0000-0000-0000-0000000000c1")


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    configure_sqlite_engine(test_engine)

    from stocktake import models  # noqa: F401
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory, stock) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def stock(session_factory):
    """Seed the stock snapshot sources."""
    async with session_factory() as session:
        session.add_all([
            StockBalance(product_id=PRODUCT_1, product_code="P-001", category_id=CATEGORY,
                         location_id=LOCATION_A, quantity=Decimal("10")),
            StockBalance(product_id=PRODUCT_2, product_code="P-002", category_id=CATEGORY,
                         location_id=LOCATION_A, quantity=Decimal("5")),
            StockBalance(product_id=PRODUCT_1, product_code="P-001", category_id=CATEGORY,
                         location_id=LOCATION_B, quantity=Decimal("3")),
            StockBalance(product_id=PRODUCT_3, product_code="P-003", category_id=None,
                         location_id=LOCATION_B, quantity=Decimal("0")),
            StockSerial(serial_number="SN-001", product_id=PRODUCT_1, location_id=LOCATION_A),
            StockSerial(serial_number="SN-002", product_id=PRODUCT_1, location_id=LOCATION_A),
            StockSerial(serial_number="SN-003", product_id=PRODUCT_1, location_id=LOCATION_B),
            StockSerial(serial_number="SN-900", product_id=PRODUCT_2, location_id=uuid.uuid4()),
        ])
        await session.commit()


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def counter() -> Actor:
    return Actor(id=uuid.uuid4(), role="counter")


@pytest.fixture
def supervisor() -> Actor:
    return Actor(id=uuid.uuid4(), role="supervisor")


# =============================================================================
# WORKFLOW HELPERS
# =============================================================================

@pytest.fixture
def create_inventory(db, counter):
    """Factory creating an inventory over location A (and B if asked)."""
    async def _create(code: str = "INV-001", locations=(LOCATION_A,), **kwargs):
        data = InventoryCreate(
            code=code,
            inventory_type=kwargs.pop("inventory_type", InventoryType.GENERAL),
            location_ids=list(locations),
            **kwargs,
        )
        return await InventoryService(db).create_inventory(data, counter)
    return _create


@pytest.fixture
def items_by_code(db):
    """Map product code -> item for a single-location inventory."""
    async def _items(inventory_id):
        items, _ = await InventoryService(db).list_items(inventory_id, limit=1000)
        return {item.product_code: item for item in items}
    return _items


@pytest.fixture
def count_round(db, counter):
    """Open a round, record the given counts, and finish the round."""
    async def _round(inventory_id, stage: int, quantities: dict, items: dict, finish: bool = True):
        service = InventoryService(db)
        await service.start_counting(inventory_id, counter)
        ledger = CountLedgerService(db)
        for code, quantity in quantities.items():
            await ledger.record_count(items[code].id, stage, Decimal(str(quantity)), counter)
        if finish:
            return await service.finish_counting(inventory_id, counter)
    return _round
