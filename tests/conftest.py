"""Pytest configuration and fixtures for SiteCost tests.

Provides environment defaults, sample domain models and a file-backed
SQLite database seeded with a small project.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from sitecost.config import MatchingConfig, reset_config
from sitecost.db.connection import create_engine_for_url, make_session_factory
from sitecost.db.models import (
    Base,
    EstimateLineItemModel,
    InvoiceLineItemModel,
    InvoiceModel,
    ProjectModel,
    TradeModel,
)
from sitecost.models import EstimateLineItem, InvoiceLineItem

PROJECT_ID = "proj-1"
OTHER_PROJECT_ID = "proj-2"


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Isolate tests from the developer's environment."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("ASSISTED_MATCHING_ENABLED", "false")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def switchboard_estimate() -> EstimateLineItem:
    """Estimate line item totalling 165.00 ((100 + 50) * 1.10)."""
    return EstimateLineItem(
        id="est-switchboard",
        trade_id="trade-elec",
        trade_name="Electrical",
        description="Switchboard supply and install",
        quantity=Decimal("1"),
        material_cost_est=Decimal("100.00"),
        labor_cost_est=Decimal("50.00"),
        markup_percent=Decimal("10"),
    )


@pytest.fixture
def hot_water_estimate() -> EstimateLineItem:
    return EstimateLineItem(
        id="est-hws",
        trade_id="trade-plumb",
        trade_name="Plumbing",
        description="Hot water cylinder 180L",
        quantity=Decimal("1"),
        material_cost_est=Decimal("900.00"),
        labor_cost_est=Decimal("300.00"),
    )


@pytest.fixture
def switchboard_invoice_item() -> InvoiceLineItem:
    return InvoiceLineItem(
        id="ili-1",
        invoice_id="inv-1",
        description="Switchboard supply",
        quantity=Decimal("1"),
        unit_price=Decimal("180.00"),
        total_price=Decimal("180.00"),
        invoice_trade_id="trade-elec",
    )


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> sessionmaker:
    """File-backed SQLite database with foreign keys enforced."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'sitecost.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield make_session_factory(engine)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncSession:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture()
async def seeded(session_factory) -> sessionmaker:
    """Seed one project with three trades, three estimate items and two invoices.

    Electrical: est-switchboard = 165.00
    Plumbing:   est-hws = 1200.00, est-pipework = 600.00
    Painting:   no estimate line items
    inv-1 (APPROVED, Electrical): ili-1 "Switchboard supply" 180.00
    inv-2 (PENDING, Plumbing):    ili-2 "Hot water cylinder 180L" 1200.00,
                                  ili-3 "Zzz qqq" 25.00 (matches nothing)
    """
    async with session_factory() as session:
        session.add_all(
            [
                ProjectModel(id=PROJECT_ID, name="Kitchen Renovation"),
                ProjectModel(id=OTHER_PROJECT_ID, name="Other Project"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                TradeModel(id="trade-elec", project_id=PROJECT_ID, name="Electrical", sort_order=1),
                TradeModel(id="trade-plumb", project_id=PROJECT_ID, name="Plumbing", sort_order=2),
                TradeModel(id="trade-paint", project_id=PROJECT_ID, name="Painting", sort_order=3),
                TradeModel(id="trade-other", project_id=OTHER_PROJECT_ID, name="Electrical"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                EstimateLineItemModel(
                    id="est-switchboard",
                    trade_id="trade-elec",
                    description="Switchboard supply and install",
                    quantity=Decimal("1"),
                    material_cost_est=Decimal("100.00"),
                    labor_cost_est=Decimal("50.00"),
                    markup_percent=Decimal("10"),
                ),
                EstimateLineItemModel(
                    id="est-hws",
                    trade_id="trade-plumb",
                    description="Hot water cylinder 180L",
                    quantity=Decimal("1"),
                    material_cost_est=Decimal("900.00"),
                    labor_cost_est=Decimal("300.00"),
                ),
                EstimateLineItemModel(
                    id="est-pipework",
                    trade_id="trade-plumb",
                    description="Copper pipework",
                    quantity=Decimal("40"),
                    unit="m",
                    material_cost_est=Decimal("400.00"),
                    labor_cost_est=Decimal("200.00"),
                    sort_order=1,
                ),
                EstimateLineItemModel(
                    id="est-other",
                    trade_id="trade-other",
                    description="Switchboard supply and install",
                    material_cost_est=Decimal("165.00"),
                ),
            ]
        )
        session.add_all(
            [
                InvoiceModel(
                    id="inv-1",
                    project_id=PROJECT_ID,
                    invoice_number="INV-001",
                    supplier_name="Sparky Ltd",
                    total_amount=Decimal("180.00"),
                    status="APPROVED",
                    trade_id="trade-elec",
                ),
                InvoiceModel(
                    id="inv-2",
                    project_id=PROJECT_ID,
                    invoice_number="INV-002",
                    supplier_name="Plumb Co",
                    total_amount=Decimal("1225.00"),
                    status="PENDING",
                    trade_id="trade-plumb",
                ),
            ]
        )
        await session.flush()
        session.add_all(
            [
                InvoiceLineItemModel(
                    id="ili-1",
                    invoice_id="inv-1",
                    description="Switchboard supply",
                    quantity=Decimal("1"),
                    unit_price=Decimal("180.00"),
                    total_price=Decimal("180.00"),
                ),
                InvoiceLineItemModel(
                    id="ili-2",
                    invoice_id="inv-2",
                    description="Hot water cylinder 180L",
                    quantity=Decimal("1"),
                    unit_price=Decimal("1200.00"),
                    total_price=Decimal("1200.00"),
                ),
                InvoiceLineItemModel(
                    id="ili-3",
                    invoice_id="inv-2",
                    description="Zzz qqq",
                    quantity=Decimal("1"),
                    unit_price=Decimal("25.00"),
                    total_price=Decimal("25.00"),
                    category="OTHER",
                ),
            ]
        )
        await session.commit()

    return session_factory
