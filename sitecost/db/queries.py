"""Read helpers that load domain models from the database.

Rows are converted to Pydantic models at this boundary so matching and
reporting code never touches ORM instances.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.db.models import (
    EstimateLineItemModel,
    InvoiceLineItemModel,
    InvoiceModel,
    LineItemMappingModel,
    ProjectModel,
    TradeModel,
)
from sitecost.models import (
    COUNTED_INVOICE_STATUSES,
    EstimateLineItem,
    InvoiceLineItem,
    LineItemCategory,
    Trade,
)


async def get_project(session: AsyncSession, project_id: str) -> Optional[ProjectModel]:
    return await session.get(ProjectModel, project_id)


async def load_trades(session: AsyncSession, project_id: str) -> list[Trade]:
    """Load a project's trades with their estimate line items.

    Trades and line items are ordered by sort_order then id.

    Args:
        session: Database session
        project_id: Project to load

    Returns:
        List of Trade models (empty if the project has none)
    """
    trade_rows = (
        await session.execute(
            select(TradeModel)
            .where(TradeModel.project_id == project_id)
            .order_by(TradeModel.sort_order, TradeModel.id)
        )
    ).scalars().all()

    items_by_trade: dict[str, list[EstimateLineItem]] = defaultdict(list)
    for item in await load_estimate_line_items(session, project_id):
        items_by_trade[item.trade_id].append(item)

    return [
        Trade(
            id=row.id,
            project_id=row.project_id,
            name=row.name,
            description=row.description,
            sort_order=row.sort_order,
            line_items=items_by_trade.get(row.id, []),
        )
        for row in trade_rows
    ]


async def load_estimate_line_items(
    session: AsyncSession, project_id: str
) -> list[EstimateLineItem]:
    """Load every estimate line item of a project, with its trade name."""
    stmt = (
        select(EstimateLineItemModel, TradeModel.name)
        .join(TradeModel, TradeModel.id == EstimateLineItemModel.trade_id)
        .where(TradeModel.project_id == project_id)
        .order_by(
            TradeModel.sort_order,
            TradeModel.id,
            EstimateLineItemModel.sort_order,
            EstimateLineItemModel.id,
        )
    )
    result = await session.execute(stmt)

    return [_row_to_estimate_line_item(row, trade_name) for row, trade_name in result.all()]


async def load_invoice_line_items(
    session: AsyncSession,
    project_id: str,
    invoice_line_item_ids: Optional[list[str]] = None,
) -> list[InvoiceLineItem]:
    """Load a project's invoice line items, optionally restricted to a subset.

    Ids that do not belong to the project are silently ignored.
    """
    stmt = (
        select(InvoiceLineItemModel, InvoiceModel.supplier_name, InvoiceModel.trade_id)
        .join(InvoiceModel, InvoiceModel.id == InvoiceLineItemModel.invoice_id)
        .where(InvoiceModel.project_id == project_id)
        .order_by(InvoiceModel.id, InvoiceLineItemModel.id)
    )
    if invoice_line_item_ids is not None:
        stmt = stmt.where(InvoiceLineItemModel.id.in_(invoice_line_item_ids))

    result = await session.execute(stmt)

    return [
        _row_to_invoice_line_item(row, supplier_name, trade_id)
        for row, supplier_name, trade_id in result.all()
    ]


async def load_actuals(session: AsyncSession, project_id: str) -> dict[str, Decimal]:
    """Sum mapped invoice line item totals per estimate line item.

    Only invoices in a counted status (APPROVED, PAID) contribute. Sums are
    taken in Python so they stay exact Decimals on every backend.

    Returns:
        Mapping of estimate_line_item_id -> actual spent
    """
    stmt = (
        select(LineItemMappingModel.estimate_line_item_id, InvoiceLineItemModel.total_price)
        .join(
            InvoiceLineItemModel,
            InvoiceLineItemModel.id == LineItemMappingModel.invoice_line_item_id,
        )
        .join(InvoiceModel, InvoiceModel.id == InvoiceLineItemModel.invoice_id)
        .where(
            InvoiceModel.project_id == project_id,
            InvoiceModel.status.in_([s.value for s in COUNTED_INVOICE_STATUSES]),
        )
    )
    result = await session.execute(stmt)

    actuals: dict[str, Decimal] = defaultdict(Decimal)
    for estimate_line_item_id, total_price in result.all():
        actuals[estimate_line_item_id] += Decimal(total_price)
    return dict(actuals)


def _row_to_estimate_line_item(
    row: EstimateLineItemModel, trade_name: str | None = None
) -> EstimateLineItem:
    return EstimateLineItem(
        id=row.id,
        trade_id=row.trade_id,
        trade_name=trade_name,
        item_code=row.item_code,
        description=row.description,
        quantity=row.quantity,
        unit=row.unit,
        material_cost_est=row.material_cost_est,
        labor_cost_est=row.labor_cost_est,
        equipment_cost_est=row.equipment_cost_est,
        markup_percent=row.markup_percent,
        overhead_percent=row.overhead_percent,
        sort_order=row.sort_order,
    )


def _row_to_invoice_line_item(
    row: InvoiceLineItemModel,
    supplier_name: str | None = None,
    invoice_trade_id: str | None = None,
) -> InvoiceLineItem:
    # Stored rows were validated on the way in; skip the price tolerance check
    return InvoiceLineItem.model_construct(
        id=row.id,
        invoice_id=row.invoice_id,
        description=row.description,
        quantity=Decimal(row.quantity),
        unit_price=Decimal(row.unit_price),
        total_price=Decimal(row.total_price),
        category=LineItemCategory(row.category),
        supplier_name=supplier_name,
        invoice_trade_id=invoice_trade_id,
    )
