"""Estimate vs. actual cost tracking.

Aggregates mapped invoice spend against estimate line items, trades and the
project. Only invoices in a counted status (APPROVED, PAID) contribute to
actuals. All arithmetic is Decimal; percentages are rounded to 2 places for
display after status has been decided on the exact values.

Results are computed on every call and never cached. They reflect whatever
mappings were committed when the read transaction started, so a batch
running concurrently may not be visible yet.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.core.errors import PersistenceError, ProjectNotFoundError
from sitecost.db.queries import get_project, load_actuals, load_trades
from sitecost.models import (
    HUNDRED,
    ZERO,
    BudgetStatus,
    CostTrackingResponse,
    EstimateLineItem,
    LineItemCost,
    ProjectCostSummary,
    Trade,
    TradeCostSummary,
)

logger = logging.getLogger(__name__)

# |variance %| within this band counts as on budget
ON_BUDGET_TOLERANCE_PERCENT = Decimal("5")

_CENT = Decimal("0.01")


def _pct(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _ratio_percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator * 100, or 0 when there is nothing to divide by."""
    if denominator == 0:
        return ZERO
    return numerator / denominator * HUNDRED


def classify_budget_status(estimated: Decimal, variance_percent: Decimal, variance: Decimal) -> BudgetStatus:
    """Budget health for a trade.

    no_estimate when nothing was budgeted; on_budget within ±5 %; otherwise
    over or under by the sign of the variance.
    """
    if estimated == 0:
        return BudgetStatus.NO_ESTIMATE
    if abs(variance_percent) <= ON_BUDGET_TOLERANCE_PERCENT:
        return BudgetStatus.ON_BUDGET
    if variance > 0:
        return BudgetStatus.OVER_BUDGET
    return BudgetStatus.UNDER_BUDGET


def line_item_cost(item: EstimateLineItem, actual: Decimal) -> LineItemCost:
    total_estimate = item.estimate_total
    percent_complete = (
        min(actual / total_estimate * HUNDRED, HUNDRED) if total_estimate > 0 else ZERO
    )
    return LineItemCost(
        id=item.id,
        description=item.description,
        quantity=item.quantity,
        unit=item.unit,
        material_cost_est=item.material_cost_est,
        labor_cost_est=item.labor_cost_est,
        equipment_cost_est=item.equipment_cost_est,
        markup_percent=item.markup_percent,
        overhead_percent=item.overhead_percent,
        total_estimate=total_estimate,
        actual_spent=actual,
        percent_complete=_pct(percent_complete),
    )


def trade_cost_summary(trade: Trade, actuals: dict[str, Decimal]) -> TradeCostSummary:
    line_items = [line_item_cost(item, actuals.get(item.id, ZERO)) for item in trade.line_items]

    estimated = sum((li.total_estimate for li in line_items), ZERO)
    actual = sum((li.actual_spent for li in line_items), ZERO)
    variance = actual - estimated
    variance_percent = _ratio_percent(variance, estimated)

    return TradeCostSummary(
        id=trade.id,
        name=trade.name,
        description=trade.description,
        sort_order=trade.sort_order,
        line_items=line_items,
        actual_spent=actual,
        estimated_total=estimated,
        remaining_budget=max(estimated - actual, ZERO),
        percent_spent=_pct(_ratio_percent(actual, estimated)),
        variance=variance,
        variance_percent=_pct(variance_percent),
        status=classify_budget_status(estimated, variance_percent, variance),
    )


def build_cost_tracking(trades: list[Trade], actuals: dict[str, Decimal]) -> CostTrackingResponse:
    """Aggregate estimate and actual cost per line item, trade and project.

    Args:
        trades: Project trades with their estimate line items
        actuals: estimate_line_item_id -> counted actual spend

    Returns:
        CostTrackingResponse with per-trade detail and project summary
    """
    summaries = [trade_cost_summary(trade, actuals) for trade in trades]

    total_estimated = sum((t.estimated_total for t in summaries), ZERO)
    total_actual = sum((t.actual_spent for t in summaries), ZERO)
    total_variance = total_actual - total_estimated

    summary = ProjectCostSummary(
        total_estimated=total_estimated,
        total_actual=total_actual,
        total_variance=total_variance,
        variance_percent=_pct(_ratio_percent(total_variance, total_estimated)),
        total_remaining=max(total_estimated - total_actual, ZERO),
        trades_on_budget=sum(1 for t in summaries if t.status == BudgetStatus.ON_BUDGET),
        trades_over_budget=sum(1 for t in summaries if t.status == BudgetStatus.OVER_BUDGET),
        trades_under_budget=sum(1 for t in summaries if t.status == BudgetStatus.UNDER_BUDGET),
        percent_complete=_pct(_ratio_percent(total_actual, total_estimated)),
    )

    return CostTrackingResponse(trades=summaries, summary=summary)


async def compute_project_cost_tracking(
    session: AsyncSession, project_id: str
) -> CostTrackingResponse:
    """Load a project's estimate and counted actuals and aggregate them.

    Raises:
        ProjectNotFoundError: If the project does not exist
        PersistenceError: If the database read fails
    """
    try:
        if await get_project(session, project_id) is None:
            raise ProjectNotFoundError(project_id)

        trades = await load_trades(session, project_id)
        actuals = await load_actuals(session, project_id)
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to load cost tracking for {project_id}: {e}") from e

    logger.debug(
        f"Cost tracking for {project_id}: {len(trades)} trades, "
        f"{len(actuals)} estimate line items with spend"
    )
    return build_cost_tracking(trades, actuals)
