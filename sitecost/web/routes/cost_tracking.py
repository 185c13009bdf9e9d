"""Cost tracking routes.

Routes:
- GET /api/projects/{project_id}/cost-tracking - Estimate vs. actual per trade
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.db.connection import get_db
from sitecost.models import CostTrackingResponse
from sitecost.reporting.cost_tracking import compute_project_cost_tracking

router = APIRouter(prefix="/api/projects", tags=["cost-tracking"])


@router.get("/{project_id}/cost-tracking", response_model=CostTrackingResponse)
async def get_cost_tracking(project_id: str, db: AsyncSession = Depends(get_db)):
    """Estimated vs. actual cost for every trade and the project summary.

    Only APPROVED and PAID invoices count toward actual spend.
    """
    return await compute_project_cost_tracking(db, project_id)
