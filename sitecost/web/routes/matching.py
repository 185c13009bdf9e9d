"""Batch matching routes.

Routes:
- POST /api/projects/{project_id}/matching/run - Match a project's invoice line items
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from sitecost.matching.orchestrator import BatchMatchingOrchestrator
from sitecost.models import BulkMatchingResult
from sitecost.web.dependencies import get_orchestrator
from sitecost.web.models import MatchingRunRequest

router = APIRouter(prefix="/api/projects", tags=["matching"])


@router.post("/{project_id}/matching/run", response_model=BulkMatchingResult)
async def run_matching(
    project_id: str,
    body: MatchingRunRequest | None = None,
    orchestrator: BatchMatchingOrchestrator = Depends(get_orchestrator),
):
    """Run the matcher over unmapped (or the listed) invoice line items.

    Already-mapped items are skipped unless `rematch` is set, so repeating
    the call is safe. Manual overrides survive a rematch unless
    `includeManual` is also set.
    """
    body = body or MatchingRunRequest()
    return await orchestrator.match_all(
        project_id,
        invoice_line_item_ids=body.invoice_line_item_ids,
        rematch=body.rematch,
        include_manual=body.include_manual,
    )
