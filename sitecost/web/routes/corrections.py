"""Correction log routes.

Routes:
- POST /api/corrections        - Record a user correction
- GET  /api/corrections        - List recent corrections
- GET  /api/corrections/stats  - Correction counts per field
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.db.connection import get_db
from sitecost.feedback.corrections import CorrectionLog
from sitecost.models import CorrectionEntry
from sitecost.web.models import CorrectionRequest, CorrectionStatsResponse

router = APIRouter(prefix="/api/corrections", tags=["corrections"])


@router.post("", response_model=CorrectionEntry, status_code=status.HTTP_201_CREATED)
async def record_correction(body: CorrectionRequest, db: AsyncSession = Depends(get_db)):
    entry = await CorrectionLog(db).append(
        field=body.field,
        original_value=body.original_value,
        corrected_value=body.corrected_value,
        invoice_id=body.invoice_id,
        created_by=body.created_by,
    )
    await db.commit()
    return entry


@router.get("", response_model=list[CorrectionEntry])
async def list_corrections(
    field: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    return await CorrectionLog(db).entries(field=field, limit=limit)


@router.get("/stats", response_model=CorrectionStatsResponse)
async def correction_stats(db: AsyncSession = Depends(get_db)):
    by_field = await CorrectionLog(db).stats()
    return CorrectionStatsResponse(total=sum(by_field.values()), by_field=by_field)
