"""Mapping management routes.

Routes:
- PUT    /api/mappings/{invoice_line_item_id} - Manually assign an estimate line item
- DELETE /api/mappings/{invoice_line_item_id} - Unmatch an invoice line item
- GET    /api/invoices/{invoice_id}/mappings  - Mappings of an invoice with trades
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.db.connection import get_db
from sitecost.mapping.store import MappingStore
from sitecost.models import MappingView, MatchResult
from sitecost.web.models import MappingDeleteResponse, MappingOverrideRequest

router = APIRouter(prefix="/api", tags=["mappings"])


@router.put("/mappings/{invoice_line_item_id}", response_model=MatchResult)
async def override_mapping(
    invoice_line_item_id: str,
    body: MappingOverrideRequest,
    db: AsyncSession = Depends(get_db),
):
    """Assign an invoice line item to an estimate line item (confidence 1.0, manual)."""
    result = await MappingStore(db).override_mapping(
        invoice_line_item_id,
        body.estimate_line_item_id,
        created_by=body.created_by,
    )
    await db.commit()
    return result


@router.delete("/mappings/{invoice_line_item_id}", response_model=MappingDeleteResponse)
async def delete_mapping(invoice_line_item_id: str, db: AsyncSession = Depends(get_db)):
    """Remove the mapping; the invoice line item becomes pending again."""
    removed = await MappingStore(db).clear_mapping(invoice_line_item_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Mapping not found")
    await db.commit()
    return MappingDeleteResponse(success=True, message="Mapping removed")


@router.get("/invoices/{invoice_id}/mappings", response_model=list[MappingView])
async def invoice_mappings(invoice_id: str, db: AsyncSession = Depends(get_db)):
    return await MappingStore(db).get_mappings_for_invoice(invoice_id)
