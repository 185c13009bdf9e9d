"""Append-only log of user corrections to parsed invoice fields.

Corrections feed later parser tuning. Entries are never updated or deleted.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sitecost.core.errors import PersistenceError
from sitecost.db.models import CorrectionLogModel
from sitecost.models import CorrectionEntry

logger = logging.getLogger(__name__)


class CorrectionLog:
    """Correction log for one session. The caller owns the transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        field: str,
        original_value: Optional[str],
        corrected_value: str,
        invoice_id: Optional[str] = None,
        created_by: str = "system",
    ) -> CorrectionEntry:
        """Record one correction.

        Args:
            field: Name of the corrected field (e.g. "supplier_name")
            original_value: Value the parser produced
            corrected_value: Value the user entered
            invoice_id: Invoice the correction was made on, if any
            created_by: User email or "system"

        Returns:
            The stored entry

        Raises:
            ValueError: If field or corrected_value is empty
            PersistenceError: If the write fails
        """
        if not field or not field.strip():
            raise ValueError("field is required")
        if corrected_value is None or corrected_value == "":
            raise ValueError("corrected_value is required")

        row = CorrectionLogModel(
            field=field.strip(),
            original_value=original_value,
            corrected_value=corrected_value,
            invoice_id=invoice_id,
            created_by=created_by,
        )
        try:
            self.session.add(row)
            await self.session.flush()
            await self.session.refresh(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record correction for {field}: {e}") from e

        logger.info(f"Correction recorded for '{row.field}' by {created_by}")
        return _row_to_entry(row)

    async def entries(self, field: Optional[str] = None, limit: int = 100) -> list[CorrectionEntry]:
        """Most recent corrections first, optionally for one field."""
        stmt = select(CorrectionLogModel).order_by(
            CorrectionLogModel.created_at.desc(), CorrectionLogModel.id
        )
        if field:
            stmt = stmt.where(CorrectionLogModel.field == field)
        stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return [_row_to_entry(row) for row in result.scalars().all()]

    async def stats(self) -> dict[str, int]:
        """Number of corrections per field."""
        result = await self.session.execute(
            select(CorrectionLogModel.field, func.count(CorrectionLogModel.id))
            .group_by(CorrectionLogModel.field)
            .order_by(CorrectionLogModel.field)
        )
        return {field: count for field, count in result.all()}


def _row_to_entry(row: CorrectionLogModel) -> CorrectionEntry:
    return CorrectionEntry(
        id=row.id,
        field=row.field,
        original_value=row.original_value,
        corrected_value=row.corrected_value,
        invoice_id=row.invoice_id,
        created_by=row.created_by,
        created_at=row.created_at,
    )
