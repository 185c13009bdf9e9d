"""Mapping store: persistence of invoice line item -> estimate line item mappings.

Enforces invariant: at most one mapping per invoice line item. The UNIQUE
constraint on invoice_line_item_id plus a single INSERT ... ON CONFLICT DO
UPDATE statement is what keeps one row per item; concurrent writers for the
same item leave exactly one row (last writer to commit wins).

The per-item asyncio lock only serialises statement execution within this
process. It is released before the caller commits, so it does not order
transactions.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from sitecost.core.errors import LineItemNotFoundError, MappingError, PersistenceError
from sitecost.db.connection import dialect_insert
from sitecost.db.models import (
    EstimateLineItemModel,
    InvoiceLineItemModel,
    InvoiceModel,
    LineItemMappingModel,
    TradeModel,
    new_id,
)
from sitecost.models import MappingView, MatchMethod, MatchResult

logger = logging.getLogger(__name__)

# In-process statement serialisation per invoice line item (not per transaction)
_item_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(invoice_line_item_id: str) -> asyncio.Lock:
    lock = _item_locks.get(invoice_line_item_id)
    if lock is None:
        lock = asyncio.Lock()
        _item_locks[invoice_line_item_id] = lock
    return lock


class MappingStore:
    """Mapping persistence for one session.

    The caller owns the transaction: writes are executed but not committed.
    """

    def __init__(self, session: AsyncSession):
        """Initialize mapping store with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def upsert_mapping(
        self,
        invoice_line_item_id: str,
        estimate_line_item_id: str,
        confidence: float,
        method: MatchMethod | str,
        created_by: str = "system",
    ) -> MatchResult:
        """Create or replace the mapping for an invoice line item.

        Args:
            invoice_line_item_id: Invoice line item being mapped
            estimate_line_item_id: Target estimate line item
            confidence: Match confidence in [0, 1]
            method: "llm", "logic" or "manual"
            created_by: User or "system"

        Returns:
            MatchResult describing the stored mapping

        Raises:
            MappingError: Unknown ids, cross-project pair, or invalid confidence/method
            PersistenceError: If the database write fails
        """
        if not 0 <= confidence <= 1:
            raise MappingError(f"Confidence must be between 0 and 1, got {confidence}")
        try:
            method = MatchMethod(method)
        except ValueError as e:
            raise MappingError(f"Unknown match method: {method}") from e

        try:
            await self._validate_pair(invoice_line_item_id, estimate_line_item_id)

            stmt = dialect_insert(self.session, LineItemMappingModel).values(
                id=new_id(),
                invoice_line_item_id=invoice_line_item_id,
                estimate_line_item_id=estimate_line_item_id,
                confidence=confidence,
                method=method.value,
                created_by=created_by,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[LineItemMappingModel.invoice_line_item_id],
                set_={
                    "estimate_line_item_id": stmt.excluded.estimate_line_item_id,
                    "confidence": stmt.excluded.confidence,
                    "method": stmt.excluded.method,
                    "created_by": stmt.excluded.created_by,
                    "updated_at": func.now(),
                },
            )
            async with _lock_for(invoice_line_item_id):
                await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to store mapping for {invoice_line_item_id}: {e}"
            ) from e

        logger.debug(
            f"Mapped {invoice_line_item_id} -> {estimate_line_item_id} "
            f"({method.value}, {confidence:.2f})"
        )
        return MatchResult(
            invoice_line_id=invoice_line_item_id,
            estimate_id=estimate_line_item_id,
            confidence=confidence,
            method=method,
        )

    async def override_mapping(
        self,
        invoice_line_item_id: str,
        estimate_line_item_id: str,
        created_by: str = "user",
    ) -> MatchResult:
        """Manual assignment by a user: confidence 1.0, method "manual"."""
        result = await self.upsert_mapping(
            invoice_line_item_id,
            estimate_line_item_id,
            confidence=1.0,
            method=MatchMethod.MANUAL,
            created_by=created_by,
        )
        result.reasoning = f"Manual override by {created_by}"
        return result

    async def clear_mapping(self, invoice_line_item_id: str) -> bool:
        """Remove the mapping for an invoice line item.

        Returns:
            True if a mapping was removed, False if the item was not mapped
        """
        try:
            async with _lock_for(invoice_line_item_id):
                result = await self.session.execute(
                    delete(LineItemMappingModel).where(
                        LineItemMappingModel.invoice_line_item_id == invoice_line_item_id
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to clear mapping for {invoice_line_item_id}: {e}"
            ) from e
        return result.rowcount > 0

    async def get_mapping(self, invoice_line_item_id: str) -> Optional[MatchResult]:
        row = (
            await self.session.execute(
                select(LineItemMappingModel).where(
                    LineItemMappingModel.invoice_line_item_id == invoice_line_item_id
                )
            )
        ).scalar_one_or_none()

        if row is None:
            return None

        return MatchResult(
            invoice_line_id=row.invoice_line_item_id,
            estimate_id=row.estimate_line_item_id,
            confidence=row.confidence,
            method=MatchMethod(row.method),
        )

    async def get_mappings_for_invoice(self, invoice_id: str) -> list[MappingView]:
        """Read projection of an invoice's mappings with their trades.

        Unmapped line items are not included.
        """
        stmt = (
            select(
                LineItemMappingModel,
                InvoiceLineItemModel.invoice_id,
                InvoiceLineItemModel.description,
                InvoiceLineItemModel.total_price,
                EstimateLineItemModel.description,
                TradeModel.id,
                TradeModel.name,
            )
            .join(
                InvoiceLineItemModel,
                InvoiceLineItemModel.id == LineItemMappingModel.invoice_line_item_id,
            )
            .join(
                EstimateLineItemModel,
                EstimateLineItemModel.id == LineItemMappingModel.estimate_line_item_id,
            )
            .join(TradeModel, TradeModel.id == EstimateLineItemModel.trade_id)
            .where(InvoiceLineItemModel.invoice_id == invoice_id)
            .order_by(InvoiceLineItemModel.id)
        )
        result = await self.session.execute(stmt)

        return [
            MappingView(
                invoice_line_item_id=mapping.invoice_line_item_id,
                invoice_id=inv_id,
                invoice_description=inv_description,
                total_price=total_price,
                estimate_line_item_id=mapping.estimate_line_item_id,
                estimate_description=est_description,
                trade_id=trade_id,
                trade_name=trade_name,
                confidence=mapping.confidence,
                method=MatchMethod(mapping.method),
                created_by=mapping.created_by,
                updated_at=mapping.updated_at,
            )
            for (
                mapping,
                inv_id,
                inv_description,
                total_price,
                est_description,
                trade_id,
                trade_name,
            ) in result.all()
        ]

    async def mapped_invoice_line_item_ids(
        self,
        invoice_line_item_ids: Iterable[str],
        methods: Optional[Iterable[MatchMethod | str]] = None,
    ) -> set[str]:
        """Subset of the given invoice line item ids that already have a mapping.

        Args:
            invoice_line_item_ids: Ids to check
            methods: Only count mappings made by these methods (default: any)
        """
        ids = list(invoice_line_item_ids)
        if not ids:
            return set()
        stmt = select(LineItemMappingModel.invoice_line_item_id).where(
            LineItemMappingModel.invoice_line_item_id.in_(ids)
        )
        if methods is not None:
            stmt = stmt.where(
                LineItemMappingModel.method.in_([MatchMethod(m).value for m in methods])
            )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def _validate_pair(self, invoice_line_item_id: str, estimate_line_item_id: str) -> None:
        invoice_project = (
            await self.session.execute(
                select(InvoiceModel.project_id)
                .join(InvoiceLineItemModel, InvoiceLineItemModel.invoice_id == InvoiceModel.id)
                .where(InvoiceLineItemModel.id == invoice_line_item_id)
            )
        ).scalar_one_or_none()
        if invoice_project is None:
            raise LineItemNotFoundError(f"Invoice line item not found: {invoice_line_item_id}")

        estimate_project = (
            await self.session.execute(
                select(TradeModel.project_id)
                .join(EstimateLineItemModel, EstimateLineItemModel.trade_id == TradeModel.id)
                .where(EstimateLineItemModel.id == estimate_line_item_id)
            )
        ).scalar_one_or_none()
        if estimate_project is None:
            raise LineItemNotFoundError(f"Estimate line item not found: {estimate_line_item_id}")

        if invoice_project != estimate_project:
            raise MappingError(
                f"Invoice line item {invoice_line_item_id} and estimate line item "
                f"{estimate_line_item_id} belong to different projects"
            )
