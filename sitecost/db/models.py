"""SQLAlchemy async database models for SiteCost.

Maps to PostgreSQL (SQLite in development/tests). Foreign keys carry the
delete cascades; the mapping table enforces at most one mapping per invoice
line item.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


def new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ProjectModel(Base):
    """Construction project owning trades and invoices."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NZD")
    total_budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class TradeModel(Base):
    """Cost category within a project."""

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_trades_project_order", "project_id", "sort_order"),)


class EstimateLineItemModel(Base):
    """Budgeted line item under a trade."""

    __tablename__ = "estimate_line_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    trade_id: Mapped[str] = mapped_column(
        Text, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_code: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=0)
    unit: Mapped[str] = mapped_column(Text, nullable=False, default="ea")

    material_cost_est: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    labor_cost_est: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    equipment_cost_est: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=0)
    overhead_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="check_estimate_quantity_non_negative"),
        CheckConstraint(
            "material_cost_est >= 0 AND labor_cost_est >= 0 AND equipment_cost_est >= 0",
            name="check_estimate_costs_non_negative",
        ),
        CheckConstraint(
            "markup_percent >= 0 AND overhead_percent >= 0",
            name="check_estimate_percents_non_negative",
        ),
    )


class InvoiceModel(Base):
    """Supplier invoice header."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    invoice_date: Mapped[date | None] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", index=True)

    # Trade the invoice was imported under (tie-break hint for matching)
    trade_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("trades.id", ondelete="SET NULL")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'PAID', 'REJECTED', 'DISPUTED')",
            name="check_invoice_status_valid",
        ),
    )


class InvoiceLineItemModel(Base):
    """Billed charge on an invoice."""

    __tablename__ = "invoice_line_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    invoice_id: Mapped[str] = mapped_column(
        Text, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default="MATERIAL")


class LineItemMappingModel(Base):
    """Association of one invoice line item with one estimate line item."""

    __tablename__ = "line_item_mappings"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    invoice_line_item_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("invoice_line_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    estimate_line_item_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("estimate_line_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="check_mapping_confidence_range"
        ),
        CheckConstraint(
            "method IN ('llm', 'logic', 'manual')", name="check_mapping_method_valid"
        ),
    )


class MatchPatternModel(Base):
    """Learned description pattern -> estimate line item, per project."""

    __tablename__ = "match_patterns"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    pattern_key: Mapped[str] = mapped_column(Text, nullable=False)
    estimate_line_item_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("estimate_line_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("project_id", "pattern_key", name="uq_match_patterns_project_key"),
    )


class CorrectionLogModel(Base):
    """Append-only record of user corrections to parsed invoice fields.

    No foreign key to invoices; entries outlive the invoices they came from.
    """

    __tablename__ = "correction_log"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    field: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    original_value: Mapped[str | None] = mapped_column(Text)
    corrected_value: Mapped[str] = mapped_column(Text, nullable=False)
    invoice_id: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
