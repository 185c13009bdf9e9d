"""SiteCost Pydantic models for type-safe data validation.

Domain records (estimate tree, invoices) plus the consumer-facing result
shapes. Money is carried as Decimal and rendered as a JSON number; all
consumer-facing models serialise with camelCase keys.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Decimal internally, JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _new_id() -> str:
    return uuid4().hex


class InvoiceStatus(str, Enum):
    """Invoice approval lifecycle."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    DISPUTED = "DISPUTED"

    @property
    def counts_toward_actual(self) -> bool:
        return self in COUNTED_INVOICE_STATUSES


# Only these statuses contribute to actual cost
COUNTED_INVOICE_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.PAID})


class MatchMethod(str, Enum):
    """How a mapping was produced."""

    LLM = "llm"  # assisted classification
    LOGIC = "logic"  # heuristic stage or learned pattern
    MANUAL = "manual"  # user override, confidence forced to 1.0


class LineItemCategory(str, Enum):
    MATERIAL = "MATERIAL"
    LABOR = "LABOR"
    EQUIPMENT = "EQUIPMENT"
    OTHER = "OTHER"


class BudgetStatus(str, Enum):
    """Trade budget health classification."""

    NO_ESTIMATE = "no_estimate"
    ON_BUDGET = "on_budget"
    OVER_BUDGET = "over_budget"
    UNDER_BUDGET = "under_budget"


class CamelModel(BaseModel):
    """Base for consumer-facing shapes (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Cost Model
# ============================================================================


class EstimateLineItem(BaseModel):
    """Budgeted unit of work inside a trade."""

    id: str = Field(default_factory=_new_id)
    trade_id: str
    trade_name: str | None = None
    item_code: str | None = None
    description: str
    quantity: Decimal = ZERO
    unit: str = "ea"
    material_cost_est: Decimal = ZERO
    labor_cost_est: Decimal = ZERO
    equipment_cost_est: Decimal = ZERO
    markup_percent: Decimal = ZERO
    overhead_percent: Decimal = ZERO
    sort_order: int = 0

    @field_validator(
        "quantity",
        "material_cost_est",
        "labor_cost_est",
        "equipment_cost_est",
        "markup_percent",
        "overhead_percent",
    )
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("estimate amounts and percentages must be non-negative")
        return v

    @property
    def subtotal(self) -> Decimal:
        """Material + labor + equipment, before markup and overhead."""
        return self.material_cost_est + self.labor_cost_est + self.equipment_cost_est

    @property
    def estimate_total(self) -> Decimal:
        """Subtotal with this line item's own markup and overhead applied."""
        factor = 1 + self.markup_percent / HUNDRED + self.overhead_percent / HUNDRED
        return self.subtotal * factor

    class Config:
        json_schema_extra = {
            "example": {
                "trade_id": "trade-electrical",
                "description": "Switchboard supply and install",
                "quantity": Decimal("1"),
                "unit": "ea",
                "material_cost_est": Decimal("100.00"),
                "labor_cost_est": Decimal("50.00"),
                "equipment_cost_est": Decimal("0.00"),
                "markup_percent": Decimal("10"),
                "overhead_percent": Decimal("0"),
            }
        }


class Trade(BaseModel):
    """Cost category within a project (Electrical, Plumbing, ...)."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    name: str
    description: str | None = None
    sort_order: int = 0
    line_items: list[EstimateLineItem] = Field(default_factory=list)

    @property
    def estimated_total(self) -> Decimal:
        return sum((item.estimate_total for item in self.line_items), ZERO)


class InvoiceLineItem(BaseModel):
    """Billed charge from a supplier, to be reconciled against the estimate."""

    id: str = Field(default_factory=_new_id)
    invoice_id: str
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    total_price: Decimal
    category: LineItemCategory = LineItemCategory.MATERIAL

    # Denormalised from the parent invoice for matching
    supplier_name: str | None = None
    invoice_trade_id: str | None = None

    @model_validator(mode="after")
    def validate_total_price(self) -> InvoiceLineItem:
        expected = self.quantity * self.unit_price
        tolerance = max(Decimal("0.05"), abs(self.total_price) * Decimal("0.01"))
        if abs(expected - self.total_price) > tolerance:
            raise ValueError(
                f"total_price {self.total_price} does not equal quantity * unit_price "
                f"({expected}) within tolerance {tolerance}"
            )
        return self


class Invoice(BaseModel):
    """Supplier invoice belonging to a project."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    invoice_number: str
    supplier_name: str
    invoice_date: date | None = None
    total_amount: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.PENDING
    trade_id: str | None = None  # trade the invoice was imported under
    line_items: list[InvoiceLineItem] = Field(default_factory=list)

    @property
    def counts_toward_actual(self) -> bool:
        return self.status.counts_toward_actual


# ============================================================================
# Matching results
# ============================================================================


class MatchResult(CamelModel):
    """Best estimate line item for one invoice line item."""

    invoice_line_id: str
    estimate_id: str
    confidence: float
    method: MatchMethod
    reasoning: str | None = None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("confidence must be between 0 and 1")
        return v


class ProcessingDetails(CamelModel):
    """Throughput and quality telemetry for one batch run."""

    processing_time_ms: int = 0
    average_time_per_item: float = 0.0
    throughput_items_per_second: float = 0.0
    llm_attempts: int = 0
    llm_matches: int = 0
    llm_failures: int = 0
    logic_matches: int = 0
    patterns_used: int = 0
    batch_size: int = 0


class MappingFailure(CamelModel):
    """A mapping that could not be persisted."""

    invoice_line_item_id: str
    error: str


class BulkMatchingResult(CamelModel):
    """Aggregate outcome of a batch matching run."""

    success: bool
    total_invoices: int = 0
    total_line_items: int = 0
    matched_items: int = 0
    unmatched_items: int = 0
    average_confidence: float = 0.0
    matches: list[MatchResult] = Field(default_factory=list)
    processing_details: ProcessingDetails = Field(default_factory=ProcessingDetails)
    error: str | None = None
    errors: list[MappingFailure] = Field(default_factory=list)


class MappingView(CamelModel):
    """Read projection of a mapping joined with its estimate line item's trade."""

    invoice_line_item_id: str
    invoice_id: str
    invoice_description: str
    total_price: Money
    estimate_line_item_id: str
    estimate_description: str
    trade_id: str
    trade_name: str
    confidence: float
    method: MatchMethod
    created_by: str | None = None
    updated_at: datetime | None = None


# ============================================================================
# Cost tracking (estimate vs. actual)
# ============================================================================


class LineItemCost(CamelModel):
    id: str
    description: str
    quantity: Money
    unit: str
    material_cost_est: Money
    labor_cost_est: Money
    equipment_cost_est: Money
    markup_percent: Money
    overhead_percent: Money
    total_estimate: Money
    actual_spent: Money
    percent_complete: Money


class TradeCostSummary(CamelModel):
    id: str
    name: str
    description: str | None = None
    sort_order: int = 0
    line_items: list[LineItemCost] = Field(default_factory=list)
    actual_spent: Money
    estimated_total: Money
    remaining_budget: Money
    percent_spent: Money
    variance: Money
    variance_percent: Money
    status: BudgetStatus


class ProjectCostSummary(CamelModel):
    total_estimated: Money
    total_actual: Money
    total_variance: Money
    variance_percent: Money
    total_remaining: Money
    trades_on_budget: int
    trades_over_budget: int
    trades_under_budget: int
    percent_complete: Money


class CostTrackingResponse(CamelModel):
    trades: list[TradeCostSummary]
    summary: ProjectCostSummary


# ============================================================================
# Correction log
# ============================================================================


class CorrectionEntry(CamelModel):
    """One append-only user correction of a parsed field."""

    id: str
    field: str
    original_value: str | None = None
    corrected_value: str
    invoice_id: str | None = None
    created_by: str
    created_at: datetime
