"""Database layer for SiteCost with async SQLAlchemy."""

from sitecost.db.connection import get_session, init_db
from sitecost.db.models import (
    Base,
    CorrectionLogModel,
    EstimateLineItemModel,
    InvoiceLineItemModel,
    InvoiceModel,
    LineItemMappingModel,
    MatchPatternModel,
    ProjectModel,
    TradeModel,
)

__all__ = [
    "Base",
    "ProjectModel",
    "TradeModel",
    "EstimateLineItemModel",
    "InvoiceModel",
    "InvoiceLineItemModel",
    "LineItemMappingModel",
    "MatchPatternModel",
    "CorrectionLogModel",
    "get_session",
    "init_db",
]
