"""SiteCost: estimate-to-invoice reconciliation for construction projects."""

__version__ = "0.1.0"
