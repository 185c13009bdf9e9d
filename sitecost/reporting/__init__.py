"""Reporting module for SiteCost.

Computes estimate vs. actual variance per line item, trade and project.
"""

from sitecost.reporting.cost_tracking import build_cost_tracking, compute_project_cost_tracking

__all__ = ["build_cost_tracking", "compute_project_cost_tracking"]
