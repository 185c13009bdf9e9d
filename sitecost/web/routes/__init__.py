"""SiteCost web route modules.

Each module exports a `router` (APIRouter instance) that the app includes.
"""

from sitecost.web.routes import corrections, cost_tracking, health, mappings, matching

__all__ = ["corrections", "cost_tracking", "health", "mappings", "matching"]
