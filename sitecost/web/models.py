"""Request/response models for the SiteCost web API.

Usage:
    from sitecost.web.models import MatchingRunRequest

    @router.post("/api/projects/{project_id}/matching/run")
    async def run_matching(project_id: str, body: MatchingRunRequest):
        ...
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from sitecost.models import CamelModel


# ============================================================================
# Matching & Mapping Models
# ============================================================================


class MatchingRunRequest(CamelModel):
    """Body of POST /api/projects/{project_id}/matching/run."""

    invoice_line_item_ids: Optional[list[str]] = None
    rematch: bool = False
    include_manual: bool = False


class MappingOverrideRequest(CamelModel):
    """Body of PUT /api/mappings/{invoice_line_item_id}."""

    estimate_line_item_id: str = Field(min_length=1)
    created_by: str = "user"


class MappingDeleteResponse(CamelModel):
    success: bool
    message: str


# ============================================================================
# Correction Log Models
# ============================================================================


class CorrectionRequest(CamelModel):
    """Body of POST /api/corrections."""

    field: str = Field(min_length=1)
    original_value: Optional[str] = None
    corrected_value: str = Field(min_length=1)
    invoice_id: Optional[str] = None
    created_by: str = "system"


class CorrectionStatsResponse(CamelModel):
    total: int
    by_field: dict[str, int]
