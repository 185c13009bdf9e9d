"""Tests for sitecost.web.routes.matching - Batch matching routes."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from sitecost.models import BulkMatchingResult, MatchMethod, MatchResult, ProcessingDetails
from sitecost.web.dependencies import get_orchestrator
from sitecost.web.routes import matching


@pytest.fixture
def mock_orchestrator():
    """Orchestrator whose match_all returns a one-match result."""
    orchestrator = MagicMock()
    orchestrator.match_all = AsyncMock(
        return_value=BulkMatchingResult(
            success=True,
            total_invoices=1,
            total_line_items=2,
            matched_items=1,
            unmatched_items=1,
            average_confidence=0.9727,
            matches=[
                MatchResult(
                    invoice_line_id="ili-1",
                    estimate_id="est-switchboard",
                    confidence=0.9727,
                    method=MatchMethod.LOGIC,
                )
            ],
            processing_details=ProcessingDetails(logic_matches=1, batch_size=5),
        )
    )
    return orchestrator


@pytest.fixture
def app(mock_orchestrator):
    """Create test FastAPI app with matching router."""
    test_app = FastAPI()
    test_app.include_router(matching.router)
    test_app.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    return test_app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


class TestRunMatching:
    """Tests for POST /api/projects/{project_id}/matching/run."""

    def test_run_without_body(self, client, mock_orchestrator):
        response = client.post("/api/projects/proj-1/matching/run")

        assert response.status_code == 200
        mock_orchestrator.match_all.assert_awaited_once_with(
            "proj-1", invoice_line_item_ids=None, rematch=False, include_manual=False
        )

    def test_response_is_camel_case(self, client):
        data = client.post("/api/projects/proj-1/matching/run").json()

        assert data["success"] is True
        assert data["totalLineItems"] == 2
        assert data["matchedItems"] == 1
        assert data["unmatchedItems"] == 1
        assert data["matches"][0]["invoiceLineId"] == "ili-1"
        assert data["matches"][0]["method"] == "logic"
        assert data["processingDetails"]["logicMatches"] == 1
        assert data["processingDetails"]["batchSize"] == 5
        assert data["error"] is None

    def test_subset_and_rematch(self, client, mock_orchestrator):
        response = client.post(
            "/api/projects/proj-1/matching/run",
            json={"invoiceLineItemIds": ["ili-2"], "rematch": True},
        )

        assert response.status_code == 200
        mock_orchestrator.match_all.assert_awaited_once_with(
            "proj-1", invoice_line_item_ids=["ili-2"], rematch=True, include_manual=False
        )

    def test_include_manual_passed_through(self, client, mock_orchestrator):
        response = client.post(
            "/api/projects/proj-1/matching/run",
            json={"rematch": True, "includeManual": True},
        )

        assert response.status_code == 200
        mock_orchestrator.match_all.assert_awaited_once_with(
            "proj-1", invoice_line_item_ids=None, rematch=True, include_manual=True
        )

    def test_invalid_body_rejected(self, client, mock_orchestrator):
        response = client.post(
            "/api/projects/proj-1/matching/run", json={"rematch": "sometimes"}
        )

        assert response.status_code == 422
        mock_orchestrator.match_all.assert_not_awaited()
