"""Tests for sitecost.web.routes.mappings - Mapping management routes."""

import pytest
from datetime import datetime
from decimal import Decimal
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock

from sitecost.db.connection import get_db
from sitecost.models import MappingView, MatchMethod, MatchResult
from sitecost.web.routes import mappings


@pytest.fixture
def mock_db_session():
    """Mock request-scoped database session."""
    session = AsyncMock()
    session.commit = AsyncMock()
    return session


@pytest.fixture
def app(mock_db_session):
    """Create test FastAPI app with mappings router."""
    test_app = FastAPI()
    test_app.include_router(mappings.router)

    async def override_get_db():
        yield mock_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


class TestOverrideMapping:
    """Tests for PUT /api/mappings/{invoice_line_item_id}."""

    @patch("sitecost.web.routes.mappings.MappingStore")
    def test_override_commits_and_returns_manual_match(self, mock_store_cls, client, mock_db_session):
        store = mock_store_cls.return_value
        store.override_mapping = AsyncMock(
            return_value=MatchResult(
                invoice_line_id="ili-1",
                estimate_id="est-hws",
                confidence=1.0,
                method=MatchMethod.MANUAL,
                reasoning="Manual override by pm@example.com",
            )
        )

        response = client.put(
            "/api/mappings/ili-1",
            json={"estimateLineItemId": "est-hws", "createdBy": "pm@example.com"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["estimateId"] == "est-hws"
        assert data["confidence"] == 1.0
        assert data["method"] == "manual"
        store.override_mapping.assert_awaited_once_with(
            "ili-1", "est-hws", created_by="pm@example.com"
        )
        mock_db_session.commit.assert_awaited_once()

    def test_override_requires_estimate_id(self, client):
        response = client.put("/api/mappings/ili-1", json={})

        assert response.status_code == 422


class TestDeleteMapping:
    """Tests for DELETE /api/mappings/{invoice_line_item_id}."""

    @patch("sitecost.web.routes.mappings.MappingStore")
    def test_delete_existing(self, mock_store_cls, client, mock_db_session):
        mock_store_cls.return_value.clear_mapping = AsyncMock(return_value=True)

        response = client.delete("/api/mappings/ili-1")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Mapping removed"}
        mock_db_session.commit.assert_awaited_once()

    @patch("sitecost.web.routes.mappings.MappingStore")
    def test_delete_unmapped_returns_404(self, mock_store_cls, client, mock_db_session):
        mock_store_cls.return_value.clear_mapping = AsyncMock(return_value=False)

        response = client.delete("/api/mappings/ili-9")

        assert response.status_code == 404
        mock_db_session.commit.assert_not_awaited()


class TestInvoiceMappings:
    """Tests for GET /api/invoices/{invoice_id}/mappings."""

    @patch("sitecost.web.routes.mappings.MappingStore")
    def test_lists_mappings_with_trade(self, mock_store_cls, client):
        mock_store_cls.return_value.get_mappings_for_invoice = AsyncMock(
            return_value=[
                MappingView(
                    invoice_line_item_id="ili-1",
                    invoice_id="inv-1",
                    invoice_description="Switchboard supply",
                    total_price=Decimal("180.00"),
                    estimate_line_item_id="est-switchboard",
                    estimate_description="Switchboard supply and install",
                    trade_id="trade-elec",
                    trade_name="Electrical",
                    confidence=0.9727,
                    method=MatchMethod.LOGIC,
                    created_by="system",
                    updated_at=datetime(2025, 1, 1, 12, 0, 0),
                )
            ]
        )

        response = client.get("/api/invoices/inv-1/mappings")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["tradeName"] == "Electrical"
        assert data[0]["totalPrice"] == 180.0
        assert data[0]["invoiceLineItemId"] == "ili-1"

    @patch("sitecost.web.routes.mappings.MappingStore")
    def test_invoice_without_mappings(self, mock_store_cls, client):
        mock_store_cls.return_value.get_mappings_for_invoice = AsyncMock(return_value=[])

        response = client.get("/api/invoices/inv-2/mappings")

        assert response.status_code == 200
        assert response.json() == []
