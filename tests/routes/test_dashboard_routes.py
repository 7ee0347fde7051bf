"""
Tests for the owner dashboard routes.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from routes.dashboard_routes import router
from utils.authentication import get_authenticated_user_id
from utils.portfolio.inventory_provider import InventoryProviderError
from utils.portfolio.models import Snapshot

app = FastAPI()
app.include_router(router)
app.dependency_overrides[get_authenticated_user_id] = lambda: "user-123"
client = TestClient(app)


def fake_view(snapshot_saved=True):
    view = MagicMock()
    view.snapshot_saved = snapshot_saved
    view.to_dict.return_value = {"summary": {"total_value": 100.0}, "read_only": False}
    return view


class TestGetDashboard:

    def test_returns_owner_view(self):
        service = MagicMock()
        service.build_dashboard = AsyncMock(return_value=fake_view())

        with patch("routes.dashboard_routes.get_valuation_service", return_value=service):
            response = client.get("/api/dashboard")

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["total_value"] == 100.0
        assert data["snapshot_saved"] is True

        context = service.build_dashboard.call_args[0][0]
        assert context.user_id == "user-123"
        assert context.read_only is False

    def test_inventory_unavailable_is_503(self):
        service = MagicMock()
        service.build_dashboard = AsyncMock(side_effect=InventoryProviderError("Failed to read profile", "user-123"))

        with patch("routes.dashboard_routes.get_valuation_service", return_value=service):
            response = client.get("/api/dashboard")

        assert response.status_code == 503
        assert response.json()["detail"] == "Failed to read profile"

    def test_unexpected_error_is_500(self):
        service = MagicMock()
        service.build_dashboard = AsyncMock(side_effect=RuntimeError("bug"))

        with patch("routes.dashboard_routes.get_valuation_service", return_value=service):
            response = client.get("/api/dashboard")

        assert response.status_code == 500
        assert response.json()["detail"] == "Error building dashboard"


class TestGetDashboardHistory:

    def test_history(self):
        snapshots = MagicMock()
        snapshots.list_since = AsyncMock(return_value=[
            Snapshot(user_id="user-123", snapshot_date=date(2026, 3, 1),
                     total_value_usd=Decimal("10"), total_value_eur=Decimal("9")),
        ])

        with patch("routes.dashboard_routes.get_snapshot_service", return_value=snapshots):
            response = client.get("/api/dashboard/history?days=30")

        assert response.status_code == 200
        assert response.json()["snapshots"][0]["snapshot_date"] == "2026-03-01"
        snapshots.list_since.assert_awaited_once_with("user-123", 30)

    def test_days_are_validated(self):
        assert client.get("/api/dashboard/history?days=0").status_code == 422
        assert client.get("/api/dashboard/history?days=100000").status_code == 422
