"""
Smoke tests for the assembled FastAPI app.
"""

from fastapi.testclient import TestClient

from api_server import app


def test_health_check():
    with TestClient(app) as client:
        response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_all_routers_are_mounted():
    paths = {route.path for route in app.routes}

    for path in (
        "/api/dashboard",
        "/api/dashboard/history",
        "/api/shares",
        "/api/shares/{share_id}",
        "/api/share/{token}",
        "/api/share/{token}/holdings",
        "/api/share/{token}/history",
        "/api/market/stocks/search",
        "/api/market/crypto/detail/{coin_id}",
        "/api/internal/snapshots/daily",
    ):
        assert path in paths


def test_owner_routes_require_authentication():
    client = TestClient(app)
    assert client.get("/api/dashboard").status_code == 401
    assert client.get("/api/shares").status_code == 401
