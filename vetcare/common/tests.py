"""
Tests for the shared middleware
"""

from uuid import uuid4


class TestSecurityHeaders:
    """Tests for SecurityHeadersMiddleware"""

    def test_headers_on_exempt_path(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-XSS-Protection"] == "1; mode=block"
        assert response.headers["Strict-Transport-Security"] == "max-age=31536000; includeSubDomains"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


class TestBranchMiddleware:
    """Tests for the X-Branch-ID header check"""

    def test_missing_branch_header(self, client):
        response = client.get("/inventory/items")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing X-Branch-ID header"

    def test_branch_id_echoed(self, client, clinic_headers):
        response = client.get("/inventory/items", headers=clinic_headers)

        assert response.status_code == 200
        assert response.headers["X-Branch-ID"] == clinic_headers["X-Branch-ID"]

    def test_invalid_branch_id(self, client):
        response = client.get("/inventory/items", headers={"X-Branch-ID": "branch-1", "X-User-ID": str(uuid4())})

        assert response.status_code == 400
