"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

import pytest

from scan_engine.models import ScanRun, ScanRunStatus


@pytest.mark.django_db
class TestHealthCheck:
    """GET /api/health/"""

    def test_healthy_without_scans(self, client):
        with patch("scan_engine.views.get_celery_worker_count", return_value=2):
            response = client.get("/api/health/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["celery_workers"] == 2
        assert data["search_configured"] is True
        assert data["last_scan"] is None
        assert data["scans_24h"] == 0

    def test_recent_scan_counts(self, client, product_record):
        ScanRun.objects.create(product=product_record, status=ScanRunStatus.COMPLETED)
        ScanRun.objects.create(product=product_record, status=ScanRunStatus.FAILED)

        with patch("scan_engine.views.get_celery_worker_count", return_value=0):
            data = client.get("/api/health/").json()

        assert data["scans_24h"] == 2
        assert data["failed_scans_24h"] == 1
        assert data["last_scan"] is not None

    def test_database_error_is_unhealthy(self, client):
        with patch("scan_engine.views.connection") as mock_connection, \
                patch("scan_engine.views.get_celery_worker_count", return_value=0):
            mock_connection.ensure_connection.side_effect = Exception("connection refused")
            response = client.get("/api/health/")

        assert response.status_code == 503
        assert response.json()["database"] == "error"

    def test_search_key_missing(self, client, settings):
        settings.SERPAPI_API_KEY = ""

        with patch("scan_engine.views.get_celery_worker_count", return_value=1):
            data = client.get("/api/health/").json()

        assert data["search_configured"] is False
