"""
Scan engine service views.

Includes the health check endpoint for monitoring and load balancer checks.
"""

from datetime import timedelta

from django.conf import settings
from django.db import connection
from django.http import JsonResponse
from django.utils import timezone

from scan_engine.models import ScanRun, ScanRunStatus


def get_celery_worker_count():
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of active workers, 0 if the broker is unreachable.
    """
    try:
        from config.celery import app as celery_app

        active = celery_app.control.inspect(timeout=1.0).active()
        if active:
            return len(active)
        return 0
    except Exception:
        return 0


def health_check(request):
    """
    Health check endpoint for the scan service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - celery_workers: integer count of active workers
        - search_configured: whether a search API key is set
        - last_scan: ISO timestamp of the latest scan run start
        - scans_24h / failed_scans_24h: runs started in the last 24 hours

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    celery_workers = get_celery_worker_count()

    last_scan = None
    scans_24h = None
    failed_scans_24h = None
    if database_status == "connected":
        try:
            since = timezone.now() - timedelta(hours=24)
            latest = ScanRun.objects.order_by("-started_at").values_list("started_at", flat=True).first()
            last_scan = latest.isoformat() if latest else None
            recent = ScanRun.objects.filter(started_at__gte=since)
            scans_24h = recent.count()
            failed_scans_24h = recent.filter(status=ScanRunStatus.FAILED).count()
        except Exception:
            # Tables may not exist yet on a fresh deployment
            pass

    return JsonResponse(
        {
            "status": status,
            "database": database_status,
            "celery_workers": celery_workers,
            "search_configured": bool(getattr(settings, "SERPAPI_API_KEY", "")),
            "last_scan": last_scan,
            "scans_24h": scans_24h,
            "failed_scans_24h": failed_scans_24h,
        },
        status=http_status,
    )
