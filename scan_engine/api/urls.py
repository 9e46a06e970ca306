"""
Scan API URL configuration.

Endpoints:
- POST /api/v1/products/<id>/scan/   - Trigger a scan
- GET  /api/v1/products/<id>/scans/  - Recent runs of a product
- GET  /api/v1/scans/<id>/           - Scan run progress
"""

from django.urls import path

from scan_engine.api.views import (
    get_scan_progress,
    list_product_scans,
    trigger_product_scan,
)

app_name = 'scan_api'

urlpatterns = [
    path('products/<uuid:product_id>/scan/', trigger_product_scan, name='trigger_product_scan'),
    path('products/<uuid:product_id>/scans/', list_product_scans, name='list_product_scans'),
    path('scans/<uuid:scan_run_id>/', get_scan_progress, name='get_scan_progress'),
]
