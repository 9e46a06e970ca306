"""
Piracy scan engine Django application.

Plans budgeted search-query runs for a digital product, scores each hit
for genuineness and persists verified findings for human review.
"""

default_app_config = "scan_engine.apps.ScanEngineConfig"
