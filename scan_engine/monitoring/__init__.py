"""
Monitoring for scan runs.

- Structured per-run scan log persisted as ScanLog rows
- Sentry error tracking with scan context
"""

from .scan_logger import ErrorCode, LogLevel, ScanLogEntry, ScanLogger
from .sentry_integration import (
    add_scan_breadcrumb,
    capture_alert,
    capture_scan_error,
    filter_sensitive_data,
)

__all__ = [
    "ErrorCode",
    "LogLevel",
    "ScanLogEntry",
    "ScanLogger",
    "add_scan_breadcrumb",
    "capture_alert",
    "capture_scan_error",
    "filter_sensitive_data",
]
