"""
Sentry error tracking for scan runs.

- Breadcrumbs for scan context (run, product, stage)
- Filters sensitive data (API keys, tokens, cookies) before it leaves
- Captures failed runs and threshold alerts with tags

Sentry itself is initialized in settings only when SENTRY_DSN is set; the
SDK calls below are no-ops otherwise.

Usage:
    from scan_engine.monitoring import capture_scan_error

    try:
        await orchestrator.run(product_id)
    except Exception as e:
        capture_scan_error(e, scan_run_id=run.id, product_id=product_id, stage="finalization")
        raise
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = {
    "cookies",
    "cookie",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "auth",
    "password",
    "secret",
    "token",
    "x-api-key",
}


def filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values of sensitive keys with "[Filtered]", recursing into dicts.
    """
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = filter_sensitive_data(value)
        else:
            filtered[key] = value
    return filtered


def add_scan_breadcrumb(
    stage: str,
    message: str,
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add a breadcrumb for a scan step.

    Args:
        stage: Pipeline stage name
        message: Description of the step
        level: Breadcrumb level (info, warning, error, fatal)
        data: Additional context (filtered for sensitive fields)
    """
    breadcrumb_data = {"stage": stage}
    if data:
        breadcrumb_data.update(filter_sensitive_data(data))

    try:
        sentry_sdk.add_breadcrumb(
            category="scan",
            message=message,
            level=level,
            data=breadcrumb_data,
        )
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")


def capture_scan_error(
    error: BaseException,
    scan_run_id: Optional[Any] = None,
    product_id: Optional[Any] = None,
    stage: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture a scan failure with run context.

    Args:
        error: The exception that ended the run
        scan_run_id: ScanRun id
        product_id: Product id
        stage: Stage that was active when the run failed
        extra_context: Additional context (filtered for sensitive data)
    """
    add_scan_breadcrumb(
        stage=stage or "unknown",
        message=f"Error: {type(error).__name__}",
        level="error",
        data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("scan.stage", stage or "unknown")
            if scan_run_id is not None:
                scope.set_extra("scan_run_id", str(scan_run_id))
            if product_id is not None:
                scope.set_extra("product_id", str(product_id))
            if extra_context:
                scope.set_extra("scan_context", filter_sensitive_data(extra_context))

            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")


def capture_alert(
    message: str,
    level: str = "warning",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture an alert message, e.g. a failed run or a high-severity finding.

    Args:
        message: Alert message
        level: Severity level (warning, error)
        extra_data: Additional alert data
    """
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("alert.type", "scan")
            if extra_data:
                scope.set_extra("alert_data", filter_sensitive_data(extra_data))

            sentry_sdk.capture_message(message, level=level)

    except Exception as e:
        logger.warning(f"Failed to capture alert to Sentry: {e}")
