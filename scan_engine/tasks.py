"""
Celery tasks for the scan engine.

- run_product_scan: run one full scan for a product on the "scan" queue
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from scan_engine.exceptions import ProductNotFound
from scan_engine.services.scan_orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


@shared_task(name="scan_engine.tasks.run_product_scan")
def run_product_scan(product_id: str) -> Dict[str, Any]:
    """
    Run a piracy scan for a product.

    Args:
        product_id: UUID of the Product to scan

    Returns:
        Dict with the run id, status, progress and counts
    """
    logger.info(f"Starting scan task for product {product_id}")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        outcome = loop.run_until_complete(ScanOrchestrator().run(product_id))
    except ProductNotFound as e:
        logger.warning(f"Scan task skipped: {e}")
        return {"status": "error", "error": str(e), "product_id": str(product_id)}
    finally:
        loop.close()

    return outcome.to_dict()
