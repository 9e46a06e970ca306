"""
Celery configuration for the Piracy Scan Engine service.

Scan runs are long-lived (up to the scan deadline) and are routed to a
dedicated "scan" queue.
"""

import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("scan_engine")

# namespace='CELERY' means all celery-related configuration keys
# should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "scan": {
        "exchange": "scan",
        "routing_key": "scan",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "scan_engine.tasks.run_product_scan": {"queue": "scan"},
}

# One scan at a time per worker process.
app.conf.worker_prefetch_multiplier = 1
