"""
Scan engine application configuration.
"""

from django.apps import AppConfig


class ScanEngineConfig(AppConfig):
    """Configuration for the scan_engine Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "scan_engine"
    verbose_name = "Piracy Scan Engine"

    def ready(self):
        """
        Build the immutable scan profile registry once at startup so every
        worker process shares the same instance.
        """
        from scan_engine.search.profiles import get_profile_registry

        get_profile_registry()
