"""
Management command to run a piracy scan synchronously.

Usage:
    python manage.py run_product_scan <product_id>
    python manage.py run_product_scan <product_id> --budget=20 --no-ai
    python manage.py run_product_scan <product_id> --max-duration=60 --json
"""

import asyncio
import json
import logging

from django.core.management.base import BaseCommand, CommandError

from scan_engine.exceptions import ProductNotFound
from scan_engine.services.scan_orchestrator import ScanOrchestrator
from scan_engine.services.scan_types import ScanConfig

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run one scan for a product in the current process."""

    help = 'Run a piracy scan for a product without going through Celery'

    def add_arguments(self, parser):
        parser.add_argument('product_id', help='UUID of the product to scan')
        parser.add_argument(
            '--budget',
            type=int,
            default=None,
            help='Search call budget for this run (default: SCAN_SEARCH_BUDGET)',
        )
        parser.add_argument(
            '--max-duration',
            type=float,
            default=None,
            help='Run deadline in seconds (default: SCAN_MAX_DURATION_SECONDS)',
        )
        parser.add_argument(
            '--no-ai',
            action='store_true',
            help='Skip the AI false-positive filter',
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print the full outcome as JSON',
        )

    def handle(self, *args, **options):
        overrides = {}
        if options['budget'] is not None:
            if options['budget'] < 0:
                raise CommandError('--budget must not be negative')
            overrides['search_budget'] = options['budget']
        if options['max_duration'] is not None:
            overrides['max_duration_seconds'] = options['max_duration']
        if options['no_ai']:
            overrides['ai_filter_enabled'] = False

        config = ScanConfig.from_settings(**overrides)
        orchestrator = ScanOrchestrator(config=config)

        if not options['json']:
            self.stdout.write(
                f"Scanning product {options['product_id']} "
                f"(budget {config.search_budget}, deadline {config.max_duration_seconds:.0f}s)"
            )

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            outcome = loop.run_until_complete(orchestrator.run(options['product_id']))
        except ProductNotFound as e:
            raise CommandError(str(e))
        except Exception as e:
            raise CommandError(f"Scan failed: {e}") from e
        finally:
            loop.close()

        if options['json']:
            self.stdout.write(json.dumps(outcome.to_dict(), indent=2))
            return

        counts = outcome.counts
        self.stdout.write(f"Run {outcome.scan_run_id}: {outcome.status}")
        self.stdout.write(f"  Budget used: {outcome.budget_used}/{outcome.budget_limit}")
        self.stdout.write(f"  Raw hits: {counts.get('raw_hits', 0)}")
        self.stdout.write(f"  False positives: {counts.get('false_positives', 0)}")
        self.stdout.write(f"  New infringements: {counts.get('new_infringements', 0)}")
        self.stdout.write(f"  Rediscovered: {counts.get('rediscovered', 0)}")
        self.stdout.write(f"  Relisted: {counts.get('relisted', 0)}")
        self.stdout.write(f"  Duration: {outcome.duration_seconds:.1f}s")

        self.stdout.write(self.style.SUCCESS("Scan completed"))
