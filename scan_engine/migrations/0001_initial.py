"""
Migration: Initial scan engine schema.

Creates products, scan runs, infringement records with their status
history, scan logs and learned patterns.
"""

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


INFRINGEMENT_STATUS_CHOICES = [
    ("pending_verification", "Pending Verification"),
    ("active", "Active"),
    ("removed", "Removed"),
]


def uuid_pk():
    return models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", uuid_pk()),
                ("name", models.CharField(max_length=255)),
                ("brand", models.CharField(blank=True, max_length=255)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("course", "Course"),
                            ("indicator", "Trading Indicator"),
                            ("software", "Software"),
                            ("template", "Template"),
                            ("ebook", "E-book"),
                            ("other", "Other"),
                        ],
                        default="other",
                        max_length=20,
                    ),
                ),
                ("url", models.URLField(blank=True, max_length=2000)),
                (
                    "price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                ("keywords", models.JSONField(blank=True, default=list)),
                ("negative_keywords", models.JSONField(blank=True, default=list)),
                ("alternative_names", models.JSONField(blank=True, default=list)),
                ("unique_identifiers", models.JSONField(blank=True, default=list)),
                ("whitelist_domains", models.JSONField(blank=True, default=list)),
                ("whitelist_urls", models.JSONField(blank=True, default=list)),
                ("ai_extracted_data", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "products",
                "ordering": ["name"],
                "indexes": [models.Index(fields=["category"], name="products_categor_idx")],
            },
        ),
        migrations.CreateModel(
            name="ScanRun",
            fields=[
                ("id", uuid_pk()),
                ("run_number", models.PositiveIntegerField(default=1)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="running",
                        max_length=20,
                    ),
                ),
                ("progress", models.JSONField(blank=True, default=dict)),
                ("current_stage", models.CharField(blank=True, max_length=40)),
                ("budget_limit", models.PositiveIntegerField(default=0)),
                ("budget_used", models.PositiveIntegerField(default=0)),
                ("queries_skipped", models.PositiveIntegerField(default=0)),
                ("raw_hits", models.PositiveIntegerField(default=0)),
                ("false_positives_filtered", models.PositiveIntegerField(default=0)),
                ("new_infringements", models.PositiveIntegerField(default=0)),
                ("rediscovered", models.PositiveIntegerField(default=0)),
                ("relisted", models.PositiveIntegerField(default=0)),
                (
                    "est_revenue_loss",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                ("search_diagnostics", models.JSONField(blank=True, default=dict)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_seconds", models.FloatField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="scan_runs",
                        to="scan_engine.product",
                    ),
                ),
            ],
            options={
                "db_table": "scan_runs",
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["product", "started_at"], name="scan_runs_product_idx"),
                    models.Index(fields=["status", "started_at"], name="scan_runs_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InfringementRecord",
            fields=[
                ("id", uuid_pk()),
                ("source_url", models.URLField(max_length=2000)),
                ("url_normalized", models.CharField(max_length=2000)),
                ("url_hash", models.CharField(db_index=True, max_length=64)),
                ("platform", models.CharField(max_length=50)),
                ("infringement_type", models.CharField(max_length=50)),
                (
                    "confidence",
                    models.PositiveSmallIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ]
                    ),
                ),
                (
                    "risk_level",
                    models.CharField(
                        choices=[
                            ("critical", "Critical"),
                            ("high", "High"),
                            ("medium", "Medium"),
                            ("low", "Low"),
                        ],
                        max_length=20,
                    ),
                ),
                ("severity_score", models.PositiveSmallIntegerField(default=0)),
                (
                    "priority",
                    models.CharField(
                        choices=[
                            ("P0", "P0 - Immediate"),
                            ("P1", "P1 - High"),
                            ("P2", "P2 - Normal"),
                        ],
                        default="P2",
                        max_length=2,
                    ),
                ),
                ("audience_size", models.CharField(blank=True, max_length=100)),
                (
                    "est_revenue_loss",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                ("evidence", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=INFRINGEMENT_STATUS_CHOICES,
                        default="pending_verification",
                        max_length=30,
                    ),
                ),
                ("first_seen_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_seen_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("seen_count", models.PositiveIntegerField(default=1)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="infringements",
                        to="scan_engine.product",
                    ),
                ),
                (
                    "scan_run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="infringements",
                        to="scan_engine.scanrun",
                    ),
                ),
            ],
            options={
                "db_table": "infringement_records",
                "ordering": ["-severity_score", "-first_seen_at"],
                "indexes": [
                    models.Index(fields=["product", "status"], name="infringemen_product_idx"),
                    models.Index(fields=["priority", "first_seen_at"], name="infringemen_priorit_idx"),
                ],
            },
        ),
        migrations.AddConstraint(
            model_name="infringementrecord",
            constraint=models.UniqueConstraint(
                fields=("product", "url_hash"), name="unique_infringement_url_per_product"
            ),
        ),
        migrations.CreateModel(
            name="InfringementStatusTransition",
            fields=[
                ("id", uuid_pk()),
                ("from_status", models.CharField(choices=INFRINGEMENT_STATUS_CHOICES, max_length=30)),
                ("to_status", models.CharField(choices=INFRINGEMENT_STATUS_CHOICES, max_length=30)),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "infringement",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="status_transitions",
                        to="scan_engine.infringementrecord",
                    ),
                ),
                (
                    "scan_run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="status_transitions",
                        to="scan_engine.scanrun",
                    ),
                ),
            ],
            options={
                "db_table": "infringement_status_transitions",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="ScanLog",
            fields=[
                ("id", uuid_pk()),
                (
                    "log_level",
                    models.CharField(
                        choices=[
                            ("info", "Info"),
                            ("warn", "Warning"),
                            ("error", "Error"),
                            ("fatal", "Fatal"),
                        ],
                        max_length=10,
                    ),
                ),
                ("stage", models.CharField(max_length=40)),
                ("message", models.TextField()),
                ("error_code", models.CharField(blank=True, max_length=40, null=True)),
                ("error_details", models.JSONField(blank=True, default=dict)),
                ("scan_params", models.JSONField(blank=True, null=True)),
                ("metrics", models.JSONField(blank=True, default=dict)),
                ("self_healed", models.BooleanField(default=False)),
                ("heal_action", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="scan_logs",
                        to="scan_engine.product",
                    ),
                ),
                (
                    "scan_run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="logs",
                        to="scan_engine.scanrun",
                    ),
                ),
            ],
            options={
                "db_table": "scan_logs",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["scan_run", "log_level"], name="scan_logs_scan_ru_idx"),
                    models.Index(fields=["error_code"], name="scan_logs_error_c_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LearnedPattern",
            fields=[
                ("id", uuid_pk()),
                (
                    "pattern_type",
                    models.CharField(
                        choices=[
                            ("verified_keyword", "Verified Keyword"),
                            ("false_positive_domain", "False Positive Domain"),
                        ],
                        max_length=30,
                    ),
                ),
                ("value", models.CharField(max_length=255)),
                (
                    "confidence_score",
                    models.FloatField(
                        default=0.5,
                        validators=[
                            django.core.validators.MinValueValidator(0.0),
                            django.core.validators.MaxValueValidator(1.0),
                        ],
                    ),
                ),
                ("occurrences", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="learned_patterns",
                        to="scan_engine.product",
                    ),
                ),
            ],
            options={
                "db_table": "learned_patterns",
                "ordering": ["-confidence_score", "-occurrences"],
                "unique_together": {("product", "pattern_type", "value")},
            },
        ),
    ]
