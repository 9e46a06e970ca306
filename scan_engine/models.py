"""
Django models for the Piracy Scan Engine.

Models: Product, ScanRun, InfringementRecord, InfringementStatusTransition,
        ScanLog, LearnedPattern

Products and learned patterns are written by other parts of the platform;
the scan engine reads them once per run and writes scan runs, logs and
infringement records.
"""

import uuid
from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


class ProductCategory(models.TextChoices):
    """Product categories with a dedicated scan profile."""

    COURSE = "course", "Course"
    INDICATOR = "indicator", "Trading Indicator"
    SOFTWARE = "software", "Software"
    TEMPLATE = "template", "Template"
    EBOOK = "ebook", "E-book"
    OTHER = "other", "Other"


class ScanRunStatus(models.TextChoices):
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class InfringementStatus(models.TextChoices):
    """Lifecycle of a discovered infringement."""

    PENDING_VERIFICATION = "pending_verification", "Pending Verification"
    ACTIVE = "active", "Active"
    REMOVED = "removed", "Removed"


class RiskLevel(models.TextChoices):
    CRITICAL = "critical", "Critical"
    HIGH = "high", "High"
    MEDIUM = "medium", "Medium"
    LOW = "low", "Low"


class Priority(models.TextChoices):
    P0 = "P0", "P0 - Immediate"
    P1 = "P1", "P1 - High"
    P2 = "P2", "P2 - Normal"


class ScanLogLevel(models.TextChoices):
    INFO = "info", "Info"
    WARN = "warn", "Warning"
    ERROR = "error", "Error"
    FATAL = "fatal", "Fatal"


class LearnedPatternType(models.TextChoices):
    VERIFIED_KEYWORD = "verified_keyword", "Verified Keyword"
    FALSE_POSITIVE_DOMAIN = "false_positive_domain", "False Positive Domain"


class Product(models.Model):
    """
    A digital product monitored for piracy.

    Keyword and whitelist fields are user-supplied JSON lists;
    ``ai_extracted_data`` is the untrusted output of the enrichment service.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    brand = models.CharField(max_length=255, blank=True)
    category = models.CharField(
        max_length=20, choices=ProductCategory.choices, default=ProductCategory.OTHER
    )
    url = models.URLField(max_length=2000, blank=True)
    price = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0"))],
    )

    # User-supplied search hints
    keywords = models.JSONField(default=list, blank=True)
    negative_keywords = models.JSONField(default=list, blank=True)
    alternative_names = models.JSONField(default=list, blank=True)
    unique_identifiers = models.JSONField(default=list, blank=True)

    # Legitimate locations never reported
    whitelist_domains = models.JSONField(default=list, blank=True)
    whitelist_urls = models.JSONField(default=list, blank=True)

    # Enrichment
    ai_extracted_data = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["category"], name="products_categor_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.category})"


class ScanRun(models.Model):
    """
    One execution of the scan pipeline for a product.

    ``progress`` holds the serialized ScanProgress and is rewritten after
    every stage transition so pollers see live state.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="scan_runs")
    run_number = models.PositiveIntegerField(default=1)

    status = models.CharField(
        max_length=20, choices=ScanRunStatus.choices, default=ScanRunStatus.RUNNING
    )
    progress = models.JSONField(default=dict, blank=True)
    current_stage = models.CharField(max_length=40, blank=True)

    # Budget
    budget_limit = models.PositiveIntegerField(default=0)
    budget_used = models.PositiveIntegerField(default=0)
    queries_skipped = models.PositiveIntegerField(default=0)

    # Results
    raw_hits = models.PositiveIntegerField(default=0)
    false_positives_filtered = models.PositiveIntegerField(default=0)
    new_infringements = models.PositiveIntegerField(default=0)
    rediscovered = models.PositiveIntegerField(default=0)
    relisted = models.PositiveIntegerField(default=0)
    est_revenue_loss = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    search_diagnostics = models.JSONField(default=dict, blank=True)

    # Timing
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_seconds = models.FloatField(null=True, blank=True)

    error_message = models.TextField(blank=True)

    class Meta:
        db_table = "scan_runs"
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["product", "started_at"], name="scan_runs_product_idx"),
            models.Index(fields=["status", "started_at"], name="scan_runs_status_idx"),
        ]

    def __str__(self):
        return f"Scan {self.id} - {self.product.name} #{self.run_number} ({self.status})"


class InfringementRecord(models.Model):
    """
    A URL found to host or advertise an unauthorized copy of a product.

    Unique per (product, url_hash); later sightings update the same row.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="infringements"
    )
    scan_run = models.ForeignKey(
        ScanRun, on_delete=models.SET_NULL, null=True, blank=True, related_name="infringements"
    )

    source_url = models.URLField(max_length=2000)
    url_normalized = models.CharField(max_length=2000)
    url_hash = models.CharField(max_length=64, db_index=True)

    platform = models.CharField(max_length=50)
    infringement_type = models.CharField(max_length=50)

    # Scoring
    confidence = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    risk_level = models.CharField(max_length=20, choices=RiskLevel.choices)
    severity_score = models.PositiveSmallIntegerField(default=0)
    priority = models.CharField(max_length=2, choices=Priority.choices, default=Priority.P2)
    audience_size = models.CharField(max_length=100, blank=True)
    est_revenue_loss = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    evidence = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=30,
        choices=InfringementStatus.choices,
        default=InfringementStatus.PENDING_VERIFICATION,
    )

    first_seen_at = models.DateTimeField(default=timezone.now)
    last_seen_at = models.DateTimeField(default=timezone.now)
    seen_count = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "infringement_records"
        ordering = ["-severity_score", "-first_seen_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "url_hash"], name="unique_infringement_url_per_product"
            ),
        ]
        indexes = [
            models.Index(fields=["product", "status"], name="infringemen_product_idx"),
            models.Index(fields=["priority", "first_seen_at"], name="infringemen_priorit_idx"),
        ]

    def __str__(self):
        return f"{self.platform}: {self.source_url[:80]} ({self.status})"


class InfringementStatusTransition(models.Model):
    """Append-only status history of an infringement."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    infringement = models.ForeignKey(
        InfringementRecord, on_delete=models.CASCADE, related_name="status_transitions"
    )
    from_status = models.CharField(max_length=30, choices=InfringementStatus.choices)
    to_status = models.CharField(max_length=30, choices=InfringementStatus.choices)
    reason = models.CharField(max_length=255, blank=True)
    scan_run = models.ForeignKey(
        ScanRun, on_delete=models.SET_NULL, null=True, blank=True, related_name="status_transitions"
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "infringement_status_transitions"
        ordering = ["created_at"]

    def __str__(self):
        return f"{self.infringement_id}: {self.from_status} -> {self.to_status}"


class ScanLog(models.Model):
    """Structured log entry written by a scan run."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    scan_run = models.ForeignKey(ScanRun, on_delete=models.CASCADE, related_name="logs")
    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, null=True, blank=True, related_name="scan_logs"
    )

    log_level = models.CharField(max_length=10, choices=ScanLogLevel.choices)
    stage = models.CharField(max_length=40)
    message = models.TextField()

    error_code = models.CharField(max_length=40, blank=True, null=True)
    error_details = models.JSONField(default=dict, blank=True)
    scan_params = models.JSONField(null=True, blank=True)
    metrics = models.JSONField(default=dict, blank=True)

    self_healed = models.BooleanField(default=False)
    heal_action = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "scan_logs"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["scan_run", "log_level"], name="scan_logs_scan_ru_idx"),
            models.Index(fields=["error_code"], name="scan_logs_error_c_idx"),
        ]

    def __str__(self):
        return f"[{self.log_level}] {self.stage}: {self.message[:80]}"


class LearnedPattern(models.Model):
    """
    Feedback-derived search signal for a product.

    Written by the verification workflow; the scan engine only reads it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="learned_patterns"
    )
    pattern_type = models.CharField(max_length=30, choices=LearnedPatternType.choices)
    value = models.CharField(max_length=255)
    confidence_score = models.FloatField(
        default=0.5, validators=[MinValueValidator(0.0), MaxValueValidator(1.0)]
    )
    occurrences = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "learned_patterns"
        ordering = ["-confidence_score", "-occurrences"]
        unique_together = ["product", "pattern_type", "value"]

    def __str__(self):
        return f"{self.pattern_type}: {self.value}"
