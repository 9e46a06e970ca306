"""
Django admin configuration for scan engine models.

Products can be queued for a scan from the changelist; scan runs,
infringements and logs are browsable with their structured fields.
"""

from django.contrib import admin
from django.utils.html import format_html

from scan_engine.models import (
    InfringementRecord,
    InfringementStatusTransition,
    LearnedPattern,
    Product,
    ScanLog,
    ScanRun,
    ScanRunStatus,
)
from scan_engine.tasks import run_product_scan

STATUS_COLORS = {
    ScanRunStatus.RUNNING: "#1f6feb",
    ScanRunStatus.COMPLETED: "#2da44e",
    ScanRunStatus.FAILED: "#cf222e",
}

PRIORITY_COLORS = {
    "P0": "#cf222e",
    "P1": "#bf8700",
    "P2": "#57606a",
}


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ["name", "brand", "category", "price", "url", "created_at"]
    list_filter = ["category"]
    search_fields = ["name", "brand", "url"]
    readonly_fields = ["id", "created_at", "updated_at"]
    actions = ["trigger_scan"]

    fieldsets = (
        (None, {"fields": ("id", "name", "brand", "category", "url", "price")}),
        ("Search hints", {
            "fields": ("keywords", "negative_keywords", "alternative_names", "unique_identifiers"),
        }),
        ("Whitelist", {"fields": ("whitelist_domains", "whitelist_urls")}),
        ("Enrichment", {"fields": ("ai_extracted_data",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.action(description="Scan selected products now")
    def trigger_scan(self, request, queryset):
        """Queue a scan for each selected product."""
        count = 0
        for product in queryset:
            run_product_scan.apply_async(args=[str(product.id)])
            count += 1
        self.message_user(
            request,
            f"Queued scans for {count} product(s). Runs will appear shortly."
        )


@admin.register(ScanRun)
class ScanRunAdmin(admin.ModelAdmin):
    list_display = [
        "id_short",
        "product",
        "run_number",
        "status_badge",
        "current_stage",
        "budget_display",
        "new_infringements",
        "relisted",
        "duration_display",
        "started_at",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["product__name", "id"]
    readonly_fields = [f.name for f in ScanRun._meta.fields]

    def id_short(self, obj):
        return str(obj.id)[:8]

    id_short.short_description = "Run ID"

    def status_badge(self, obj):
        color = STATUS_COLORS.get(obj.status, "#57606a")
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            color,
            obj.get_status_display(),
        )

    status_badge.short_description = "Status"

    def budget_display(self, obj):
        return f"{obj.budget_used}/{obj.budget_limit}"

    budget_display.short_description = "Budget"

    def duration_display(self, obj):
        if obj.duration_seconds is None:
            return "-"
        return f"{obj.duration_seconds:.1f}s"

    duration_display.short_description = "Duration"

    def has_add_permission(self, request):
        return False


class StatusTransitionInline(admin.TabularInline):
    model = InfringementStatusTransition
    extra = 0
    readonly_fields = ["from_status", "to_status", "reason", "scan_run", "created_at"]
    can_delete = False


@admin.register(InfringementRecord)
class InfringementRecordAdmin(admin.ModelAdmin):
    list_display = [
        "source_url",
        "product",
        "platform",
        "infringement_type",
        "confidence",
        "priority_badge",
        "status",
        "seen_count",
        "last_seen_at",
    ]
    list_filter = ["status", "priority", "platform", "risk_level"]
    search_fields = ["source_url", "product__name"]
    readonly_fields = ["id", "url_normalized", "url_hash", "first_seen_at", "last_seen_at", "seen_count"]
    inlines = [StatusTransitionInline]

    def priority_badge(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            PRIORITY_COLORS.get(obj.priority, "#57606a"),
            obj.priority,
        )

    priority_badge.short_description = "Priority"


@admin.register(ScanLog)
class ScanLogAdmin(admin.ModelAdmin):
    list_display = ["created_at", "scan_run", "log_level", "stage", "error_code", "self_healed", "message"]
    list_filter = ["log_level", "stage", "error_code", "self_healed"]
    search_fields = ["message", "scan_run__id"]
    readonly_fields = [f.name for f in ScanLog._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(LearnedPattern)
class LearnedPatternAdmin(admin.ModelAdmin):
    list_display = ["value", "pattern_type", "product", "confidence_score", "occurrences"]
    list_filter = ["pattern_type"]
    search_fields = ["value", "product__name"]
