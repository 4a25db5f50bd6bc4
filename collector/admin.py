"""
Django admin configuration for the VOD collector models.

Provides interfaces for managing sources and category mappings, watching
source health, browsing the catalog and controlling collection tasks.
"""

import json

from django.contrib import admin
from django.utils.html import format_html

from collector.exceptions import CollectorError
from collector.models import (
    CatalogItem,
    CategoryMapping,
    CollectionLogEntry,
    CollectionTask,
    HealthStatus,
    SourceHealth,
    TaskStatus,
    TaskType,
    VideoSource,
)
from collector.services import source_registry
from collector.services.task_engine import TaskEngine
from collector.tasks import sync_source_categories

BADGE_STYLE = (
    '<span style="background-color: {}; color: white; '
    'padding: 2px 8px; border-radius: 4px;">{}</span>'
)

HEALTH_COLORS = {
    HealthStatus.HEALTHY: "#28a745",
    HealthStatus.SLOW: "#ffc107",
    HealthStatus.TIMEOUT: "#fd7e14",
    HealthStatus.ERROR: "#dc3545",
    HealthStatus.UNKNOWN: "#6c757d",
}

PAST_TENSE = {"pause": "Paused", "resume": "Resumed", "cancel": "Cancelled"}

TASK_COLORS = {
    TaskStatus.PENDING: "#ffc107",
    TaskStatus.RUNNING: "#007bff",
    TaskStatus.PAUSED: "#17a2b8",
    TaskStatus.COMPLETED: "#28a745",
    TaskStatus.FAILED: "#dc3545",
    TaskStatus.CANCELLED: "#6c757d",
}


def _pretty_json(value):
    return format_html(
        '<pre style="white-space: pre-wrap;">{}</pre>',
        json.dumps(value, indent=2, ensure_ascii=False),
    )


class SourceHealthInline(admin.StackedInline):
    model = SourceHealth
    can_delete = False
    extra = 0
    readonly_fields = [
        "status",
        "avg_response_time_ms",
        "success_rate",
        "total_checks",
        "success_checks",
        "consecutive_failures",
        "last_error",
        "last_checked_at",
    ]


@admin.register(VideoSource)
class VideoSourceAdmin(admin.ModelAdmin):
    """
    Admin interface for video sources.

    Sources are the only table edited by hand; everything else is written by
    the pipeline.
    """

    list_display = [
        "name",
        "display_name",
        "response_format",
        "weight",
        "is_active_badge",
        "is_low_priority",
        "health_badge",
        "last_collected_at",
        "total_items_collected",
    ]
    list_filter = ["is_active", "is_low_priority", "response_format"]
    search_fields = ["name", "display_name", "endpoint_url"]
    readonly_fields = ["id", "last_collected_at", "total_items_collected", "created_at", "updated_at"]
    ordering = ["-weight", "name"]
    inlines = [SourceHealthInline]

    fieldsets = (
        ("Identity", {
            "fields": ("id", "name", "display_name", "endpoint_url"),
        }),
        ("Collection Configuration", {
            "fields": ("response_format", "weight", "is_active", "is_low_priority"),
        }),
        ("Statistics", {
            "fields": ("last_collected_at", "total_items_collected"),
        }),
        ("Metadata", {
            "fields": ("notes", "created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    actions = [
        "probe_now",
        "crawl_now",
        "sync_categories",
        "enable_sources",
        "disable_sources",
    ]

    def is_active_badge(self, obj):
        """Display active status as colored badge."""
        if obj.is_active:
            return format_html(BADGE_STYLE, "#28a745", "Active")
        return format_html(BADGE_STYLE, "#6c757d", "Inactive")
    is_active_badge.short_description = "Active"
    is_active_badge.admin_order_field = "is_active"

    def health_badge(self, obj):
        health = getattr(obj, "health", None)
        status = health.status if health else HealthStatus.UNKNOWN
        return format_html(BADGE_STYLE, HEALTH_COLORS.get(status, "#6c757d"), status.title())
    health_badge.short_description = "Health"

    @admin.action(description="Probe selected sources now")
    def probe_now(self, request, queryset):
        statuses = []
        for source in queryset:
            health = source_registry.probe_source(source)
            statuses.append(f"{source.name}={health.status}")
        self.message_user(request, "Probed: " + ", ".join(statuses))

    @admin.action(description="Crawl selected sources")
    def crawl_now(self, request, queryset):
        """Create and start one source task per selected active source."""
        engine = TaskEngine()
        count = 0
        for source in queryset.filter(is_active=True):
            task = engine.create_task(
                TaskType.SOURCE,
                {"source_ids": [str(source.id)]},
                created_by=request.user.get_username(),
            )
            engine.start_task(task.id)
            count += 1
        self.message_user(request, f"Started {count} source task(s).")

    @admin.action(description="Sync categories from source")
    def sync_categories(self, request, queryset):
        for source in queryset:
            sync_source_categories.delay(str(source.id))
        self.message_user(request, f"Queued category sync for {queryset.count()} source(s).")

    @admin.action(description="Enable selected sources")
    def enable_sources(self, request, queryset):
        count = queryset.update(is_active=True)
        self.message_user(request, f"Enabled {count} source(s).")

    @admin.action(description="Disable selected sources")
    def disable_sources(self, request, queryset):
        count = queryset.update(is_active=False)
        self.message_user(request, f"Disabled {count} source(s).")


@admin.register(SourceHealth)
class SourceHealthAdmin(admin.ModelAdmin):
    list_display = [
        "source",
        "status",
        "avg_response_time_ms",
        "success_rate",
        "consecutive_failures",
        "last_checked_at",
    ]
    list_filter = ["status"]
    search_fields = ["source__name"]
    ordering = ["source__name"]

    def has_add_permission(self, request):
        """Health rows are created by probes."""
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(CategoryMapping)
class CategoryMappingAdmin(admin.ModelAdmin):
    list_display = [
        "source",
        "source_category_id",
        "source_category_name",
        "target_category_id",
        "sub_category_id",
        "confidence",
        "method",
        "updated_at",
    ]
    list_filter = ["source", "method", "target_category_id"]
    search_fields = ["source_category_name", "source__name"]
    ordering = ["source__name", "source_category_id"]


@admin.register(CatalogItem)
class CatalogItemAdmin(admin.ModelAdmin):
    list_display = [
        "title",
        "year",
        "area",
        "category_id",
        "classify_method",
        "episode_count",
        "source_name",
        "quality_score",
        "is_valid",
        "updated_at",
    ]
    list_filter = ["is_valid", "category_id", "classify_method", "source_name"]
    search_fields = ["id", "title", "cast", "director"]
    readonly_fields = [
        "id",
        "group_key",
        "play_sources_formatted",
        "source_vod_ids",
        "quality_score",
        "play_checked_at",
        "created_at",
        "updated_at",
    ]
    exclude = ["play_sources"]
    ordering = ["-updated_at"]
    actions = ["mark_invalid", "mark_valid"]

    def play_sources_formatted(self, obj):
        return _pretty_json(obj.play_sources)
    play_sources_formatted.short_description = "Play Sources"

    @admin.action(description="Mark selected items invalid")
    def mark_invalid(self, request, queryset):
        count = queryset.update(is_valid=False)
        self.message_user(request, f"Marked {count} item(s) invalid.")

    @admin.action(description="Mark selected items valid")
    def mark_valid(self, request, queryset):
        count = queryset.update(is_valid=True)
        self.message_user(request, f"Marked {count} item(s) valid.")


class CollectionLogEntryInline(admin.TabularInline):
    model = CollectionLogEntry
    extra = 0
    can_delete = False
    fields = ["created_at", "level", "action", "message", "vod_name"]
    readonly_fields = fields
    ordering = ["-created_at"]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CollectionTask)
class CollectionTaskAdmin(admin.ModelAdmin):
    """
    Admin interface for collection tasks.

    Read-only apart from the control actions, which go through the task
    engine so transitions are validated the same way as in the API.
    """

    list_display = [
        "id_short",
        "task_type",
        "status_badge",
        "processed_count",
        "new_count",
        "update_count",
        "error_count",
        "created_at",
        "duration_display",
    ]
    list_filter = ["status", "task_type", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["id", "created_by"]
    readonly_fields = [
        "id",
        "task_type",
        "status",
        "config_formatted",
        "checkpoint_formatted",
        "total_pages",
        "processed_count",
        "new_count",
        "update_count",
        "skip_count",
        "error_count",
        "last_error",
        "error_details",
        "created_by",
        "created_at",
        "started_at",
        "paused_at",
        "completed_at",
    ]
    exclude = ["config", "checkpoint"]
    ordering = ["-created_at"]
    inlines = [CollectionLogEntryInline]
    actions = ["pause_tasks", "resume_tasks", "cancel_tasks"]

    def id_short(self, obj):
        """Display shortened task ID."""
        return str(obj.id)[:8]
    id_short.short_description = "Task ID"

    def status_badge(self, obj):
        return format_html(BADGE_STYLE, TASK_COLORS.get(obj.status, "#6c757d"), obj.status.title())
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def duration_display(self, obj):
        """Display task duration in human-readable format."""
        if obj.duration_seconds:
            seconds = obj.duration_seconds
            if seconds < 60:
                return f"{seconds:.1f}s"
            elif seconds < 3600:
                return f"{seconds / 60:.1f}m"
            else:
                return f"{seconds / 3600:.1f}h"
        return "-"
    duration_display.short_description = "Duration"

    def config_formatted(self, obj):
        return _pretty_json(obj.config)
    config_formatted.short_description = "Config"

    def checkpoint_formatted(self, obj):
        return _pretty_json(obj.checkpoint)
    checkpoint_formatted.short_description = "Checkpoint"

    def _apply(self, request, queryset, operation: str):
        engine = TaskEngine()
        done = 0
        for task in queryset:
            try:
                getattr(engine, f"{operation}_task")(task.id)
                done += 1
            except CollectorError as e:
                self.message_user(request, str(e), level="warning")
        self.message_user(request, f"{PAST_TENSE[operation]} {done} task(s).")

    @admin.action(description="Pause selected tasks")
    def pause_tasks(self, request, queryset):
        self._apply(request, queryset, "pause")

    @admin.action(description="Resume selected tasks")
    def resume_tasks(self, request, queryset):
        self._apply(request, queryset, "resume")

    @admin.action(description="Cancel selected tasks")
    def cancel_tasks(self, request, queryset):
        self._apply(request, queryset, "cancel")

    def has_add_permission(self, request):
        """Tasks are created through the API or management commands."""
        return False


@admin.register(CollectionLogEntry)
class CollectionLogEntryAdmin(admin.ModelAdmin):
    list_display = ["created_at", "task", "level", "action", "message", "vod_name"]
    list_filter = ["level", "action"]
    search_fields = ["message", "vod_name", "task__id"]
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
