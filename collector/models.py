"""
Django models for the VOD collector.

Models: VideoSource, SourceHealth, CatalogItem, CategoryMapping,
        CollectionTask, CollectionLogEntry

Sources are configured through Django Admin or the import_sources command.
Every other table is written by the collection pipeline.
"""

import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.core.validators import MinValueValidator, MaxValueValidator


class ResponseFormat(models.TextChoices):
    """Payload dialect served by a source."""

    JSON = "json", "JSON"
    XML = "xml", "XML"
    AUTO = "auto", "Auto-detect"


class HealthStatus(models.TextChoices):
    """Result of the most recent source probe."""

    UNKNOWN = "unknown", "Unknown"
    HEALTHY = "healthy", "Healthy"
    SLOW = "slow", "Slow"
    TIMEOUT = "timeout", "Timeout"
    ERROR = "error", "Error"


class TaskType(models.TextChoices):
    FULL = "full", "Full Collection"
    INCREMENTAL = "incremental", "Incremental Collection"
    CATEGORY = "category", "Category Collection"
    SOURCE = "source", "Single Source Collection"
    SHORTS = "shorts", "Short Drama Collection"


class TaskStatus(models.TextChoices):
    """Status of a collection task."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    PAUSED = "paused", "Paused"
    CANCELLED = "cancelled", "Cancelled"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class LogLevel(models.TextChoices):
    DEBUG = "debug", "Debug"
    INFO = "info", "Info"
    WARNING = "warning", "Warning"
    ERROR = "error", "Error"


class ClassifyMethod(models.TextChoices):
    MAPPED = "mapped", "Mapped"
    HEURISTIC = "heuristic", "Heuristic"
    FALLBACK = "fallback", "Fallback"


TERMINAL_TASK_STATUSES = (
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.FAILED,
)

# Allowed task status transitions (from -> to)
TASK_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.CANCELLED},
    TaskStatus.RUNNING: {
        TaskStatus.PAUSED,
        TaskStatus.CANCELLED,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    },
    TaskStatus.PAUSED: {TaskStatus.RUNNING, TaskStatus.CANCELLED},
    TaskStatus.CANCELLED: set(),
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: {TaskStatus.RUNNING},
}


class VideoSource(models.Model):
    """
    A third-party video listing endpoint.

    Managed via Django Admin for easy updates without code changes.
    """

    # Identity
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(
        max_length=100, unique=True, help_text="Stable key, used to label play sources"
    )
    display_name = models.CharField(max_length=100, blank=True)
    endpoint_url = models.URLField(max_length=500, help_text="List/detail API endpoint")

    # Collection Configuration
    response_format = models.CharField(
        max_length=10,
        choices=ResponseFormat.choices,
        default=ResponseFormat.AUTO,
        help_text="Learned automatically when set to auto",
    )
    weight = models.IntegerField(
        default=50,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="0-100, higher wins metadata conflicts",
    )
    is_active = models.BooleanField(default=True, help_text="Enable/disable this source")
    is_low_priority = models.BooleanField(
        default=False,
        help_text="Excluded from live fan-out unless explicitly requested",
    )

    # Status Tracking
    last_collected_at = models.DateTimeField(null=True, blank=True)
    total_items_collected = models.IntegerField(default=0)

    # Metadata
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True, help_text="Internal notes")

    def save(self, *args, **kwargs):
        if not kwargs.pop("raw", False):
            self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "video_sources"
        ordering = ["-weight", "name"]
        indexes = [
            models.Index(fields=["is_active", "is_low_priority"], name="video_sourc_is_acti_5c1d0e_idx"),
        ]

    def __str__(self):
        return self.display_name or self.name

    @property
    def label(self) -> str:
        return self.display_name or self.name


class SourceHealth(models.Model):
    """
    Rolling health statistics for one source.

    Updated by probes and by live fetch outcomes.
    """

    source = models.OneToOneField(
        VideoSource, on_delete=models.CASCADE, related_name="health"
    )
    status = models.CharField(
        max_length=10, choices=HealthStatus.choices, default=HealthStatus.UNKNOWN
    )
    avg_response_time_ms = models.IntegerField(default=0)
    success_rate = models.FloatField(default=0.0)
    total_checks = models.IntegerField(default=0)
    success_checks = models.IntegerField(default=0)
    consecutive_failures = models.IntegerField(default=0)
    last_error = models.TextField(blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "source_health"
        indexes = [
            models.Index(fields=["status"], name="source_heal_status_8a2b41_idx"),
        ]

    def __str__(self):
        return f"{self.source.name}: {self.status}"


class CatalogItem(models.Model):
    """
    One canonical title in the deduplicated catalog.

    The primary key is derived from the normalized (title, year, area) so
    repeated collection runs resolve to the same row. Language and source
    variants merge into play_sources instead of creating new rows.
    """

    id = models.CharField(primary_key=True, max_length=32, editable=False)
    group_key = models.CharField(max_length=255, db_index=True)

    # Descriptive metadata
    title = models.CharField(max_length=255)
    year = models.CharField(max_length=10, blank=True)
    area = models.CharField(max_length=100, blank=True)
    lang = models.CharField(max_length=100, blank=True)
    cast = models.TextField(blank=True)
    director = models.CharField(max_length=255, blank=True)
    synopsis = models.TextField(blank=True)
    cover_image_url = models.URLField(max_length=1000, blank=True)
    remarks = models.CharField(max_length=100, blank=True)

    # Classification
    category_id = models.IntegerField(default=0, db_index=True)
    sub_category_id = models.IntegerField(null=True, blank=True)
    sub_category_name = models.CharField(max_length=50, blank=True)
    classify_confidence = models.FloatField(default=0.0)
    classify_method = models.CharField(
        max_length=10, choices=ClassifyMethod.choices, default=ClassifyMethod.FALLBACK
    )

    # Play addresses: [{"source_name": str, "route": str, "episodes": [{"name": str, "url": str}]}]
    play_sources = models.JSONField(default=list, blank=True)
    source_vod_ids = models.JSONField(
        default=dict, blank=True, help_text="Remote id per source name"
    )

    # Provenance and ranking
    source_name = models.CharField(max_length=100, blank=True)
    metadata_source_name = models.CharField(max_length=100, blank=True)
    metadata_weight = models.IntegerField(default=0)
    quality_score = models.FloatField(default=0.0)
    is_valid = models.BooleanField(default=True)
    play_checked_at = models.DateTimeField(null=True, blank=True)

    # Metadata
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        if not kwargs.pop("raw", False):
            self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "catalog_items"
        ordering = ["-updated_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["group_key"],
                condition=Q(is_valid=True),
                name="unique_valid_catalog_group",
            ),
        ]
        indexes = [
            models.Index(fields=["category_id", "updated_at"], name="catalog_ite_categor_3f9e27_idx"),
            models.Index(fields=["year"], name="catalog_ite_year_61d0c4_idx"),
        ]

    def __str__(self):
        return f"{self.title} ({self.year})" if self.year else self.title

    @property
    def episode_count(self) -> int:
        return sum(len(group.get("episodes", [])) for group in self.play_sources)


class CategoryMapping(models.Model):
    """
    Learned mapping from a source's raw category to a canonical category.

    Written by category sync, read by the classifier before any heuristic.
    """

    source = models.ForeignKey(
        VideoSource, on_delete=models.CASCADE, related_name="category_mappings"
    )
    source_category_id = models.CharField(max_length=50)
    source_category_name = models.CharField(max_length=100, blank=True)
    target_category_id = models.IntegerField()
    sub_category_id = models.IntegerField(null=True, blank=True)
    confidence = models.FloatField(default=1.0)
    method = models.CharField(
        max_length=10, choices=ClassifyMethod.choices, default=ClassifyMethod.HEURISTIC
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        if not kwargs.pop("raw", False):
            self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "category_mappings"
        unique_together = ["source", "source_category_id"]

    def __str__(self):
        return (
            f"{self.source.name}:{self.source_category_id} "
            f"({self.source_category_name}) -> {self.target_category_id}"
        )


class CollectionTask(models.Model):
    """
    A bulk collection run over one or many sources.

    The checkpoint is the only state needed to resume after the executing
    worker is interrupted. Counters are updated together with it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    task_type = models.CharField(max_length=20, choices=TaskType.choices)
    status = models.CharField(
        max_length=20, choices=TaskStatus.choices, default=TaskStatus.PENDING
    )
    config = models.JSONField(default=dict, blank=True)
    checkpoint = models.JSONField(default=dict, blank=True)

    # Progress
    total_pages = models.IntegerField(default=0)
    processed_count = models.IntegerField(default=0)
    new_count = models.IntegerField(default=0)
    update_count = models.IntegerField(default=0)
    skip_count = models.IntegerField(default=0)
    error_count = models.IntegerField(default=0)

    # Error Details
    last_error = models.TextField(blank=True)
    error_details = models.JSONField(default=dict, blank=True)

    created_by = models.CharField(max_length=150, blank=True)

    # Timing
    created_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "collection_tasks"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="collection__status_0b7e5a_idx"),
            models.Index(fields=["task_type", "created_at"], name="collection__task_ty_d24c19_idx"),
        ]

    def __str__(self):
        return f"Task {self.id} - {self.task_type} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def duration_seconds(self):
        """Calculate task duration."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def progress(self) -> dict:
        checkpoint = self.checkpoint or {}
        return {
            "currentSourceId": checkpoint.get("currentSourceId"),
            "currentPage": checkpoint.get("currentPage", 0),
            "totalPages": self.total_pages,
            "processedCount": self.processed_count,
            "newCount": self.new_count,
            "updateCount": self.update_count,
            "skipCount": self.skip_count,
            "errorCount": self.error_count,
        }

    def can_transition_to(self, status: str) -> bool:
        return status in TASK_TRANSITIONS.get(self.status, set())


class CollectionLogEntry(models.Model):
    """
    Append-only log line owned by a collection task.

    Pruned on the retention schedule.
    """

    task = models.ForeignKey(
        CollectionTask, on_delete=models.CASCADE, related_name="logs"
    )
    level = models.CharField(
        max_length=10, choices=LogLevel.choices, default=LogLevel.INFO
    )
    action = models.CharField(max_length=50)
    message = models.TextField()
    vod_id = models.CharField(max_length=64, blank=True)
    vod_name = models.CharField(max_length=255, blank=True)
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = "collection_logs"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["task", "level"], name="collection__task_id_7c3f92_idx"),
        ]

    def __str__(self):
        return f"[{self.level}] {self.action}: {self.message[:80]}"
