import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="VideoSource",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(help_text="Stable key, used to label play sources", max_length=100, unique=True)),
                ("display_name", models.CharField(blank=True, max_length=100)),
                ("endpoint_url", models.URLField(help_text="List/detail API endpoint", max_length=500)),
                (
                    "response_format",
                    models.CharField(
                        choices=[("json", "JSON"), ("xml", "XML"), ("auto", "Auto-detect")],
                        default="auto",
                        help_text="Learned automatically when set to auto",
                        max_length=10,
                    ),
                ),
                (
                    "weight",
                    models.IntegerField(
                        default=50,
                        help_text="0-100, higher wins metadata conflicts",
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("is_active", models.BooleanField(default=True, help_text="Enable/disable this source")),
                (
                    "is_low_priority",
                    models.BooleanField(default=False, help_text="Excluded from live fan-out unless explicitly requested"),
                ),
                ("last_collected_at", models.DateTimeField(blank=True, null=True)),
                ("total_items_collected", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("notes", models.TextField(blank=True, help_text="Internal notes")),
            ],
            options={
                "db_table": "video_sources",
                "ordering": ["-weight", "name"],
                "indexes": [
                    models.Index(fields=["is_active", "is_low_priority"], name="video_sourc_is_acti_5c1d0e_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SourceHealth",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("unknown", "Unknown"),
                            ("healthy", "Healthy"),
                            ("slow", "Slow"),
                            ("timeout", "Timeout"),
                            ("error", "Error"),
                        ],
                        default="unknown",
                        max_length=10,
                    ),
                ),
                ("avg_response_time_ms", models.IntegerField(default=0)),
                ("success_rate", models.FloatField(default=0.0)),
                ("total_checks", models.IntegerField(default=0)),
                ("success_checks", models.IntegerField(default=0)),
                ("consecutive_failures", models.IntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("last_checked_at", models.DateTimeField(blank=True, null=True)),
                (
                    "source",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="health",
                        to="collector.videosource",
                    ),
                ),
            ],
            options={
                "db_table": "source_health",
                "indexes": [
                    models.Index(fields=["status"], name="source_heal_status_8a2b41_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CatalogItem",
            fields=[
                ("id", models.CharField(editable=False, max_length=32, primary_key=True, serialize=False)),
                ("group_key", models.CharField(db_index=True, max_length=255)),
                ("title", models.CharField(max_length=255)),
                ("year", models.CharField(blank=True, max_length=10)),
                ("area", models.CharField(blank=True, max_length=100)),
                ("lang", models.CharField(blank=True, max_length=100)),
                ("cast", models.TextField(blank=True)),
                ("director", models.CharField(blank=True, max_length=255)),
                ("synopsis", models.TextField(blank=True)),
                ("cover_image_url", models.URLField(blank=True, max_length=1000)),
                ("remarks", models.CharField(blank=True, max_length=100)),
                ("category_id", models.IntegerField(db_index=True, default=0)),
                ("sub_category_id", models.IntegerField(blank=True, null=True)),
                ("sub_category_name", models.CharField(blank=True, max_length=50)),
                ("classify_confidence", models.FloatField(default=0.0)),
                (
                    "classify_method",
                    models.CharField(
                        choices=[("mapped", "Mapped"), ("heuristic", "Heuristic"), ("fallback", "Fallback")],
                        default="fallback",
                        max_length=10,
                    ),
                ),
                ("play_sources", models.JSONField(blank=True, default=list)),
                ("source_vod_ids", models.JSONField(blank=True, default=dict, help_text="Remote id per source name")),
                ("source_name", models.CharField(blank=True, max_length=100)),
                ("metadata_source_name", models.CharField(blank=True, max_length=100)),
                ("metadata_weight", models.IntegerField(default=0)),
                ("quality_score", models.FloatField(default=0.0)),
                ("is_valid", models.BooleanField(default=True)),
                ("play_checked_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "catalog_items",
                "ordering": ["-updated_at"],
                "indexes": [
                    models.Index(fields=["category_id", "updated_at"], name="catalog_ite_categor_3f9e27_idx"),
                    models.Index(fields=["year"], name="catalog_ite_year_61d0c4_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_valid", True)),
                        fields=("group_key",),
                        name="unique_valid_catalog_group",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CategoryMapping",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_category_id", models.CharField(max_length=50)),
                ("source_category_name", models.CharField(blank=True, max_length=100)),
                ("target_category_id", models.IntegerField()),
                ("sub_category_id", models.IntegerField(blank=True, null=True)),
                ("confidence", models.FloatField(default=1.0)),
                (
                    "method",
                    models.CharField(
                        choices=[("mapped", "Mapped"), ("heuristic", "Heuristic"), ("fallback", "Fallback")],
                        default="heuristic",
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="category_mappings",
                        to="collector.videosource",
                    ),
                ),
            ],
            options={
                "db_table": "category_mappings",
                "unique_together": {("source", "source_category_id")},
            },
        ),
        migrations.CreateModel(
            name="CollectionTask",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "task_type",
                    models.CharField(
                        choices=[
                            ("full", "Full Collection"),
                            ("incremental", "Incremental Collection"),
                            ("category", "Category Collection"),
                            ("source", "Single Source Collection"),
                            ("shorts", "Short Drama Collection"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("paused", "Paused"),
                            ("cancelled", "Cancelled"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("config", models.JSONField(blank=True, default=dict)),
                ("checkpoint", models.JSONField(blank=True, default=dict)),
                ("total_pages", models.IntegerField(default=0)),
                ("processed_count", models.IntegerField(default=0)),
                ("new_count", models.IntegerField(default=0)),
                ("update_count", models.IntegerField(default=0)),
                ("skip_count", models.IntegerField(default=0)),
                ("error_count", models.IntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("error_details", models.JSONField(blank=True, default=dict)),
                ("created_by", models.CharField(blank=True, max_length=150)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("paused_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "collection_tasks",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="collection__status_0b7e5a_idx"),
                    models.Index(fields=["task_type", "created_at"], name="collection__task_ty_d24c19_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CollectionLogEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "level",
                    models.CharField(
                        choices=[("debug", "Debug"), ("info", "Info"), ("warning", "Warning"), ("error", "Error")],
                        default="info",
                        max_length=10,
                    ),
                ),
                ("action", models.CharField(max_length=50)),
                ("message", models.TextField()),
                ("vod_id", models.CharField(blank=True, max_length=64)),
                ("vod_name", models.CharField(blank=True, max_length=255)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                (
                    "task",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="logs",
                        to="collector.collectiontask",
                    ),
                ),
            ],
            options={
                "db_table": "collection_logs",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["task", "level"], name="collection__task_id_7c3f92_idx"),
                ],
            },
        ),
    ]
