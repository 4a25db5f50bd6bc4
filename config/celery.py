"""
Celery configuration for the VOD Aggregator service.

This module configures Celery for background collection work with
separate task queues for collection runs and source health probes.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("vod_aggregator")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Configure task queues for different operations
app.conf.task_queues = {
    "collect": {
        "exchange": "collect",
        "routing_key": "collect",
    },
    "probe": {
        "exchange": "probe",
        "routing_key": "probe",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

# Default task routing
app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

# Route specific tasks to their queues
app.conf.task_routes = {
    "collector.tasks.run_collection_task": {"queue": "collect"},
    "collector.tasks.sync_source_categories": {"queue": "collect"},
    "collector.tasks.probe_sources": {"queue": "probe"},
    "collector.tasks.schedule_incremental_collection": {"queue": "default"},
    "collector.tasks.cleanup_collection_history": {"queue": "default"},
    "collector.tasks.recover_stalled_tasks": {"queue": "default"},
    "collector.tasks.validate_play_urls": {"queue": "probe"},
}

# Configure Celery Beat schedule for periodic tasks
app.conf.beat_schedule = {
    "probe-sources-every-10-minutes": {
        "task": "collector.tasks.probe_sources",
        "schedule": crontab(minute="*/10"),
    },
    "incremental-collection-hourly": {
        "task": "collector.tasks.schedule_incremental_collection",
        "schedule": crontab(minute=5),
        "kwargs": {"hours": 2},
    },
    "cleanup-collection-history-daily": {
        "task": "collector.tasks.cleanup_collection_history",
        "schedule": crontab(hour=4, minute=30),
    },
    "recover-stalled-tasks-every-15-minutes": {
        "task": "collector.tasks.recover_stalled_tasks",
        "schedule": crontab(minute="*/15"),
    },
    "validate-play-urls-daily": {
        "task": "collector.tasks.validate_play_urls",
        "schedule": crontab(hour=5, minute=0),
        "kwargs": {"limit": 500},
    },
}
