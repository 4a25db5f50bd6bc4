"""
Tests for the service health check endpoint.
"""

from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.utils import timezone

from collector.models import CollectionTask, HealthStatus, TaskStatus, TaskType
from collector.services.source_registry import record_probe


pytestmark = pytest.mark.django_db

HEALTH_URL = "/api/health/"


class TestHealthCheck:
    def test_no_auth_required(self, client):
        response = client.get(HEALTH_URL)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["cache"] == "connected"
        assert data["sources"] == {"total": 0, "active": 0, "healthy": 0, "failing": 0}

    def test_source_counts(self, client, source_a, source_b, source_c):
        record_probe(source_a.id, success=True, latency_ms=100)
        record_probe(source_b.id, success=False, latency_ms=100, status=HealthStatus.TIMEOUT)
        source_c.is_active = False
        source_c.save()

        data = client.get(HEALTH_URL).json()

        assert data["status"] == "healthy"
        assert data["sources"] == {"total": 3, "active": 2, "healthy": 1, "failing": 1}

    def test_degraded_without_healthy_sources(self, client, source_a):
        record_probe(source_a.id, success=False, latency_ms=100, error="HTTP 500")

        response = client.get(HEALTH_URL)

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_task_fields(self, client):
        CollectionTask.objects.create(task_type=TaskType.FULL, status=TaskStatus.RUNNING)
        finished = timezone.now()
        CollectionTask.objects.create(
            task_type=TaskType.INCREMENTAL, status=TaskStatus.COMPLETED, completed_at=finished
        )

        data = client.get(HEALTH_URL).json()

        assert data["running_tasks"] == 1
        assert data["last_completed_task"] == finished.isoformat()

    def test_cache_failure_degrades(self, client):
        with patch("collector.views.check_cache", return_value="error"):
            data = client.get(HEALTH_URL).json()

        assert data["status"] == "degraded"
        assert data["cache"] == "error"

    def test_database_failure_is_unhealthy(self, client):
        with patch("collector.views.connection.ensure_connection", side_effect=DatabaseError("down")):
            response = client.get(HEALTH_URL)

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["database"] == "error"
        assert data["sources"] is None
