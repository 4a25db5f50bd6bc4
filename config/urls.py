"""
URL configuration for the VOD Aggregator service.

Public API lives under /api/v1/, the unauthenticated probe under /api/health/.
"""

from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)

from collector.views import health_check

urlpatterns = [
    # Source and task administration
    path("admin/", admin.site.urls),

    # OpenAPI schema and browsable docs
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path(
        "api/docs/",
        SpectacularSwaggerView.as_view(url_name="schema"),
        name="swagger-ui",
    ),
    path(
        "api/redoc/",
        SpectacularRedocView.as_view(url_name="schema"),
        name="redoc",
    ),

    # Load balancer probe
    path("api/health/", health_check, name="health-check"),

    # Catalog and collection control API
    path("api/v1/", include("collector.api.urls")),
]
