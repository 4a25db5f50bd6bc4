"""
URL configuration for the collector REST API.

Endpoints:
- GET  /api/v1/catalog/                          - Federated catalog query
- GET  /api/v1/catalog/<id>/                     - Stored catalog item
- POST /api/v1/catalog/<id>/report-broken/       - Report broken play URLs
- POST /api/v1/tasks/                            - Create a collection task
- GET  /api/v1/tasks/<id>/                       - Task status
- POST /api/v1/tasks/<id>/pause/                 - Pause a task
- POST /api/v1/tasks/<id>/resume/                - Resume a task
- POST /api/v1/tasks/<id>/cancel/                - Cancel a task
- POST /api/v1/sources/<id>/crawl/               - Crawl one source
- POST /api/v1/sources/<id>/sync-categories/     - Learn category mappings
- GET  /api/v1/sources/health/                   - Source health status
"""

from django.urls import path

from collector.api.views import (
    catalog_list,
    catalog_detail,
    report_broken,
    create_task,
    task_detail,
    pause_task,
    resume_task,
    cancel_task,
    crawl_source,
    sync_categories,
    sources_health,
)

app_name = 'collector_api'

urlpatterns = [
    # Catalog endpoints
    path('catalog/', catalog_list, name='catalog_list'),
    path('catalog/<str:item_id>/', catalog_detail, name='catalog_detail'),
    path('catalog/<str:item_id>/report-broken/', report_broken, name='report_broken'),

    # Task endpoints
    path('tasks/', create_task, name='create_task'),
    path('tasks/<str:task_id>/', task_detail, name='task_detail'),
    path('tasks/<str:task_id>/pause/', pause_task, name='pause_task'),
    path('tasks/<str:task_id>/resume/', resume_task, name='resume_task'),
    path('tasks/<str:task_id>/cancel/', cancel_task, name='cancel_task'),

    # Source endpoints
    path('sources/health/', sources_health, name='sources_health'),
    path('sources/<str:source_id>/crawl/', crawl_source, name='crawl_source'),
    path('sources/<str:source_id>/sync-categories/', sync_categories, name='sync_categories'),
]
