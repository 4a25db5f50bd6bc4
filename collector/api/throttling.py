"""
API throttling classes.

Custom throttle classes for API rate limiting.
"""

from rest_framework.throttling import UserRateThrottle


class CatalogReadThrottle(UserRateThrottle):
    """
    Throttle for catalog read endpoints.

    Rate: 120 requests per minute per user (or per IP when anonymous).
    Applied to: /api/v1/catalog/, /api/v1/catalog/<id>/
    """

    rate = '120/minute'
    scope = 'catalog_read'


class TaskControlThrottle(UserRateThrottle):
    """
    Throttle for task control endpoints.

    Rate: 60 requests per hour per user.
    Applied to: /api/v1/tasks/..., /api/v1/sources/<id>/crawl/,
    /api/v1/sources/<id>/sync-categories/
    """

    rate = '60/hour'
    scope = 'task_control'


class ReportBrokenThrottle(UserRateThrottle):
    """
    Throttle for broken play URL reports.

    Rate: 30 requests per hour per user.
    Applied to: /api/v1/catalog/<id>/report-broken/
    """

    rate = '30/hour'
    scope = 'report_broken'
