"""
Pytest configuration and fixtures for the VOD collector test suite.
"""

import json
from urllib.parse import parse_qs, urlsplit

import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture(autouse=True)
def clear_caches():
    """Start every test with an empty Django cache and no cached failure tracker."""
    from django.core.cache import cache
    from collector.monitoring import reset_failure_tracker

    cache.clear()
    reset_failure_tracker()
    yield
    cache.clear()
    reset_failure_tracker()


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def operator(db, django_user_model):
    return django_user_model.objects.create_user(username="operator", password="secret")


@pytest.fixture
def authenticated_client(api_client, operator):
    """API client authenticated as the operator user."""
    api_client.force_authenticate(user=operator)
    return api_client


class RecordingDispatcher:
    """Dispatcher that records task ids instead of queueing Celery work."""

    def __init__(self):
        self.dispatched = []

    def dispatch(self, task_id):
        self.dispatched.append(str(task_id))


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def classifier():
    """Classifier with a fresh mapping cache."""
    from collector.services.cache import TTLCache
    from collector.services.classifier import Classifier

    return Classifier(mapping_cache=TTLCache(300))


@pytest.fixture
def source_client():
    """Source client that fails fast: no retries, no backoff."""
    from collector.fetchers.source_client import SourceClient

    return SourceClient(timeout=2, max_retries=0, backoff=0)


def _make_source(name, weight, **kwargs):
    from collector.models import VideoSource

    return VideoSource.objects.create(
        name=name,
        display_name=name.replace("-", " ").title(),
        endpoint_url=f"https://{name}.example.com/api.php/provide/vod/",
        weight=weight,
        **kwargs,
    )


@pytest.fixture
def source_a(db):
    return _make_source("source-a", 80, response_format="json")


@pytest.fixture
def source_b(db):
    return _make_source("source-b", 60)


@pytest.fixture
def source_c(db):
    return _make_source("source-c", 40, response_format="xml")


@pytest.fixture
def listing_body():
    """
    Build a JSON listing body.

    Usage:
        listing_body([vod("某剧", vod_id=1)], page=1, pagecount=3)
    """
    def build(items, page=1, pagecount=1, code=1, categories=None):
        payload = {
            "code": code,
            "msg": "数据列表",
            "page": page,
            "pagecount": pagecount,
            "limit": 20,
            "total": len(items),
            "list": items,
        }
        if categories is not None:
            payload["class"] = categories
        return json.dumps(payload, ensure_ascii=False)

    return build


@pytest.fixture
def vod():
    """
    Build one raw listing entry.

    Usage:
        vod("某剧", vod_id=1, type_name="国产剧", episodes=3, host="a.example")
    """
    def build(name, vod_id=1, type_id=13, type_name="国产剧", year="2024", area="大陆",
              episodes=2, host="cdn.example.com", **extra):
        play_url = "#".join(
            f"第{n:02d}集$https://{host}/{vod_id}/{n}.m3u8" for n in range(1, episodes + 1)
        )
        entry = {
            "vod_id": vod_id,
            "vod_name": name,
            "type_id": type_id,
            "type_name": type_name,
            "vod_year": year,
            "vod_area": area,
            "vod_actor": "张三,李四",
            "vod_director": "王五",
            "vod_pic": f"https://img.example.com/{vod_id}.jpg",
            "vod_content": "一个关于测试的长篇故事，剧情跌宕起伏，人物形象鲜明，值得一看。",
            "vod_play_from": "m3u8",
            "vod_play_url": play_url,
        }
        entry.update(extra)
        return entry

    return build


def query_params(request):
    """Flatten the query string of a responses callback request."""
    return {key: values[0] for key, values in parse_qs(urlsplit(request.url).query).items()}


@pytest.fixture
def request_params():
    return query_params
