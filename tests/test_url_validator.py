"""
Tests for broken play URL reports and the scheduled play URL check.
"""

import pytest
import responses

from collector.models import CatalogItem
from collector.services.catalog_store import query_catalog, upsert_entry
from collector.services.deduplicator import CatalogEntry
from collector.services.url_validator import (
    remove_urls,
    report_broken_urls,
    validate_catalog_batch,
    validate_play_url,
)


def play_group(source_name, *urls):
    return {
        "source_name": source_name,
        "route": "",
        "episodes": [{"name": f"第{i}集", "url": url} for i, url in enumerate(urls, start=1)],
    }


@pytest.fixture
def item(db):
    entry = CatalogEntry(
        title="某剧",
        year="2024",
        play_sources=[
            play_group("source-a", "https://a.example/1.m3u8", "https://a.example/2.m3u8"),
            play_group("source-b", "https://b.example/1.m3u8"),
        ],
        source_vod_ids={"source-a": "1", "source-b": "9"},
        source_name="source-a",
    )
    _, row = upsert_entry(entry, 80)
    return row


class TestRemoveUrls:
    def test_drops_episodes_and_empty_groups(self):
        groups = [
            play_group("source-a", "https://a/1", "https://a/2"),
            play_group("source-b", "https://b/1"),
        ]

        cleaned = remove_urls(groups, ["https://a/2", "https://b/1"])

        assert cleaned == [play_group("source-a", "https://a/1")]
        assert len(groups[0]["episodes"]) == 2


@pytest.mark.django_db
class TestReportBrokenUrls:
    def test_partial_report(self, item):
        result = report_broken_urls(item.id, ["https://b.example/1.m3u8"])

        assert result == {"id": item.id, "removed": 1, "remaining_episodes": 2, "is_valid": True}
        item.refresh_from_db()
        assert [g["source_name"] for g in item.play_sources] == ["source-a"]

    def test_all_broken_invalidates(self, item):
        result = report_broken_urls(item.id, [
            "https://a.example/1.m3u8", "https://a.example/2.m3u8", "https://b.example/1.m3u8",
        ])

        assert result["is_valid"] is False
        assert result["remaining_episodes"] == 0
        entries, total = query_catalog()
        assert total == 0

    def test_unknown_urls_change_nothing(self, item):
        result = report_broken_urls(item.id, ["https://elsewhere.example/x.m3u8", ""])
        assert result["removed"] == 0
        assert result["is_valid"]

    def test_unknown_item(self):
        with pytest.raises(CatalogItem.DoesNotExist):
            report_broken_urls("0" * 32, ["https://a.example/1.m3u8"])


class TestValidatePlayUrl:
    @responses.activate
    def test_alive_and_dead(self):
        responses.add(responses.HEAD, "https://a.example/ok.m3u8", status=200)
        responses.add(responses.HEAD, "https://a.example/gone.m3u8", status=404)

        assert validate_play_url("https://a.example/ok.m3u8")
        assert not validate_play_url("https://a.example/gone.m3u8")

    @responses.activate
    def test_connection_error_is_dead(self):
        # No registered URL: responses raises ConnectionError
        assert not validate_play_url("https://unreachable.example/a.m3u8")


@pytest.mark.django_db
class TestValidateCatalogBatch:
    @responses.activate
    def test_dead_group_removed(self, item):
        responses.add(responses.HEAD, "https://a.example/1.m3u8", status=200)
        responses.add(responses.HEAD, "https://b.example/1.m3u8", status=404)

        summary = validate_catalog_batch(limit=10)

        assert summary == {"checked": 1, "groups_removed": 1, "invalidated": 0}
        item.refresh_from_db()
        assert [g["source_name"] for g in item.play_sources] == ["source-a"]
        assert item.play_checked_at is not None

    @responses.activate
    def test_recently_checked_items_skipped(self, item):
        responses.add(responses.HEAD, "https://a.example/1.m3u8", status=200)
        responses.add(responses.HEAD, "https://b.example/1.m3u8", status=200)

        validate_catalog_batch()
        summary = validate_catalog_batch()

        assert summary["checked"] == 0

    @responses.activate
    def test_all_dead_invalidates(self, item):
        responses.add(responses.HEAD, "https://a.example/1.m3u8", status=500)
        responses.add(responses.HEAD, "https://b.example/1.m3u8", status=410)

        summary = validate_catalog_batch()

        assert summary["invalidated"] == 1
        item.refresh_from_db()
        assert not item.is_valid
