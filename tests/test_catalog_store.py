"""
Tests for the catalog store write path and catalog queries.
"""

import pytest

from collector.models import CatalogItem
from collector.services.catalog_store import (
    UPSERT_CREATED,
    UPSERT_SKIPPED,
    UPSERT_UPDATED,
    entry_from_item,
    query_catalog,
    upsert_entry,
)
from collector.services.deduplicator import CatalogEntry


pytestmark = pytest.mark.django_db


def make_entry(title="某剧", year="2024", area="中国大陆", source="source-a", vod_id="1",
               host="a.example", episodes=1, **kwargs):
    return CatalogEntry(
        title=title,
        year=year,
        area=area,
        play_sources=[{
            "source_name": source,
            "route": "",
            "episodes": [
                {"name": f"第{n}集", "url": f"https://{host}/{vod_id}/{n}.m3u8"}
                for n in range(1, episodes + 1)
            ],
        }],
        source_vod_ids={source: vod_id},
        source_name=source,
        **kwargs,
    )


class TestUpsertEntry:
    def test_create_then_skip(self):
        outcome, row = upsert_entry(make_entry(cast="张三"), 80)
        assert outcome == UPSERT_CREATED
        assert row.metadata_weight == 80
        assert row.quality_score > 0

        outcome, again = upsert_entry(make_entry(cast="张三"), 80)
        assert outcome == UPSERT_SKIPPED
        assert again.pk == row.pk
        assert CatalogItem.objects.count() == 1

    def test_second_source_merges_into_same_row(self):
        upsert_entry(make_entry(source="source-a", synopsis="a"), 80)
        outcome, row = upsert_entry(
            make_entry(title="某剧 粤语", source="source-b", vod_id="77", host="b.example"), 60
        )

        assert outcome == UPSERT_UPDATED
        assert CatalogItem.objects.count() == 1
        row.refresh_from_db()
        assert [g["source_name"] for g in row.play_sources] == ["source-a", "source-b"]
        assert row.source_vod_ids == {"source-a": "1", "source-b": "77"}
        assert row.metadata_source_name == "source-a"

    def test_new_episode_updates(self):
        upsert_entry(make_entry(episodes=1), 80)
        outcome, row = upsert_entry(make_entry(episodes=2), 80)

        assert outcome == UPSERT_UPDATED
        assert row.episode_count == 2

    def test_invalid_row_is_revived(self):
        _, row = upsert_entry(make_entry(), 80)
        CatalogItem.objects.filter(pk=row.pk).update(is_valid=False)

        outcome, revived = upsert_entry(make_entry(host="new.example"), 80)

        assert outcome == UPSERT_CREATED
        assert revived.pk == row.pk
        assert revived.is_valid
        assert revived.play_sources[0]["episodes"][0]["url"].startswith("https://new.example/")
        assert CatalogItem.objects.count() == 1


class TestEntryFromItem:
    def test_round_trip(self):
        entry = make_entry(cast="张三", director="王五", category_id=2, classify_confidence=1.0,
                           classify_method="mapped")
        _, row = upsert_entry(entry, 80)

        loaded = entry_from_item(row)

        assert loaded.id == row.pk
        assert loaded.group_key == "某剧|2024"
        assert loaded.cast == "张三"
        assert loaded.category_id == 2
        assert loaded.play_sources == entry.play_sources
        assert loaded.source_vod_ids == {"source-a": "1"}


class TestQueryCatalog:
    @pytest.fixture
    def catalog(self):
        upsert_entry(make_entry(title="三体", year="2023", category_id=2, cast="张鲁一"), 80)
        upsert_entry(make_entry(title="流浪地球", year="2019", category_id=1), 80)
        upsert_entry(make_entry(title="老友记", year="1994", area="美国", category_id=2), 80)
        _, hidden = upsert_entry(make_entry(title="下架剧", category_id=2), 80)
        CatalogItem.objects.filter(pk=hidden.pk).update(is_valid=False)

    def test_only_valid_rows(self, catalog):
        entries, total = query_catalog()
        assert total == 3
        assert "下架剧" not in {e.title for e in entries}

    def test_filters(self, catalog):
        assert query_catalog(category_id=2)[1] == 2
        assert [e.title for e in query_catalog(area="美国")[0]] == ["老友记"]
        assert [e.title for e in query_catalog(year="2019")[0]] == ["流浪地球"]
        assert [e.title for e in query_catalog(keyword="张鲁一")[0]] == ["三体"]

    def test_ids(self, catalog):
        target = CatalogItem.objects.get(title="三体")
        entries, total = query_catalog(ids=[target.pk])
        assert total == 1
        assert entries[0].id == target.pk

    def test_pagination(self, catalog):
        first, total = query_catalog(page=1, page_size=2)
        second, _ = query_catalog(page=2, page_size=2)

        assert total == 3
        assert len(first) == 2
        assert len(second) == 1
        assert {e.id for e in first}.isdisjoint({e.id for e in second})
