"""
Tests for deduplication, merging and quality scoring, plus the item
pipeline that feeds them.
"""

import pytest

from collector.models import ClassifyMethod
from collector.services.deduplicator import (
    CatalogEntry,
    Deduplicator,
    QualityScorer,
    catalog_id,
    group_key,
    merge,
    merge_play_sources,
)
from collector.services.pipeline import ItemPipeline
from collector.services.response_parser import RawItem


def group(source_name, *urls, route=""):
    return {
        "source_name": source_name,
        "route": route,
        "episodes": [{"name": f"第{i}集", "url": url} for i, url in enumerate(urls, start=1)],
    }


def entry(title="某剧", year="2024", source="source-a", urls=("https://a.example/1.m3u8",), **kwargs):
    return CatalogEntry(
        title=title,
        year=year,
        play_sources=[group(source, *urls)] if urls else [],
        source_vod_ids={source: "1"},
        source_name=source,
        **kwargs,
    )


class TestKeys:
    def test_language_variants_share_group_key(self):
        assert group_key("某剧 国语", "2024") == group_key("某剧 粤语", "2024") == "某剧|2024"

    def test_whitespace_and_case_ignored(self):
        assert group_key("The  Office", "2005") == group_key("the office", "2005")

    def test_year_separates(self):
        assert group_key("某剧", "2023") != group_key("某剧", "2024")

    def test_catalog_id_is_deterministic(self):
        assert catalog_id("某剧", "2024", "中国大陆") == catalog_id("某剧 国语", "2024", "中国大陆")
        assert len(catalog_id("某剧", "2024")) == 32

    def test_entry_derives_identity(self):
        e = entry()
        assert e.group_key == "某剧|2024"
        assert e.id == catalog_id("某剧", "2024", "")


class TestMergePlaySources:
    def test_union_keyed_by_source(self):
        merged = merge_play_sources(
            [group("source-a", "https://a/1")],
            [group("source-b", "https://b/1")],
        )
        assert [g["source_name"] for g in merged] == ["source-a", "source-b"]

    def test_same_source_replaces_all_its_groups(self):
        existing = [
            group("source-a", "https://a/old1", route="r1"),
            group("source-b", "https://b/1"),
            group("source-a", "https://a/old2", route="r2"),
        ]
        incoming = [group("source-a", "https://a/new", route="r1")]

        merged = merge_play_sources(existing, incoming)

        assert merged == [
            group("source-a", "https://a/new", route="r1"),
            group("source-b", "https://b/1"),
        ]

    def test_does_not_mutate_inputs(self):
        existing = [group("source-a", "https://a/1")]
        merged = merge_play_sources(existing, [])
        merged[0]["episodes"].clear()
        assert existing[0]["episodes"]


class TestMerge:
    def test_first_entry(self):
        result = merge(None, entry(cover_image_url="https://img/1.jpg"), 80)

        assert result.changed
        assert result.entry.metadata_weight == 80
        assert result.entry.metadata_source_name == "source-a"
        assert result.entry.quality_score > 0

    def test_heavier_source_replaces_metadata(self):
        first = merge(None, entry(source="source-b", synopsis="short"), 40).entry
        incoming = entry(source="source-a", synopsis="a much longer synopsis text here", director="导演")

        result = merge(first, incoming, 80)

        assert result.metadata_replaced
        assert result.entry.synopsis == "a much longer synopsis text here"
        assert result.entry.director == "导演"
        assert result.entry.metadata_source_name == "source-a"
        assert {g["source_name"] for g in result.entry.play_sources} == {"source-a", "source-b"}
        assert result.entry.source_vod_ids == {"source-a": "1", "source-b": "1"}

    def test_lighter_source_only_fills_gaps(self):
        first = merge(None, entry(source="source-a", synopsis="original"), 80).entry
        incoming = entry(source="source-b", synopsis="replacement", cast="演员甲")

        result = merge(first, incoming, 40)

        assert not result.metadata_replaced
        assert result.entry.synopsis == "original"
        assert result.entry.cast == "演员甲"
        assert result.entry.metadata_weight == 80

    def test_equal_weight_does_not_replace(self):
        first = merge(None, entry(source="source-a", synopsis="original"), 50).entry
        result = merge(first, entry(source="source-b", synopsis="other"), 50)
        assert result.entry.synopsis == "original"

    def test_unclassified_takes_incoming_category(self):
        first = merge(None, entry(category_id=0), 80).entry
        incoming = entry(source="source-b", category_id=2, classify_confidence=0.8,
                         classify_method=ClassifyMethod.HEURISTIC)

        result = merge(first, incoming, 10)

        assert result.entry.category_id == 2
        assert result.entry.classify_method == ClassifyMethod.HEURISTIC

    def test_category_choice_ignores_arrival_order(self):
        light = entry(source="source-a", category_id=1, classify_confidence=0.9,
                      classify_method=ClassifyMethod.MAPPED)
        heavy = entry(source="source-b", category_id=2, classify_confidence=0.8,
                      classify_method=ClassifyMethod.HEURISTIC)

        light_first = merge(merge(None, light, 5).entry, heavy, 10).entry
        heavy_first = merge(merge(None, heavy, 10).entry, light, 5).entry

        for result in (light_first, heavy_first):
            assert result.category_id == 1
            assert result.classify_confidence == 0.9
            assert result.classify_method == ClassifyMethod.MAPPED
            assert result.metadata_source_name == "source-b"

    def test_equal_confidence_prefers_lower_category(self):
        a = entry(source="source-a", category_id=3, classify_confidence=0.5)
        b = entry(source="source-b", category_id=2, classify_confidence=0.5)

        assert merge(merge(None, a, 80).entry, b, 10).entry.category_id == 2
        assert merge(merge(None, b, 10).entry, a, 80).entry.category_id == 2

    def test_redo_is_unchanged(self):
        incoming = entry(cast="演员甲", synopsis="同一段简介")
        first = merge(None, incoming, 80).entry

        result = merge(first, incoming, 80)

        assert not result.changed

    def test_new_episode_is_a_change(self):
        first = merge(None, entry(), 80).entry
        result = merge(first, entry(urls=("https://a.example/1.m3u8", "https://a.example/2.m3u8")), 80)

        assert result.changed
        assert result.entry.episode_count == 2


class TestQualityScorer:
    def test_complete_entry_scores_full_weight(self):
        complete = entry(
            cover_image_url="https://img/1.jpg",
            cast="演员",
            director="导演",
            synopsis="这是一段足够长的剧情简介，超过二十个字符没有问题的。",
        )
        scorer = QualityScorer()

        assert scorer.completeness(complete) == 1.0
        assert scorer.score(complete, 80) == 80.0

    def test_empty_entry(self):
        scorer = QualityScorer()
        assert scorer.score(entry(urls=()), 80) == 0.0

    def test_custom_weights(self):
        scorer = QualityScorer({"episodes": 1, "cover": 1})
        assert scorer.completeness(entry()) == 0.5


class TestDeduplicator:
    def test_equal_title_year_fold_into_one(self):
        dedup = Deduplicator()
        dedup.add(entry(title="某剧 国语", source="source-a"), 80)
        dedup.add(entry(title="某剧 粤语", source="source-b", urls=("https://b.example/1.m3u8",)), 60)

        assert len(dedup) == 1
        merged = dedup.entries()[0]
        assert [g["source_name"] for g in merged.play_sources] == ["source-a", "source-b"]

    def test_entries_sorted_by_quality(self):
        dedup = Deduplicator()
        dedup.add(entry(title="低分"), 10)
        dedup.add(entry(title="高分", cover_image_url="https://img/1.jpg"), 90)

        assert [e.title for e in dedup.entries()] == ["高分", "低分"]


@pytest.mark.django_db
class TestItemPipeline:
    def test_process_raw_item(self, source_a, classifier):
        item = RawItem(
            vod_id="101",
            name="某剧 国语",
            type_id="13",
            type_name="国产剧",
            pic="//img.example.com/101.jpg",
            remarks="更新至10集",
            year="2024年",
            area="大陆",
            actor=" 张三 ",
            content="<p>剧情</p>",
            play_url="第01集$https://a.example/1.m3u8$$$第01集$https://a2.example/1.m3u8",
            play_from="ffm3u8$$$lzm3u8",
        )

        result = ItemPipeline(classifier).process(source_a, item)

        assert result.title == "某剧"
        assert result.year == "2024"
        assert result.area == "中国大陆"
        assert result.lang == "国语"
        assert result.category_id == 2
        assert result.sub_category_name == "国产剧"
        assert result.cast == "张三"
        assert result.synopsis == "剧情"
        assert result.cover_image_url == "https://img.example.com/101.jpg"
        assert [g["route"] for g in result.play_sources] == ["ffm3u8", "lzm3u8"]
        assert result.source_vod_ids == {"source-a": "101"}
        assert result.group_key == "某剧|2024"

    def test_overlong_values_fit_their_columns(self, source_a, classifier):
        item = RawItem(
            vod_id="102",
            name="长" * 400,
            year="2024",
            director="导" * 300,
            remarks="更新" * 80,
            pic="https://img.example.com/" + "p" * 1000 + ".jpg",
            play_url="第01集$https://a.example/1.m3u8",
            play_from="ffm3u8",
        )

        result = ItemPipeline(classifier).process(source_a, item)

        assert len(result.title) == 255
        assert len(result.director) == 255
        assert len(result.remarks) == 100
        assert result.cover_image_url == ""
        assert len(result.group_key) <= 255
        assert result.group_key.endswith("|2024")
