"""
Category classifier.

Maps a source's own category (id and free-text name) into the canonical
catalog taxonomy. Resolution order:

1. mapped     - a learned CategoryMapping row for (source, raw category id)
2. heuristic  - ordered keyword rules over the category name, then over the
                title and extra hints (remarks, tags)
3. fallback   - the unclassified bucket

Classification never raises. The worst case is the fallback bucket.

Usage:
    classifier = Classifier(mapping_cache=TTLCache(300))
    result = classifier.classify(source, "13", "悬疑剧", "某某悬疑剧")
    sync_categories(source, parsed.categories, classifier=classifier)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction

from collector.models import CategoryMapping, ClassifyMethod, VideoSource
from collector.services.cache import TTLCache

logger = logging.getLogger(__name__)

UNCLASSIFIED_CATEGORY_ID = 0

CANONICAL_CATEGORIES = {
    0: "未分类",
    1: "电影",
    2: "电视剧",
    3: "综艺",
    4: "动漫",
    5: "短剧",
    6: "体育",
    7: "纪录片",
    8: "预告片",
    9: "福利",
}

# Categories that belong to low-priority (adult) content
LOW_PRIORITY_CATEGORY_IDS = {9}

# Category-name rules, checked in order. The first rule whose patterns match
# and whose excludes do not wins.
CATEGORY_NAME_RULES = [
    {
        "category_id": 8,
        "patterns": ["预告", "预告片", "trailer", "先导片", "花絮", "解说", "影视解说"],
    },
    {
        "category_id": 9,
        "patterns": ["伦理", "三级", "两性", "写真", "热舞", "福利", "成人"],
    },
    {
        "category_id": 5,
        "patterns": [
            "短剧", "微短剧", "竖屏剧", "女频", "恋爱", "爽文短剧", "反转爽剧",
            "古装仙侠", "年代穿越", "脑洞悬疑", "现代都市", "擦边短剧", "漫剧",
        ],
        "excludes": ["恋爱片"],
    },
    {
        "category_id": 6,
        "patterns": [
            "体育", "足球", "篮球", "网球", "斯诺克", "NBA", "CBA", "世界杯", "欧冠",
            "英超", "西甲", "德甲", "意甲", "中超", "赛事", "比赛直播", "电竞", "UFC", "拳击",
        ],
    },
    {
        "category_id": 7,
        "patterns": [
            "纪录片", "纪录", "记录片", "记录", "纪实", "探索", "自然", "BBC",
            "Discovery", "科普", "学习", "教育",
        ],
        "excludes": ["纪录剧"],
    },
    {
        "category_id": 3,
        "patterns": ["综艺", "真人秀", "脱口秀", "晚会", "演唱会"],
        "excludes": ["体育"],
    },
    {
        "category_id": 4,
        "patterns": ["动漫", "动画", "番剧", "国漫", "日漫", "新番", "OVA"],
        "excludes": ["动作"],
    },
    {
        # Movie rules run before TV so "XX片" wins
        "category_id": 1,
        "patterns": ["片", "电影", "影片", "剧场版"],
        "excludes": [
            "国产剧", "韩剧", "日剧", "美剧", "泰剧", "港剧", "台剧", "英剧", "内地剧",
            "香港剧", "台湾剧", "韩国剧", "日本剧", "欧美剧", "海外剧", "电视剧", "连续剧",
            "网剧", "短剧", "综艺", "动漫", "动画", "体育", "纪录片", "预告片", "预告", "解说",
        ],
    },
    {
        "category_id": 2,
        "patterns": ["剧", "连续剧", "电视剧", "网剧", "迷你剧", "悬疑"],
        "excludes": [
            "短剧", "动漫", "动画", "综艺", "纪录", "体育", "预告", "解说", "女频", "爽文",
            "反转爽剧", "古装仙侠", "年代穿越", "脑洞悬疑", "现代都市", "擦边短剧", "漫剧",
        ],
    },
]

# Title and hint keywords, checked in order when the category name is unusable
TITLE_KEYWORD_RULES = [
    (5, ["短剧", "微短剧", "竖屏", "霸总", "战神", "闪婚", "赘婿", "龙王", "神医"]),
    (3, [
        "综艺", "真人秀", "访谈", "选秀", "晚会", "演唱会", "音乐节", "跨年", "春晚",
        "盛典", "奔跑吧", "极限挑战", "向往的生活", "快乐大本营", "天天向上",
    ]),
    (4, ["动漫", "动画", "番剧", "国漫", "日漫", "海贼王", "火影忍者", "名侦探柯南", "鬼灭之刃"]),
    (7, ["纪录片", "纪实", "BBC"]),
    (6, ["NBA", "CBA", "英超", "欧冠", "世界杯"]),
    (2, ["电视剧", "连续剧", "剧集", "全集", "更新至", "集全"]),
    (1, ["电影", "影片", "大片", "院线", "剧场版", "抢先版"]),
]

# Sub-category rules per canonical category. Sub-category ids are
# category_id * 100 + position (1-based), so list order must stay stable.
SUB_CATEGORY_RULES: Dict[int, List[Tuple[str, List[str]]]] = {
    1: [
        ("动作", ["动作"]),
        ("喜剧", ["喜剧", "搞笑"]),
        ("爱情", ["爱情", "浪漫"]),
        ("科幻", ["科幻"]),
        ("恐怖", ["恐怖", "惊悚"]),
        ("悬疑", ["悬疑", "推理", "犯罪"]),
        ("战争", ["战争", "军事"]),
        ("剧情", ["剧情", "文艺"]),
        ("动画", ["动画", "剧场版"]),
        ("灾难", ["灾难", "末日"]),
        ("武侠", ["武侠", "江湖"]),
        ("古装", ["古装", "古代", "宫廷"]),
        ("传记", ["传记", "人物"]),
        ("家庭", ["家庭", "亲情", "儿童"]),
        ("伦理", ["伦理", "情感", "人性"]),
    ],
    2: [
        ("国产剧", ["国产", "大陆", "内地", "中国"]),
        ("韩剧", ["韩国", "韩剧"]),
        ("日剧", ["日本", "日剧"]),
        ("美剧", ["美国", "美剧", "欧美"]),
        ("港台剧", ["港", "台湾", "港台", "香港"]),
        ("泰剧", ["泰国", "泰剧"]),
        ("英剧", ["英国", "英剧"]),
        ("都市", ["都市", "现代", "职场"]),
        ("古装", ["古装", "古代", "宫廷"]),
        ("悬疑", ["悬疑", "推理", "刑侦"]),
        ("言情", ["言情", "爱情", "甜宠"]),
    ],
    3: [
        ("大陆综艺", ["大陆", "内地", "国产"]),
        ("港台综艺", ["港", "台湾", "港台"]),
        ("日韩综艺", ["日本", "韩国", "日韩"]),
        ("欧美综艺", ["欧美", "美国"]),
        ("晚会", ["晚会", "春晚", "跨年", "盛典"]),
        ("真人秀", ["真人秀", "真人"]),
        ("访谈", ["访谈", "脱口秀"]),
    ],
    4: [
        ("国产动漫", ["国产", "国漫", "大陆"]),
        ("日本动漫", ["日本", "日漫", "新番", "番剧"]),
        ("欧美动漫", ["欧美", "美国", "迪士尼"]),
        ("热血", ["热血", "战斗", "格斗"]),
        ("恋爱", ["恋爱", "爱情", "后宫"]),
        ("校园", ["校园", "学园", "青春"]),
    ],
    5: [
        ("霸总", ["霸总", "总裁", "豪门"]),
        ("战神", ["战神", "兵王", "特种"]),
        ("古装", ["古装", "穿越", "宫廷"]),
        ("甜宠", ["甜宠", "甜蜜", "恋爱"]),
        ("都市", ["都市", "现代", "职场"]),
        ("玄幻", ["玄幻", "修仙", "仙侠"]),
        ("复仇", ["复仇", "报复", "逆袭"]),
        ("重生", ["重生", "穿越"]),
        ("萌宝", ["萌宝", "宝宝", "亲子"]),
    ],
    6: [
        ("足球", ["足球", "世界杯", "欧冠", "英超", "西甲", "德甲", "意甲", "中超", "欧洲杯"]),
        ("篮球", ["篮球", "NBA", "CBA", "男篮", "女篮"]),
        ("网球", ["网球", "温网", "法网", "美网", "澳网"]),
        ("台球", ["台球", "斯诺克", "桌球"]),
        ("格斗", ["格斗", "拳击", "UFC", "MMA", "搏击"]),
        ("电竞", ["电竞", "游戏", "LOL", "DOTA"]),
        ("综合", ["体育", "赛事", "比赛", "直播", "奥运"]),
    ],
    7: [
        ("历史", ["历史", "古代", "战争", "人物"]),
        ("自然", ["自然", "动物", "植物", "地球"]),
        ("科技", ["科技", "科学", "探索", "宇宙"]),
        ("社会", ["社会", "人文", "文化"]),
        ("美食", ["美食", "烹饪", "饮食"]),
    ],
    8: [
        ("电影预告", ["电影", "影片", "大片"]),
        ("剧集预告", ["电视剧", "剧集", "网剧"]),
        ("综艺预告", ["综艺", "真人秀"]),
        ("影视解说", ["解说", "影视解说"]),
    ],
    9: [
        ("伦理", ["伦理"]),
        ("三级", ["三级", "港台三级"]),
        ("写真", ["写真", "热舞"]),
        ("两性", ["两性", "课堂"]),
    ],
}

NAME_MATCH_CEILING = 0.95
TITLE_MATCH_CEILING = 0.6


@dataclass
class Classification:
    """Outcome of classifying one raw category."""

    category_id: int
    sub_category_id: Optional[int] = None
    sub_category_name: str = ""
    confidence: float = 0.0
    method: str = ClassifyMethod.FALLBACK

    @property
    def category_name(self) -> str:
        return CANONICAL_CATEGORIES.get(self.category_id, CANONICAL_CATEGORIES[0])


def sub_category_name(sub_category_id: Optional[int]) -> str:
    if not sub_category_id:
        return ""
    rules = SUB_CATEGORY_RULES.get(sub_category_id // 100, [])
    position = sub_category_id % 100
    if 1 <= position <= len(rules):
        return rules[position - 1][0]
    return ""


def extract_sub_category(category_id: int, text: str) -> Tuple[Optional[int], str]:
    """Find the first sub-category of category_id mentioned in text."""
    for position, (name, patterns) in enumerate(SUB_CATEGORY_RULES.get(category_id, []), start=1):
        if any(pattern in text for pattern in patterns):
            return category_id * 100 + position, name
    return None, ""


def match_category_name(name: str) -> Optional[Tuple[int, int]]:
    """
    Apply the ordered category-name rules.

    Returns:
        (category_id, longest matched pattern length) or None
    """
    name = (name or "").strip()
    if not name:
        return None

    for rule in CATEGORY_NAME_RULES:
        if any(exclude in name for exclude in rule.get("excludes", [])):
            continue
        matched = [pattern for pattern in rule["patterns"] if pattern in name]
        if matched:
            return rule["category_id"], max(len(pattern) for pattern in matched)
    return None


def match_title_keywords(text: str) -> Optional[Tuple[int, int]]:
    """Apply the title/hint keyword rules, same return shape as match_category_name."""
    if not text:
        return None
    for category_id, keywords in TITLE_KEYWORD_RULES:
        matched = [keyword for keyword in keywords if keyword in text]
        if matched:
            return category_id, max(len(keyword) for keyword in matched)
    return None


class Classifier:
    """
    Resolves raw source categories into canonical categories.

    Learned mappings are read through an injectable TTLCache, so tests and
    callers that just wrote mappings can invalidate it.
    """

    def __init__(self, mapping_cache: Optional[TTLCache] = None):
        if mapping_cache is None:
            mapping_cache = TTLCache(getattr(settings, "COLLECTOR_MAPPING_CACHE_TTL", 300))
        self.mapping_cache = mapping_cache

    def _mappings_for(self, source: VideoSource) -> Dict[str, Tuple[int, Optional[int]]]:
        def load():
            return {
                row.source_category_id: (row.target_category_id, row.sub_category_id)
                for row in CategoryMapping.objects.filter(source=source)
            }

        return self.mapping_cache.get_or_load(("mappings", str(source.pk)), load)

    def invalidate(self, source: Optional[VideoSource] = None) -> None:
        if source is None:
            self.mapping_cache.invalidate()
        else:
            self.mapping_cache.invalidate(("mappings", str(source.pk)))

    def lookup_mapping(self, source, raw_category_id) -> Optional[Classification]:
        if source is None or raw_category_id in (None, ""):
            return None
        try:
            mapping = self._mappings_for(source).get(str(raw_category_id))
        except DatabaseError as e:
            logger.warning(f"Category mapping lookup failed for {source.name}: {e}")
            return None
        if mapping is None:
            return None

        category_id, sub_category_id = mapping
        return Classification(
            category_id=category_id,
            sub_category_id=sub_category_id,
            sub_category_name=sub_category_name(sub_category_id),
            confidence=1.0,
            method=ClassifyMethod.MAPPED,
        )

    def classify(
        self,
        source: Optional[VideoSource] = None,
        raw_category_id=None,
        raw_category_name: str = "",
        title: str = "",
        extra_hints: Optional[Iterable[str]] = None,
    ) -> Classification:
        """
        Classify a raw category.

        Args:
            source: VideoSource the item came from (needed for mapped lookups)
            raw_category_id: Source-specific category id
            raw_category_name: Source-specific category name
            title: Item title, used as a secondary hint
            extra_hints: Additional free text (remarks, tags)

        Returns:
            Classification with method mapped, heuristic or fallback
        """
        mapped = self.lookup_mapping(source, raw_category_id)
        if mapped is not None:
            if mapped.sub_category_id is None:
                mapped.sub_category_id, mapped.sub_category_name = extract_sub_category(
                    mapped.category_id, f"{raw_category_name or ''} {title or ''}"
                )
            return mapped

        hint_text = " ".join([title or ""] + [str(h) for h in (extra_hints or []) if h])
        name = (raw_category_name or "").strip()

        by_name = match_category_name(name)
        if by_name is not None:
            category_id, matched_len = by_name
            confidence = min(NAME_MATCH_CEILING, 0.5 + 0.45 * matched_len / len(name))
            sub_id, sub_name = extract_sub_category(category_id, name)
            if sub_id is None:
                sub_id, sub_name = extract_sub_category(category_id, hint_text)
            return Classification(
                category_id=category_id,
                sub_category_id=sub_id,
                sub_category_name=sub_name,
                confidence=round(confidence, 3),
                method=ClassifyMethod.HEURISTIC,
            )

        by_title = match_title_keywords(hint_text)
        if by_title is not None:
            category_id, matched_len = by_title
            confidence = min(TITLE_MATCH_CEILING, 0.5 + 0.45 * matched_len / len(hint_text))
            sub_id, sub_name = extract_sub_category(category_id, hint_text)
            return Classification(
                category_id=category_id,
                sub_category_id=sub_id,
                sub_category_name=sub_name,
                confidence=round(confidence, 3),
                method=ClassifyMethod.HEURISTIC,
            )

        return Classification(category_id=UNCLASSIFIED_CATEGORY_ID)


def sync_categories(
    source: VideoSource,
    categories: Iterable,
    classifier: Optional[Classifier] = None,
) -> Dict[str, int]:
    """
    Persist classifier decisions for a source's whole taxonomy.

    Each raw category is classified by name. Non-fallback results are stored
    as CategoryMapping rows so later lookups are exact matches.

    Args:
        source: VideoSource owning the taxonomy
        categories: Iterable of SourceCategory (type_id, type_name)
        classifier: Classifier whose cache is invalidated afterwards

    Returns:
        Dict with created, updated and skipped counts
    """
    classifier = classifier or Classifier()
    summary = {"created": 0, "updated": 0, "skipped": 0}

    with transaction.atomic():
        for category in categories:
            type_id = str(getattr(category, "type_id", "") or "").strip()
            type_name = str(getattr(category, "type_name", "") or "").strip()
            if not type_id:
                summary["skipped"] += 1
                continue

            by_name = match_category_name(type_name)
            if by_name is None:
                logger.info(f"No canonical category for {source.name}:{type_id} ({type_name})")
                summary["skipped"] += 1
                continue

            category_id, matched_len = by_name
            sub_id, _ = extract_sub_category(category_id, type_name)
            _, created = CategoryMapping.objects.update_or_create(
                source=source,
                source_category_id=type_id,
                defaults={
                    "source_category_name": type_name,
                    "target_category_id": category_id,
                    "sub_category_id": sub_id,
                    "confidence": round(
                        min(NAME_MATCH_CEILING, 0.5 + 0.45 * matched_len / len(type_name)), 3
                    ),
                    "method": ClassifyMethod.HEURISTIC,
                },
            )
            summary["created" if created else "updated"] += 1

    classifier.invalidate(source)
    logger.info(
        f"Synced categories for {source.name}: "
        f"{summary['created']} created, {summary['updated']} updated, "
        f"{summary['skipped']} skipped"
    )
    return summary
