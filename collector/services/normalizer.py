"""
Normalization utilities for raw source items.

Play addresses arrive in several historical encodings:

- ``name$url#name$url`` episodes inside one play group
- multiple play groups (routes) joined by ``$$$``, route names in vod_play_from
- a JSON route map ``{"route": "name$url#..."}``
- already split structures, either a list of
  ``{"source_name": ..., "route": ..., "episodes": [...]}`` or a mapping of
  ``source_name -> [episodes]``

All of them are turned into the canonical list form:

    [{"source_name": "src-a", "route": "ffm3u8",
      "episodes": [{"name": "第01集", "url": "https://..."}]}]

Also provides image URL, area, title and synopsis normalizers.
"""

import html
import json
import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

GROUP_DELIMITER = "$$$"
EPISODE_DELIMITER = "#"
PAIR_DELIMITER = "$"

# Canonical region names
AREA_ALIASES = {
    "大陆": "中国大陆",
    "内地": "中国大陆",
    "国产": "中国大陆",
    "中国": "中国大陆",
    "中国大陆": "中国大陆",
    "香港": "中国香港",
    "港": "中国香港",
    "中国香港": "中国香港",
    "台湾": "中国台湾",
    "台": "中国台湾",
    "中国台湾": "中国台湾",
    "韩": "韩国",
    "南韩": "韩国",
    "韩国": "韩国",
    "日": "日本",
    "日本": "日本",
    "美": "美国",
    "美国": "美国",
    "英": "英国",
    "英国": "英国",
    "泰": "泰国",
    "泰国": "泰国",
}

AREA_SPLIT_PATTERN = re.compile(r"[,，/、|\s]+")

# Markers that distinguish language/quality variants of one title
LANGUAGE_MARKERS = ["国语", "粤语", "原声", "英语", "日语", "韩语", "中字", "字幕", "国粤双语"]
QUALITY_MARKERS = ["4K", "1080P", "720P", "蓝光", "超清", "高清", "HD"]

_MARKER_PATTERN = re.compile(
    r"[\[【(（]?\s*(?<![A-Za-z])(?:"
    + "|".join(re.escape(marker) for marker in sorted(
        LANGUAGE_MARKERS + QUALITY_MARKERS, key=len, reverse=True
    ))
    + r")(?![A-Za-z])(?:版)?\s*[\]】)）]?",
    re.IGNORECASE,
)

_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_YEAR_PATTERN = re.compile(r"(19|20)\d{2}")


def is_valid_play_url(url: str) -> bool:
    """Check that url is an absolute http(s) URL with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _clean_episode(episode: Any, index: int) -> Optional[Dict[str, str]]:
    if not isinstance(episode, dict):
        return None
    url = str(episode.get("url") or "").strip()
    if not is_valid_play_url(url):
        return None
    name = str(episode.get("name") or episode.get("episodeName") or "").strip()
    return {"name": name or f"第{index}集", "url": url}


def _is_canonical(value: Any) -> bool:
    if isinstance(value, list):
        return all(
            isinstance(group, dict) and "episodes" in group and "source_name" in group
            for group in value
        )
    if isinstance(value, dict):
        return all(isinstance(episodes, list) for episodes in value.values())
    return False


def _make_group(source_name: str, route: str, episodes: List[Dict[str, str]]) -> Dict[str, Any]:
    return {"source_name": source_name, "route": route, "episodes": episodes}


def _from_structure(value: Any) -> List[Dict[str, Any]]:
    """Convert an already split structure into canonical form."""
    if isinstance(value, dict):
        value = [
            {"source_name": name, "episodes": episodes}
            for name, episodes in value.items()
        ]

    groups = []
    for group in value:
        episodes = []
        for index, episode in enumerate(group.get("episodes") or [], start=1):
            cleaned = _clean_episode(episode, index)
            if cleaned:
                episodes.append(cleaned)
        if episodes:
            groups.append(_make_group(
                str(group["source_name"]), str(group.get("route") or ""), episodes
            ))
    return groups


def parse_episodes(group_text: str) -> List[Dict[str, str]]:
    """
    Split one play group into episodes.

    Episodes are separated by ``#`` (or newlines), each episode is a
    ``name$url`` pair. A bare URL gets a generated episode name.
    """
    episodes = []
    position = 0
    for chunk in re.split(r"[#\r\n]+", group_text or ""):
        chunk = chunk.strip()
        if not chunk:
            continue
        position += 1

        if PAIR_DELIMITER in chunk:
            name, _, url = chunk.partition(PAIR_DELIMITER)
        else:
            name, url = "", chunk

        url = url.strip()
        if not is_valid_play_url(url):
            logger.debug(f"Dropping invalid play url fragment: {chunk[:80]}")
            continue

        episodes.append({"name": name.strip() or f"第{position}集", "url": url})
    return episodes


def normalize_play_sources(
    source_name: str,
    raw_play_field: Any,
    play_from: str = "",
) -> List[Dict[str, Any]]:
    """
    Normalize a raw play field into canonical play sources.

    Args:
        source_name: Name of the source supplying the item
        raw_play_field: Delimited string, JSON route map, or split structure
        play_from: ``$$$`` separated route names (vod_play_from)

    Returns:
        List of {"source_name", "route", "episodes"} dicts in payload order.
        Canonical input is returned without re-splitting.
    """
    if raw_play_field is None or raw_play_field == "":
        return []

    if isinstance(raw_play_field, (list, dict)):
        if _is_canonical(raw_play_field):
            return _from_structure(raw_play_field)
        logger.debug(f"Unrecognized play structure from {source_name}")
        return []

    text = str(raw_play_field).strip()

    # Some sources serialize their route map as JSON: {"route": "name$url#..."}
    if text[:1] == "{":
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            groups = []
            for route, value in decoded.items():
                if isinstance(value, str):
                    episodes = parse_episodes(value)
                    if episodes:
                        groups.append(_make_group(source_name, str(route), episodes))
                elif isinstance(value, list):
                    groups.extend(_from_structure(
                        [{"source_name": source_name, "route": route, "episodes": value}]
                    ))
            return groups

    multi_group = GROUP_DELIMITER in text
    routes = [name.strip() for name in (play_from or "").split(GROUP_DELIMITER)]
    groups = []
    for index, group_text in enumerate(text.split(GROUP_DELIMITER)):
        episodes = parse_episodes(group_text)
        if not episodes:
            continue

        route = routes[index] if index < len(routes) else ""
        if not route and multi_group:
            route = f"线路{index + 1}"
        groups.append(_make_group(source_name, route, episodes))

    return groups


def count_episodes(play_sources: List[Dict[str, Any]]) -> int:
    return sum(len(group.get("episodes", [])) for group in play_sources or [])


def normalize_image_url(url: Optional[str]) -> str:
    """
    Normalize a cover image URL.

    Protocol-relative and plain http URLs are upgraded to https.
    Anything that is not an http(s) URL is dropped.
    """
    if not url:
        return ""
    url = str(url).strip()
    if url.startswith("//"):
        url = f"https:{url}"
    elif url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    return url if is_valid_play_url(url) else ""


def normalize_area(area: Optional[str]) -> str:
    """
    Normalize a free-text area/region field.

    Multiple values are split on common separators, mapped through the
    alias table, deduplicated, and joined with ",".
    """
    if not area:
        return ""

    result = []
    for part in AREA_SPLIT_PATTERN.split(str(area).strip()):
        if not part:
            continue
        canonical = AREA_ALIASES.get(part, part)
        if canonical not in result:
            result.append(canonical)
    return ",".join(result)


def strip_html(text: Optional[str]) -> str:
    """Remove tags and entities from a synopsis."""
    if not text:
        return ""
    text = _TAG_PATTERN.sub(" ", str(text))
    text = html.unescape(text).replace("　", " ")
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def normalize_title(title: Optional[str]) -> str:
    """
    Reduce a title to its base name.

    Language and quality markers (国语, 粤语, 1080P, 高清 ...) are removed so
    variants of one title share a base name.
    """
    if not title:
        return ""
    title = unicodedata.normalize("NFKC", str(title))
    base = _MARKER_PATTERN.sub("", title)
    base = _WHITESPACE_PATTERN.sub(" ", base).strip(" -_·")
    return base or title.strip()


def extract_language(title: Optional[str]) -> str:
    """Return the first language marker found in a title."""
    if not title:
        return ""
    for marker in LANGUAGE_MARKERS:
        if marker in title:
            return marker
    return ""


def normalize_year(year: Any) -> str:
    """Extract a four digit year, or an empty string."""
    if year in (None, "", 0, "0"):
        return ""
    match = _YEAR_PATTERN.search(str(year))
    return match.group(0) if match else ""
