"""
Response parser for third-party listing endpoints.

Sources speak one of two dialects of the same listing API:

- JSON: ``{"code": 1, "page": 1, "pagecount": 9, "list": [{"vod_id": ...}]}``
- XML:  ``<rss><list page="1" pagecount="9"><video><id>..</id>...</video></list></rss>``

The raw body is decoded exactly once into a tagged payload (JsonPayload or
XmlPayload); everything downstream works on RawItem records.

parse() never raises. Failures are reported through ParsedPayload.error so
callers can treat them as a source failure.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
FORMAT_XML = "xml"
FORMAT_AUTO = "auto"

# JSON "code" values that mean success
SUCCESS_CODES = {1, 200}


class PayloadDecodeError(Exception):
    """Raised internally when a body cannot be decoded in a dialect."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class JsonPayload:
    value: Any
    format: str = FORMAT_JSON


@dataclass(frozen=True)
class XmlPayload:
    text: str
    format: str = FORMAT_XML


RawPayload = Union[JsonPayload, XmlPayload]


@dataclass
class ParseError:
    """Structured parse failure."""

    code: str
    message: str


@dataclass
class RawItem:
    """One listing entry in source-neutral shape."""

    vod_id: str
    name: str
    type_id: str = ""
    type_name: str = ""
    pic: str = ""
    remarks: str = ""
    year: str = ""
    area: str = ""
    lang: str = ""
    actor: str = ""
    director: str = ""
    content: str = ""
    play_url: Any = ""
    play_from: str = ""
    score: str = ""
    tag: str = ""
    updated: str = ""


@dataclass
class SourceCategory:
    """One entry of a source's own category taxonomy."""

    type_id: str
    type_name: str
    parent_id: str = ""


@dataclass
class ParsedPayload:
    """Result of parsing one response body."""

    items: List[RawItem] = field(default_factory=list)
    page: int = 1
    page_count: int = 1
    limit: int = 20
    total: int = 0
    categories: List[SourceCategory] = field(default_factory=list)
    detected_format: Optional[str] = None
    error: Optional[ParseError] = None

    @property
    def success(self) -> bool:
        return self.error is None


def detect_format(text: str) -> Optional[str]:
    """
    Guess the dialect from the first non-blank characters.

    Returns:
        "xml", "json", or None when the body looks like neither
    """
    trimmed = (text or "").lstrip("﻿ \t\r\n")
    if trimmed.startswith(("<?xml", "<rss", "<list")):
        return FORMAT_XML
    if trimmed.startswith(("{", "[")):
        return FORMAT_JSON
    return None


def _to_text(raw_body: Union[bytes, str, None]) -> str:
    if raw_body is None:
        return ""
    if isinstance(raw_body, bytes):
        return raw_body.decode("utf-8", errors="replace")
    return str(raw_body)


def _decode_json(text: str) -> JsonPayload:
    try:
        return JsonPayload(json.loads(text))
    except ValueError as e:
        raise PayloadDecodeError("malformed_json", f"Invalid JSON: {e}")


def _decode_xml(text: str) -> XmlPayload:
    if not re.search(r"<(rss|list|video|item|class)\b", text, re.IGNORECASE):
        raise PayloadDecodeError("malformed_xml", "No listing elements found in XML body")
    return XmlPayload(text)


def decode_payload(raw_body: Union[bytes, str], declared_format: str = FORMAT_AUTO) -> RawPayload:
    """
    Decode a body into a tagged payload.

    With an "auto" declaration JSON is attempted first, then XML.

    Raises:
        PayloadDecodeError: If the body fits no supported dialect
    """
    text = _to_text(raw_body).strip().lstrip("﻿")
    if not text:
        raise PayloadDecodeError("empty_body", "Response body is empty")

    if declared_format == FORMAT_JSON:
        return _decode_json(text)
    if declared_format == FORMAT_XML:
        return _decode_xml(text)

    try:
        return _decode_json(text)
    except PayloadDecodeError:
        pass

    try:
        return _decode_xml(text)
    except PayloadDecodeError:
        raise PayloadDecodeError(
            "unrecognized",
            f"Body is neither JSON nor listing XML: {text[:60]!r}",
        )


def _as_int(value: Any, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _first(data: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def _item_from_json(data: Dict[str, Any]) -> Optional[RawItem]:
    vod_id = _first(data, "vod_id", "id")
    name = _first(data, "vod_name", "name")
    if not vod_id or not name:
        return None

    play_url = data.get("vod_play_url")
    if play_url is None:
        play_url = data.get("play_url", "")
    if not isinstance(play_url, (list, dict)):
        play_url = str(play_url or "")

    return RawItem(
        vod_id=vod_id,
        name=name,
        type_id=_first(data, "type_id", "tid"),
        type_name=_first(data, "type_name", "type"),
        pic=_first(data, "vod_pic", "pic"),
        remarks=_first(data, "vod_remarks", "note"),
        year=_first(data, "vod_year", "year"),
        area=_first(data, "vod_area", "area"),
        lang=_first(data, "vod_lang", "lang"),
        actor=_first(data, "vod_actor", "actor"),
        director=_first(data, "vod_director", "director"),
        content=_first(data, "vod_content", "vod_blurb", "des", "blurb"),
        play_url=play_url,
        play_from=_first(data, "vod_play_from", "play_from"),
        score=_first(data, "vod_score", "score"),
        tag=_first(data, "vod_tag", "tag"),
        updated=_first(data, "vod_time", "last"),
    )


def _parse_json(payload: JsonPayload) -> ParsedPayload:
    data = payload.value
    if isinstance(data, list):
        data = {"list": data}
    if not isinstance(data, dict):
        raise PayloadDecodeError("malformed_json", "JSON body is not an object")

    entries = data.get("list")
    if entries is None and isinstance(data.get("data"), list):
        entries = data["data"]
    entries = entries if isinstance(entries, list) else []

    items = []
    for entry in entries:
        if isinstance(entry, dict):
            item = _item_from_json(entry)
            if item:
                items.append(item)

    categories = []
    for entry in data.get("class") or []:
        if isinstance(entry, dict) and _first(entry, "type_id"):
            categories.append(SourceCategory(
                type_id=_first(entry, "type_id"),
                type_name=_first(entry, "type_name"),
                parent_id=_first(entry, "type_pid"),
            ))

    code = data.get("code")
    if code is not None and _as_int(code, 1) not in SUCCESS_CODES and not items:
        raise PayloadDecodeError(
            "api_error", f"Source returned code {code}: {data.get('msg', '')}"
        )

    return ParsedPayload(
        items=items,
        page=_as_int(data.get("page"), 1),
        page_count=_as_int(data.get("pagecount", data.get("page_count")), 1),
        limit=_as_int(data.get("limit"), 20),
        total=_as_int(data.get("total"), len(items)),
        categories=categories,
        detected_format=FORMAT_JSON,
    )


_CDATA_PATTERN = re.compile(r"<!\[CDATA\[([\s\S]*?)\]\]>")


def _unwrap(text: str) -> str:
    return _CDATA_PATTERN.sub(lambda m: m.group(1), text or "").strip()


def _extract_tag(xml: str, tag: str) -> str:
    match = re.search(rf"<{tag}(?:\s[^>]*)?>([\s\S]*?)</{tag}>", xml, re.IGNORECASE)
    return _unwrap(match.group(1)) if match else ""


def _extract_attr(tag_text: str, attr: str) -> str:
    match = re.search(rf'\b{attr}\s*=\s*["\']([^"\']*)["\']', tag_text, re.IGNORECASE)
    return match.group(1) if match else ""


def _extract_play(xml: str) -> tuple:
    """Collect <dl><dd flag="..."> play groups into ($$$ urls, $$$ flags)."""
    dl_match = re.search(r"<dl>([\s\S]*?)</dl>", xml, re.IGNORECASE)
    if not dl_match:
        return "", ""

    urls, flags = [], []
    for dd_match in re.finditer(r"<dd([^>]*)>([\s\S]*?)</dd>", dl_match.group(1), re.IGNORECASE):
        content = _unwrap(dd_match.group(2))
        if not content:
            continue
        urls.append(content)
        flags.append(_extract_attr(dd_match.group(1), "flag"))
    return "$$$".join(urls), "$$$".join(flags)


def _item_from_xml(xml: str) -> Optional[RawItem]:
    vod_id = _extract_tag(xml, "id") or _extract_tag(xml, "vod_id")
    name = _extract_tag(xml, "name") or _extract_tag(xml, "vod_name")
    if not vod_id or not name:
        return None

    play_url, play_from = _extract_play(xml)
    if not play_url:
        play_url = _extract_tag(xml, "vod_play_url")
        play_from = _extract_tag(xml, "vod_play_from")

    return RawItem(
        vod_id=vod_id,
        name=name,
        type_id=_extract_tag(xml, "tid") or _extract_tag(xml, "type_id"),
        type_name=_extract_tag(xml, "type") or _extract_tag(xml, "type_name"),
        pic=_extract_tag(xml, "pic") or _extract_tag(xml, "vod_pic"),
        remarks=_extract_tag(xml, "note") or _extract_tag(xml, "vod_remarks"),
        year=_extract_tag(xml, "year") or _extract_tag(xml, "vod_year"),
        area=_extract_tag(xml, "area") or _extract_tag(xml, "vod_area"),
        lang=_extract_tag(xml, "lang") or _extract_tag(xml, "vod_lang"),
        actor=_extract_tag(xml, "actor") or _extract_tag(xml, "vod_actor"),
        director=_extract_tag(xml, "director") or _extract_tag(xml, "vod_director"),
        content=_extract_tag(xml, "des") or _extract_tag(xml, "vod_content"),
        play_url=play_url,
        play_from=play_from,
        score=_extract_tag(xml, "score") or _extract_tag(xml, "vod_score"),
        tag=_extract_tag(xml, "tag") or _extract_tag(xml, "vod_tag"),
        updated=_extract_tag(xml, "last") or _extract_tag(xml, "vod_time"),
    )


def _parse_xml(payload: XmlPayload) -> ParsedPayload:
    text = payload.text
    result = ParsedPayload(detected_format=FORMAT_XML)

    # Pagination lives on <list>; a few sources put it on <rss> instead
    for root_tag in ("list", "rss"):
        match = re.search(rf"<{root_tag}\b[^>]*>", text, re.IGNORECASE)
        if not match or not _extract_attr(match.group(0), "pagecount"):
            continue
        tag_text = match.group(0)
        result.page = _as_int(_extract_attr(tag_text, "page"), 1)
        result.page_count = _as_int(_extract_attr(tag_text, "pagecount"), 1)
        result.limit = _as_int(_extract_attr(tag_text, "pagesize"), 20)
        result.total = _as_int(_extract_attr(tag_text, "recordcount"), 0)
        break

    for element in ("video", "item"):
        for match in re.finditer(rf"<{element}>([\s\S]*?)</{element}>", text, re.IGNORECASE):
            item = _item_from_xml(match.group(1))
            if item:
                result.items.append(item)
        if result.items:
            break

    class_match = re.search(r"<class>([\s\S]*?)</class>", text, re.IGNORECASE)
    if class_match:
        for ty in re.finditer(r"<ty([^>]*)>([\s\S]*?)</ty>", class_match.group(1), re.IGNORECASE):
            type_id = _extract_attr(ty.group(1), "id")
            if type_id:
                result.categories.append(
                    SourceCategory(type_id=type_id, type_name=_unwrap(ty.group(2)))
                )

    if not result.total:
        result.total = len(result.items)
    return result


def parse(raw_body: Union[bytes, str], declared_format: str = FORMAT_AUTO) -> ParsedPayload:
    """
    Parse a source response body into raw items.

    Args:
        raw_body: Response body as bytes or text
        declared_format: "json", "xml" or "auto"

    Returns:
        ParsedPayload. On failure items is empty and error is set;
        detected_format is only set when decoding succeeded.
    """
    try:
        payload = decode_payload(raw_body, declared_format)
        if isinstance(payload, JsonPayload):
            return _parse_json(payload)
        return _parse_xml(payload)
    except PayloadDecodeError as e:
        logger.debug(f"Parse failed ({e.code}): {e.message}")
        return ParsedPayload(error=ParseError(code=e.code, message=e.message))
    except Exception as e:
        logger.warning(f"Unexpected parser failure: {e}")
        return ParsedPayload(error=ParseError(code="unrecognized", message=str(e)))
