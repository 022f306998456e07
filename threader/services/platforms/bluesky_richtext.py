"""Bluesky rich text -> HTML.

A post record carries plain `text` plus `facets`: annotations whose ranges are
UTF-8 *byte* offsets into the text. Python strings index by code point, so
each range is translated through a byte-offset table (one entry per code point
boundary) with a binary search. Offsets that land inside a multi-byte
character snap back to the start of that character.

Facet features:
  {"$type": "app.bsky.richtext.facet#link", "uri": "https://..."}
  {"$type": "app.bsky.richtext.facet#mention", "did": "did:plc:..."}
  {"$type": "app.bsky.richtext.facet#tag", "tag": "python"}
"""

import html
from bisect import bisect_right
from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import quote

LINK_FEATURE = "app.bsky.richtext.facet#link"
MENTION_FEATURE = "app.bsky.richtext.facet#mention"
TAG_FEATURE = "app.bsky.richtext.facet#tag"

FEATURE_PRIORITY = (LINK_FEATURE, MENTION_FEATURE, TAG_FEATURE)

PROFILE_URL = "https://bsky.app/profile/{}"
HASHTAG_URL = "https://bsky.app/hashtag/{}"


class FacetRange(NamedTuple):
    start: int
    end: int
    feature: Dict[str, Any]


def utf8_length(code_point: int) -> int:
    if code_point <= 0x7F:
        return 1
    if code_point <= 0x7FF:
        return 2
    if code_point <= 0xFFFF:
        return 3
    return 4


def build_byte_boundaries(text: str) -> List[int]:
    """Byte offset of every code point boundary; entry i is where text[i] starts."""
    boundaries = [0]
    offset = 0
    for char in text:
        offset += utf8_length(ord(char))
        boundaries.append(offset)
    return boundaries


def byte_to_index(boundaries: List[int], byte_offset: int) -> int:
    """Map a UTF-8 byte offset to a string index (floor to a boundary)."""
    if not boundaries or byte_offset <= 0:
        return 0
    if byte_offset >= boundaries[-1]:
        return len(boundaries) - 1
    return bisect_right(boundaries, byte_offset) - 1


def escape_and_break(value: str) -> str:
    return html.escape(value, quote=True).replace("\n", "<br>")


def pick_feature(features: Any) -> Optional[Dict[str, Any]]:
    """Choose the feature to render when one facet carries several."""
    if not isinstance(features, list):
        return None
    usable = [feature for feature in features if isinstance(feature, dict)]
    if not usable:
        return None
    for feature_type in FEATURE_PRIORITY:
        for feature in usable:
            if feature.get("$type") == feature_type:
                return feature
    return usable[0]


def feature_href(feature: Dict[str, Any], segment: str) -> str:
    feature_type = feature.get("$type")
    if feature_type == LINK_FEATURE:
        return str(feature.get("uri") or "")
    if feature_type == MENTION_FEATURE:
        return PROFILE_URL.format(feature.get("did") or "")
    if feature_type == TAG_FEATURE:
        tag = feature.get("tag") or segment.removeprefix("#")
        return HASHTAG_URL.format(quote(str(tag), safe=""))
    return ""


def render_segment(segment: str, feature: Optional[Dict[str, Any]]) -> str:
    label = escape_and_break(segment)
    if not feature:
        return label
    href = feature_href(feature, segment)
    if not href:
        return label
    return (
        f'<a href="{html.escape(href, quote=True)}" target="_blank" '
        f'rel="noopener noreferrer nofollow">{label}</a>'
    )


def facet_ranges(text: str, facets: Any) -> List[FacetRange]:
    """Translate facets into non-overlapping string ranges.

    Ranges are sorted by (start, end); a range that starts before the end of
    the previously kept one is dropped.
    """
    if not isinstance(facets, list) or not facets:
        return []

    boundaries = build_byte_boundaries(text)
    ranges: List[FacetRange] = []
    for facet in facets:
        if not isinstance(facet, dict):
            continue
        index = facet.get("index") or {}
        try:
            byte_start = int(index.get("byteStart"))
            byte_end = int(index.get("byteEnd"))
        except (TypeError, ValueError):
            continue
        if byte_end <= byte_start:
            continue

        start = byte_to_index(boundaries, byte_start)
        end = byte_to_index(boundaries, byte_end)
        if end <= start:
            continue

        feature = pick_feature(facet.get("features"))
        if feature is None:
            continue
        ranges.append(FacetRange(start, end, feature))

    ranges.sort(key=lambda r: (r.start, r.end))

    kept: List[FacetRange] = []
    cursor = 0
    for candidate in ranges:
        if candidate.start < cursor:
            continue
        kept.append(candidate)
        cursor = candidate.end
    return kept


def rich_text_to_html(record: Dict[str, Any]) -> str:
    """Render a post record's text and facets as a single <p> of HTML."""
    text = str(record.get("text") or "")
    if not text:
        return ""

    ranges = facet_ranges(text, record.get("facets"))
    if not ranges:
        return f"<p>{escape_and_break(text)}</p>"

    parts: List[str] = []
    cursor = 0
    for facet in ranges:
        parts.append(escape_and_break(text[cursor:facet.start]))
        parts.append(render_segment(text[facet.start:facet.end], facet.feature))
        cursor = facet.end
    parts.append(escape_and_break(text[cursor:]))
    return f"<p>{''.join(parts)}</p>"
