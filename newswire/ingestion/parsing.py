"""Wire-format parsers: RSS/Atom XML, JSON-wrapped feeds and the two JSON news envelopes.

Each wire format is parsed into its own small record type (``FeedItem``,
``HeadlineEntry``, ``StructuredEntry``); mapping those into canonical
articles happens in :mod:`newswire.ingestion.normalize`.

XML feeds go through ``feedparser`` first. Feeds that feedparser cannot make
sense of (truncated documents, unescaped markup, proxies that mangle the
payload) fall back to a tolerant scanner that tries, in order, ``<item>``,
``<entry>`` and a malformed ``item ...>...</item`` delimiter.

Images are resolved in a fixed order: enclosure, ``media:content``,
``media:thumbnail``, then the first ``<img src>`` inside the description.
"""

import calendar
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html import unescape
from typing import Any, Dict, List, Optional

import feedparser
import structlog
from dateutil import parser as dtparse

from .interfaces import MalformedPayloadError

logger = structlog.get_logger()

ELLIPSIS = "…"

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_CDATA_RE = re.compile(r"^\s*<!\[CDATA\[(.*?)\]\]>\s*$", re.DOTALL)
_IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)

# Item delimiters, tried in order until one matches.
_ITEM_PATTERNS = [
    re.compile(r"<item(?:\s[^>]*)?>(.*?)</item>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<entry(?:\s[^>]*)?>(.*?)</entry>", re.IGNORECASE | re.DOTALL),
    re.compile(r"item[^>]*>(.*?)</item", re.IGNORECASE | re.DOTALL),
]

# Attribute-carrying image tags, in priority order.
_IMAGE_TAG_PATTERNS = [
    re.compile(r"<enclosure[^>]*\burl=[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"<media:content[^>]*\burl=[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"<media:thumbnail[^>]*\burl=[\"']([^\"']+)[\"']", re.IGNORECASE),
]

_LINK_HREF_RE = re.compile(
    r"<link(?=[^>]*\brel=[\"']alternate[\"'])?[^>]*\bhref=[\"']([^\"']+)[\"']",
    re.IGNORECASE,
)


@dataclass
class FeedItem:
    """One RSS item / Atom entry."""
    title: str
    link: str
    description: str = ""
    published_at: Optional[datetime] = None
    image_url: str = ""


@dataclass
class HeadlineEntry:
    """One entry of a headline-API envelope (``{status, articles[]}``)."""
    title: str
    url: str
    description: str = ""
    content: str = ""
    image_url: str = ""
    published_at: Optional[datetime] = None
    source_name: str = ""


@dataclass
class StructuredEntry:
    """One entry of a structured-news envelope (``{status, results[]}``)."""
    title: str
    link: str
    description: str = ""
    content: str = ""
    image_url: str = ""
    published_at: Optional[datetime] = None
    source_id: str = ""
    categories: Optional[List[str]] = None


# --- text helpers ---------------------------------------------------------

def strip_html(value: Optional[str]) -> str:
    """Remove tags and entities, collapse whitespace."""
    if not value:
        return ""
    text = _unwrap_cdata(value)
    # Entities first, so escaped markup (&lt;b&gt;) is stripped as well.
    text = unescape(text)
    text = _HTML_TAG_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def truncate(value: str, max_length: int = 200) -> str:
    """Cut ``value`` to ``max_length`` characters, marking the cut with an ellipsis."""
    value = (value or "").strip()
    if len(value) <= max_length:
        return value
    return value[:max_length].rstrip() + ELLIPSIS


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a feed timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = dtparse.parse(str(value).strip())
        except (ValueError, OverflowError, TypeError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def first_image_in_html(html: Optional[str]) -> str:
    if not html:
        return ""
    match = _IMG_SRC_RE.search(unescape(html))
    return match.group(1) if match else ""


def _unwrap_cdata(value: str) -> str:
    match = _CDATA_RE.match(value)
    return match.group(1) if match else value


# --- XML / JSON-wrapped feeds ---------------------------------------------

def parse_feed(payload: str) -> List[FeedItem]:
    """Parse an RSS/Atom document or a JSON-wrapped feed.

    Raises MalformedPayloadError when the payload is neither.
    """
    if payload is None:
        raise MalformedPayloadError("empty payload")
    text = payload.lstrip("﻿ \t\r\n")
    if not text:
        raise MalformedPayloadError("empty payload")

    if text[0] in "{[":
        return parse_json_feed(text)

    if not text.startswith("<"):
        raise MalformedPayloadError(f"not a feed document: {text[:40]!r}")

    items = _parse_with_feedparser(text)
    if items:
        return items

    items = scan_feed_items(text)
    if items:
        logger.debug("feed_parsed_by_scanner", items=len(items))
        return items

    lowered = text[:2000].lower()
    if any(marker in lowered for marker in ("<rss", "<feed", "<rdf", "<channel")):
        return []  # well-formed but empty feed
    raise MalformedPayloadError("no feed structure found")


def parse_json_feed(text: str) -> List[FeedItem]:
    """Handle feeds re-encoded as JSON by upstream proxies."""
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedPayloadError(f"invalid JSON: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("contents"), str):
        # Re-fetch proxy shape: the original document as a string.
        return parse_feed(data["contents"])

    items = None
    if isinstance(data, dict):
        items = data.get("items", data.get("entry"))
    elif isinstance(data, list):
        items = data
    if not isinstance(items, list):
        raise MalformedPayloadError("JSON feed without items")

    parsed = []
    for raw in items:
        if not isinstance(raw, dict):
            continue
        item = _json_item(raw)
        if item:
            parsed.append(item)
    return parsed


def _json_item(raw: Dict[str, Any]) -> Optional[FeedItem]:
    title = strip_html(_as_text(raw.get("title")))
    link = _as_text(raw.get("link") or raw.get("url") or raw.get("id")).strip()
    if not title or not link:
        return None

    description = _as_text(raw.get("description") or raw.get("summary") or raw.get("content"))

    image_url = ""
    enclosure = raw.get("enclosure")
    if isinstance(enclosure, dict):
        image_url = enclosure.get("url") or enclosure.get("link") or ""
    if not image_url:
        media = raw.get("media:content") or raw.get("media_content")
        if isinstance(media, list) and media:
            media = media[0]
        if isinstance(media, dict):
            image_url = media.get("url", "")
    if not image_url:
        image_url = _as_text(raw.get("thumbnail") or raw.get("media:thumbnail"))
    if not image_url:
        image_url = first_image_in_html(description)

    published = raw.get("pubDate") or raw.get("published") or raw.get("updated")
    return FeedItem(
        title=title,
        link=link,
        description=strip_html(description),
        published_at=parse_datetime(published),
        image_url=image_url,
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return str(value.get("url") or value.get("href") or value.get("value") or "")
    return str(value)


def _parse_with_feedparser(text: str) -> List[FeedItem]:
    parsed = feedparser.parse(text)
    entries = getattr(parsed, "entries", None) or []
    items = []
    for entry in entries:
        item = _feedparser_item(entry)
        if item:
            items.append(item)
    if parsed.get("bozo") and not items:
        logger.debug("feedparser_bozo", error=str(parsed.get("bozo_exception", "")))
    return items


def _feedparser_item(entry) -> Optional[FeedItem]:
    title = strip_html(entry.get("title", ""))
    link = (entry.get("link") or "").strip()
    if not link:
        entry_id = entry.get("id", "")
        if isinstance(entry_id, str) and entry_id.startswith("http"):
            link = entry_id
    if not title or not link:
        return None

    description = entry.get("summary") or entry.get("description") or ""
    if not description and entry.get("content"):
        description = entry["content"][0].get("value", "")

    published_at = None
    for attr in ("published_parsed", "updated_parsed"):
        parsed = entry.get(attr)
        if parsed:
            try:
                published_at = datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
                break
            except (TypeError, ValueError, OverflowError):
                pass
    if published_at is None:
        published_at = parse_datetime(entry.get("published") or entry.get("updated"))

    return FeedItem(
        title=title,
        link=link,
        description=strip_html(description),
        published_at=published_at,
        image_url=_feedparser_image(entry, description),
    )


def _feedparser_image(entry, description_html: str) -> str:
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href:
            return href
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key) or []:
            if media.get("url"):
                return media["url"]
    return first_image_in_html(description_html)


# --- tolerant scanner -----------------------------------------------------

def scan_feed_items(text: str) -> List[FeedItem]:
    """Regex scan for items in documents that do not parse as XML."""
    blocks: List[str] = []
    for pattern in _ITEM_PATTERNS:
        blocks = pattern.findall(text)
        if blocks:
            break

    items = []
    for block in blocks:
        title = extract_tag(block, "title")
        link = extract_tag(block, "link")
        if not link:
            match = _LINK_HREF_RE.search(block)
            link = match.group(1) if match else ""
        if not title or not link:
            continue

        description = (
            extract_tag(block, "description")
            or extract_tag(block, "content:encoded")
            or extract_tag(block, "summary")
            or extract_tag(block, "content")
            or ""
        )
        published = (
            extract_tag(block, "pubDate")
            or extract_tag(block, "published")
            or extract_tag(block, "updated")
            or extract_tag(block, "dc:date")
        )
        items.append(FeedItem(
            title=strip_html(title),
            link=strip_html(link),
            description=strip_html(description),
            published_at=parse_datetime(published),
            image_url=extract_image(block, description),
        ))
    return items


def extract_tag(block: str, tag: str) -> Optional[str]:
    """Inner text of the first ``<tag>`` in ``block``, CDATA unwrapped."""
    pattern = re.compile(
        rf"<{re.escape(tag)}(?:\s[^>]*)?>(.*?)</{re.escape(tag)}>",
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(block)
    if not match:
        return None
    return _unwrap_cdata(match.group(1)).strip()


def extract_image(block: str, description: str = "") -> str:
    for pattern in _IMAGE_TAG_PATTERNS:
        match = pattern.search(block)
        if match:
            return unescape(match.group(1))
    return first_image_in_html(_unwrap_cdata(description or ""))


# --- JSON news envelopes --------------------------------------------------

def parse_headline_envelope(data: Any) -> List[HeadlineEntry]:
    """Parse ``{"status": "ok", "articles": [...]}``."""
    if not isinstance(data, dict):
        raise MalformedPayloadError("headline envelope is not an object")
    if data.get("status") != "ok":
        raise MalformedPayloadError(f"headline API status {data.get('status')!r}: {data.get('message', '')}")
    articles = data.get("articles")
    if not isinstance(articles, list):
        raise MalformedPayloadError("headline envelope without articles")

    entries = []
    for raw in articles:
        if not isinstance(raw, dict):
            continue
        source = raw.get("source") if isinstance(raw.get("source"), dict) else {}
        entries.append(HeadlineEntry(
            title=strip_html(raw.get("title") or ""),
            url=(raw.get("url") or "").strip(),
            description=strip_html(raw.get("description") or ""),
            content=strip_html(raw.get("content") or ""),
            image_url=raw.get("urlToImage") or "",
            published_at=parse_datetime(raw.get("publishedAt")),
            source_name=source.get("name") or "",
        ))
    return entries


def parse_structured_envelope(data: Any) -> List[StructuredEntry]:
    """Parse ``{"status": "success", "results": [...]}``."""
    if not isinstance(data, dict):
        raise MalformedPayloadError("structured envelope is not an object")
    if data.get("status") != "success":
        raise MalformedPayloadError(f"structured API status {data.get('status')!r}")
    results = data.get("results") or []
    if not isinstance(results, list):
        raise MalformedPayloadError("structured envelope results is not a list")

    entries = []
    for raw in results:
        if not isinstance(raw, dict):
            continue
        categories = raw.get("category")
        if isinstance(categories, str):
            categories = [categories]
        entries.append(StructuredEntry(
            title=strip_html(raw.get("title") or ""),
            link=(raw.get("link") or "").strip(),
            description=strip_html(raw.get("description") or ""),
            content=strip_html(raw.get("content") or ""),
            image_url=raw.get("image_url") or "",
            published_at=parse_datetime(raw.get("pubDate")),
            source_id=raw.get("source_id") or "",
            categories=categories or None,
        ))
    return entries
