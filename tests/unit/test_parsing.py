"""Unit tests for feed and envelope parsing."""

import json
from datetime import datetime, timezone

import pytest

from conftest import RSS_ONE_ITEM
from newswire.ingestion.interfaces import MalformedPayloadError
from newswire.ingestion.parsing import (
    extract_tag, parse_datetime, parse_feed, parse_headline_envelope,
    parse_structured_envelope, scan_feed_items, strip_html, truncate,
)


class TestTextHelpers:
    """Tests for HTML stripping and truncation."""

    def test_strip_html_removes_tags_and_entities(self):
        """Should strip tags and decode entities."""
        assert strip_html("<p>Fish &amp; <b>chips</b></p>") == "Fish & chips"

    def test_strip_html_unwraps_cdata(self):
        """Should unwrap CDATA."""
        assert strip_html("<![CDATA[<em>Hello</em>   world]]>") == "Hello world"

    def test_strip_html_empty(self):
        """Should return an empty string for None."""
        assert strip_html(None) == ""

    def test_truncate_adds_ellipsis(self):
        """Should truncate long text with an ellipsis."""
        result = truncate("x" * 250, 200)
        assert len(result) == 201
        assert result.endswith("…")

    def test_truncate_short_text_unchanged(self):
        """Should leave short text unchanged."""
        assert truncate("short", 200) == "short"

    def test_parse_datetime_rfc822(self):
        """Should parse RFC 822 dates as UTC."""
        dt = parse_datetime("Wed, 01 May 2024 10:00:00 GMT")
        assert dt == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_datetime_naive_is_utc(self):
        """Should treat naive dates as UTC."""
        assert parse_datetime("2024-05-01T10:00:00").tzinfo is not None

    def test_parse_datetime_garbage(self):
        """Should return None for garbage."""
        assert parse_datetime("not a date") is None


class TestParseFeed:
    """Tests for RSS/Atom parsing."""

    def test_enclosure_image(self):
        """Should take the image from the enclosure."""
        items = parse_feed(RSS_ONE_ITEM)
        assert len(items) == 1
        assert items[0].title == "A"
        assert items[0].link == "http://x/1"
        assert items[0].image_url == "http://img/1.jpg"
        assert items[0].published_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_media_thumbnail_before_description_image(self):
        """Should prefer the media thumbnail over a description image."""
        payload = """<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/"><channel>
          <item>
            <title>B</title><link>http://x/2</link>
            <media:thumbnail url="http://img/thumb.jpg"/>
            <description><![CDATA[<img src="http://img/inline.jpg"> text]]></description>
          </item></channel></rss>"""
        items = parse_feed(payload)
        assert items[0].image_url == "http://img/thumb.jpg"

    def test_description_image_fallback(self):
        """Should fall back to the first image in the description."""
        payload = """<rss version="2.0"><channel><item>
            <title>C</title><link>http://x/3</link>
            <description>&lt;img src="http://img/inline.jpg"&gt; Body text</description>
          </item></channel></rss>"""
        items = parse_feed(payload)
        assert items[0].image_url == "http://img/inline.jpg"
        assert items[0].description == "Body text"

    def test_atom_entries(self):
        """Should parse Atom entries."""
        payload = """<?xml version="1.0" encoding="utf-8"?>
        <feed xmlns="http://www.w3.org/2005/Atom">
          <title>Atom</title>
          <entry>
            <title>Atom story</title>
            <link rel="alternate" href="https://example.com/atom/1"/>
            <updated>2024-05-01T09:00:00Z</updated>
            <summary>Summary text</summary>
          </entry>
        </feed>"""
        items = parse_feed(payload)
        assert len(items) == 1
        assert items[0].link == "https://example.com/atom/1"
        assert items[0].description == "Summary text"

    def test_items_without_title_or_link_dropped(self):
        """Should drop items without a title or link."""
        payload = """<rss version="2.0"><channel>
          <item><title>No link</title></item>
          <item><link>http://x/4</link></item>
          <item><title>Kept</title><link>http://x/5</link></item>
        </channel></rss>"""
        items = parse_feed(payload)
        assert [i.title for i in items] == ["Kept"]

    def test_empty_feed(self):
        """Should return no items for an empty channel."""
        assert parse_feed('<rss version="2.0"><channel><title>t</title></channel></rss>') == []

    def test_not_a_feed(self):
        """Should reject a document that is not a feed."""
        with pytest.raises(MalformedPayloadError):
            parse_feed("Service Unavailable")

    def test_empty_payload(self):
        """Should reject an empty payload."""
        with pytest.raises(MalformedPayloadError):
            parse_feed("   ")


class TestScanner:
    """Tests for the tolerant regex scanner."""

    def test_item_variant(self):
        """Should scan item blocks."""
        items = scan_feed_items("<item><title>A</title><link>http://x/1</link></item>")
        assert len(items) == 1

    def test_entry_variant_with_href(self):
        """Should scan entry blocks with href links."""
        items = scan_feed_items('<entry><title>E</title><link href="http://x/e"/></entry>')
        assert items[0].link == "http://x/e"

    def test_malformed_variant(self):
        """Should scan items whose opening bracket was lost."""
        # Opening bracket lost by a mangling proxy
        text = "item><title>M</title><link>http://x/m</link></item"
        items = scan_feed_items(text)
        assert len(items) == 1
        assert items[0].title == "M"

    def test_extract_tag_cdata(self):
        """Should read CDATA tag text."""
        assert extract_tag("<title><![CDATA[Hi & bye]]></title>", "title") == "Hi & bye"

    def test_enclosure_wins_over_media(self):
        """Should prefer the enclosure over media content."""
        block = (
            "<item><title>I</title><link>http://x/i</link>"
            '<media:content url="http://img/media.jpg"/>'
            '<enclosure url="http://img/enc.jpg"/></item>'
        )
        items = scan_feed_items(block)
        assert items[0].image_url == "http://img/enc.jpg"


class TestJsonFeeds:
    """Tests for JSON-wrapped feeds."""

    def test_proxy_contents_wrapper(self):
        """Should unwrap the proxy contents wrapper."""
        payload = json.dumps({"contents": RSS_ONE_ITEM, "status": {"http_code": 200}})
        items = parse_feed(payload)
        assert len(items) == 1
        assert items[0].image_url == "http://img/1.jpg"

    def test_rss_to_json_items(self):
        """Should read rss-to-json items."""
        payload = json.dumps({
            "status": "ok",
            "items": [{
                "title": "J",
                "link": "http://x/j",
                "pubDate": "2024-05-01 10:00:00",
                "description": "<p>Body</p>",
                "enclosure": {"link": "http://img/j.jpg"},
            }],
        })
        items = parse_feed(payload)
        assert items[0].title == "J"
        assert items[0].image_url == "http://img/j.jpg"
        assert items[0].description == "Body"

    def test_json_without_items(self):
        """Should reject JSON without items."""
        with pytest.raises(MalformedPayloadError):
            parse_feed('{"error": "nope"}')

    def test_invalid_json(self):
        """Should reject invalid JSON."""
        with pytest.raises(MalformedPayloadError):
            parse_feed("{not json")


class TestEnvelopes:
    """Tests for the JSON news API envelopes."""

    def test_headline_envelope(self):
        """Should read the headline envelope."""
        entries = parse_headline_envelope({
            "status": "ok",
            "totalResults": 1,
            "articles": [{
                "source": {"id": None, "name": "Wire"},
                "title": "Headline",
                "description": "Desc",
                "url": "https://example.com/h",
                "urlToImage": "https://img/h.jpg",
                "publishedAt": "2024-05-01T10:00:00Z",
            }],
        })
        assert entries[0].url == "https://example.com/h"
        assert entries[0].image_url == "https://img/h.jpg"
        assert entries[0].source_name == "Wire"

    def test_headline_error_status(self):
        """Should reject a headline error status."""
        with pytest.raises(MalformedPayloadError):
            parse_headline_envelope({"status": "error", "message": "bad key"})

    def test_structured_envelope(self):
        """Should read the structured envelope."""
        entries = parse_structured_envelope({
            "status": "success",
            "results": [{
                "title": "Structured",
                "link": "https://example.com/s",
                "image_url": "https://img/s.jpg",
                "pubDate": "2024-05-01 10:00:00",
                "source_id": "wire",
                "category": ["science"],
            }],
        })
        assert entries[0].link == "https://example.com/s"
        assert entries[0].categories == ["science"]
        assert entries[0].source_id == "wire"

    def test_structured_error_status(self):
        """Should reject a structured error status."""
        with pytest.raises(MalformedPayloadError):
            parse_structured_envelope({"status": "error"})
