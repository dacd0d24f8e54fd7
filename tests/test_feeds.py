"""Unit tests for the feed source adapter."""
import threading

import pytest
import requests

from newswall import feeds
from newswall.feeds import (
    NO_DESCRIPTION,
    NO_TITLE,
    FetchError,
    clean_description,
    fetch_all,
    fetch_category,
    parse_feed,
    short_date,
)
from newswall.models import FeedItem


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class TestShortDate:
    """Tests for the crude publication date shortening."""

    def test_keeps_the_two_tokens_after_the_weekday(self):
        assert short_date("Tue, 18 Oct 2026 10:00:00 GMT") == "18 Oct"

    def test_missing_date_sentinel_shortens_to_empty(self):
        assert short_date("N/A") == ""

    def test_double_spaces_count_as_empty_tokens(self):
        assert short_date("Tue,  18 Oct") == " 18"


class TestCleanDescription:
    """Tests for entity decoding and whitelist markup stripping."""

    def test_decodes_entities_and_strips_whitelisted_tags(self):
        raw = "&lt;p&gt;Tom &amp; Jerry &lt;strong&gt;live&lt;/strong&gt;&lt;/p&gt;"
        assert clean_description(raw) == "Tom & Jerry live"

    @pytest.mark.parametrize("tag", ["<br>", "<br/>", "<br />", "</br>"])
    def test_line_breaks_become_newlines(self, tag):
        assert clean_description(f"one{tag}two") == "one\ntwo"

    def test_other_markup_is_left_alone(self):
        raw = '<a href="https://example.com">link</a> <em>x</em>'
        assert clean_description(raw) == '<a href="https://example.com">link</a> x'

    def test_whitelisted_tags_match_in_any_case(self):
        assert clean_description("<P>Big <EM>news</Em> <Strong>now</STRONG></p><BR>end") == "Big news now\nend"


class TestParseFeed:
    """Tests for turning a syndication document into feed items."""

    def test_parses_items_with_fallbacks(self, sample_rss):
        items = parse_feed(sample_rss, "https://example.com/rss")

        assert len(items) == 3
        assert items[0].title == "First headline"
        assert items[0].date == "18 Oct"
        assert items[0].description == "Line one\nline two"
        assert items[1].title == NO_TITLE
        assert items[1].description == "Plain body"
        assert items[2].date == ""
        assert items[2].description == NO_DESCRIPTION

    def test_unreadable_payload_raises_fetch_error(self):
        with pytest.raises(FetchError):
            parse_feed(b"\x00\x01 definitely not xml", "https://example.com/broken")


class TestFetchCategory:
    """Tests for one network retrieval."""

    def test_returns_parsed_items(self, monkeypatch, sample_rss):
        monkeypatch.setattr(feeds.requests, "get", lambda url, **kwargs: FakeResponse(sample_rss))

        items = fetch_category("https://example.com/rss")

        assert [item.title for item in items][:1] == ["First headline"]

    def test_network_error_raises_fetch_error(self, monkeypatch):
        def fail(url, **kwargs):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(feeds.requests, "get", fail)

        with pytest.raises(FetchError) as excinfo:
            fetch_category("https://example.com/rss")
        assert excinfo.value.url == "https://example.com/rss"

    def test_http_error_status_raises_fetch_error(self, monkeypatch):
        monkeypatch.setattr(feeds.requests, "get", lambda url, **kwargs: FakeResponse(status_code=503))

        with pytest.raises(FetchError):
            fetch_category("https://example.com/rss")


class TestFetchAll:
    """Tests for the concurrent batch fetch."""

    def test_preserves_order_and_isolates_failures(self, monkeypatch):
        def fake_fetch(url, timeout):
            if "bad" in url:
                raise FetchError(url, "boom")
            return [FeedItem(title=url, date="", description="")]

        monkeypatch.setattr(feeds, "fetch_category", fake_fetch)
        urls = ["https://a", "https://bad-1", "https://c", "https://d", "https://bad-2", "https://f"]

        batch = fetch_all(urls, timeout=1)

        assert len(batch.feeds) == len(urls)
        assert batch.feeds[1] == ()
        assert batch.feeds[4] == ()
        for index in (0, 2, 3, 5):
            assert batch.feeds[index][0].title == urls[index]
        assert len(batch.errors) == 2

    def test_all_failing_still_returns_one_slot_per_url(self, monkeypatch):
        def fake_fetch(url, timeout):
            raise FetchError(url, "down")

        monkeypatch.setattr(feeds, "fetch_category", fake_fetch)

        batch = fetch_all(["https://a", "https://b"], timeout=1)

        assert batch.feeds == ((), ())

    def test_empty_url_list(self):
        assert fetch_all([]).feeds == ()

    def test_fetches_run_on_daemon_threads(self, monkeypatch):
        daemons = []

        def fake_fetch(url, timeout):
            daemons.append(threading.current_thread().daemon)
            return []

        monkeypatch.setattr(feeds, "fetch_category", fake_fetch)

        fetch_all(["https://a", "https://b"], timeout=1)

        assert daemons == [True, True]
