from __future__ import annotations

import html
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any

import feedparser
import requests

from newswall.models import FeedBatch, FeedItem

logger = logging.getLogger(__name__)

USER_AGENT = "newswall/0.1 (+terminal dashboard)"
DEFAULT_FETCH_TIMEOUT = 15
NO_TITLE = "No Title"
NO_DATE = "N/A"
NO_DESCRIPTION = "No description available."

MATRIX_GREEN = "rgb(0,235,65)"
NEWS_GOLD = "rgb(255,170,50)"
SPORTS_CYAN = "rgb(0,255,255)"
WORLD_MAGENTA = "rgb(255,0,255)"


@dataclass(frozen=True)
class FeedSource:
    title: str
    url: str
    color: str
    tag: str = ""


# 0-2: left column, 3-5: middle column
FEED_SOURCES: tuple[FeedSource, ...] = (
    FeedSource(" THE HACKER NEWS ", "https://feeds.feedburner.com/TheHackersNews", MATRIX_GREEN),
    FeedSource(
        " COMPUTER WEEKLY ",
        "https://www.computerweekly.com/rss/Latest-IT-news.xml",
        MATRIX_GREEN,
    ),
    FeedSource(" SOFTWARE DEV TIMES ", "https://sdtimes.com/feed/", MATRIX_GREEN),
    FeedSource(" STOCKS ", "https://www.investing.com/rss/news_25.rss", WORLD_MAGENTA, "Stocks"),
    FeedSource(
        " WORLD NEWS ",
        "https://www.channelnewsasia.com/api/v1/rss-outbound-feed?_format=xml",
        SPORTS_CYAN,
        "World",
    ),
    FeedSource(
        " LOCAL NEWS ",
        "https://www.channelnewsasia.com/api/v1/rss-outbound-feed?_format=xml&category=10416",
        NEWS_GOLD,
        "Singapore",
    ),
)

LINE_BREAK_RE = re.compile(r"<br\s*/?>|</br>", re.IGNORECASE)
DROPPED_TAG_RE = re.compile(r"</?(?:p|em|strong)>", re.IGNORECASE)


class FetchError(Exception):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


def short_date(raw: str) -> str:
    return " ".join(raw.split(" ")[1:3])


def clean_description(raw: str) -> str:
    decoded = html.unescape(raw)
    cleaned = LINE_BREAK_RE.sub("\n", decoded)
    return DROPPED_TAG_RE.sub("", cleaned)


def make_feed_item(entry: Any) -> FeedItem:
    title = entry.get("title")
    raw_date = entry.get("published")
    description = entry.get("description")
    return FeedItem(
        title=title if title is not None else NO_TITLE,
        date=short_date(raw_date if raw_date is not None else NO_DATE),
        description=clean_description(description if description is not None else NO_DESCRIPTION),
    )


def parse_feed(content: bytes, url: str = "") -> list[FeedItem]:
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        reason = parsed.get("bozo_exception") or "no entries"
        raise FetchError(url, f"unreadable feed ({reason})")
    return [make_feed_item(entry) for entry in parsed.entries]


def fetch_category(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> list[FeedItem]:
    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(url, f"request failed ({exc})") from exc
    return parse_feed(response.content, url)


def _fetch_or_empty(url: str, timeout: float) -> tuple[list[FeedItem], str]:
    try:
        return fetch_category(url, timeout), ""
    except FetchError as exc:
        logger.warning("Feed fetch failed: %s", exc)
        return [], str(exc)
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected error fetching %s", url)
        return [], f"{url}: {exc}"


def fetch_all(urls: list[str], timeout: float = DEFAULT_FETCH_TIMEOUT) -> FeedBatch:
    if not urls:
        return FeedBatch(feeds=())
    results: list[tuple[list[FeedItem], str]] = [([], "") for _ in urls]

    def fetch_into(index: int, url: str) -> None:
        results[index] = _fetch_or_empty(url, timeout)

    # Daemon threads so quitting never waits on a slow request.
    workers = [
        threading.Thread(target=fetch_into, args=(index, url), name=f"feed-{index}", daemon=True)
        for index, url in enumerate(urls)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    feeds = tuple(tuple(items) for items, _ in results)
    errors = tuple(error for _, error in results if error)
    logger.info(
        "Fetched %d feeds (%d failed, %d items)",
        len(feeds),
        len(errors),
        sum(len(feed) for feed in feeds),
    )
    return FeedBatch(feeds=feeds, errors=errors)
