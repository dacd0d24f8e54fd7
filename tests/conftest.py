"""Pytest configuration and shared fixtures."""
import pytest

from newswall.models import FeedItem

SAMPLE_RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Sample</title>
    <link>https://example.com</link>
    <description>Sample feed</description>
    <item>
      <title>First headline</title>
      <pubDate>Tue, 18 Oct 2026 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;Line one&lt;br&gt;line &lt;em&gt;two&lt;/em&gt;&lt;/p&gt;</description>
    </item>
    <item>
      <pubDate>Wed, 19 Oct 2026 08:30:00 GMT</pubDate>
      <description>Plain body</description>
    </item>
    <item>
      <title>No date or body</title>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def sample_rss():
    """Return a small RSS 2.0 document."""
    return SAMPLE_RSS


@pytest.fixture
def make_items():
    """Return a factory for feeds of numbered items."""

    def factory(count, prefix="Item"):
        return tuple(
            FeedItem(title=f"{prefix} {i}", date="18 Oct", description=f"Body of {prefix.lower()} {i}")
            for i in range(count)
        )

    return factory
