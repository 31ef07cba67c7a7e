import html
import io
import xml.sax

import feedparser

from ..errors import ParseError
from ..models import RSSFeed, RSSItem


def _text(value) -> str:
    """Unescape a text field, feeds often double-encode entities"""
    return html.unescape(value or "")


def _item_link(entry) -> str:
    """Link from the item's own <link>, feedparser falls back to <guid> otherwise"""
    for link in entry.get("links", []):
        if link.get("rel") == "alternate" and link.get("href"):
            return link["href"]
    return ""


def parse_feed(content: bytes) -> RSSFeed:
    """Parse an RSS document into an RSSFeed"""
    if isinstance(content, str):
        content = content.encode("utf-8")

    # A stream is never mistaken for a file name or URL
    parsed = feedparser.parse(io.BytesIO(content))
    if parsed.bozo and isinstance(parsed.get("bozo_exception"), xml.sax.SAXException):
        raise ParseError(f"malformed XML: {parsed.bozo_exception}")
    if not parsed.get("version", "").startswith("rss"):
        raise ParseError("document is not an RSS feed")

    channel = parsed.feed
    items = [
        RSSItem(
            title=_text(entry.get("title")),
            link=_item_link(entry),
            description=_text(entry.get("summary")),
            pub_date=entry.get("published", ""),
        )
        for entry in parsed.entries
    ]
    return RSSFeed(
        title=_text(channel.get("title")),
        link=channel.get("link", ""),
        description=_text(channel.get("subtitle")),
        items=items,
    )
