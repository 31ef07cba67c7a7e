"""Pytest configuration and shared fixtures."""

import threading
from typing import Dict, List, Optional

import pytest
import requests

from gator.config import ConfigManager
from gator.database import Database
from gator.errors import GatorError
from gator.models import RSSFeed
from gator.rss import BaseFetcher, parse_feed

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Boot.dev &amp;amp; Friends</title>
    <link>https://blog.example.com/</link>
    <description>Posts about Python &amp;amp; Go</description>
    <item>
      <title>Tom &amp;amp; Jerry</title>
      <link>https://blog.example.com/tom-and-jerry</link>
      <description>Cats &amp;amp; mice</description>
      <pubDate>Mon, 02 Jan 2006 15:04:05 -0700</pubDate>
    </item>
    <item>
      <title>Undated post</title>
      <link>https://blog.example.com/undated</link>
      <description>No usable date</description>
      <pubDate>not-a-date</pubDate>
    </item>
    <item>
      <title>Last post</title>
      <link>https://blog.example.com/last</link>
      <pubDate>Tue, 03 Jan 2006 10:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
"""


class FakeFetcher(BaseFetcher):
    """Serves canned documents or errors keyed by URL"""

    def __init__(self, responses: Optional[Dict[str, object]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []
        self.closed = False
        self.on_fetch = None

    def fetch(self, url: str, cancel: Optional[threading.Event] = None) -> RSSFeed:
        self.calls.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        response = self.responses.get(url, SAMPLE_RSS)
        if isinstance(response, GatorError):
            raise response
        return parse_feed(response)

    def close(self) -> None:
        self.closed = True


class HangingSession(requests.Session):
    """Session whose requests never get an answer until released"""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def get(self, url, **kwargs):
        self.started.set()
        self.release.wait(30)
        raise requests.exceptions.ReadTimeout(f"no answer from {url}")


@pytest.fixture
def sample_rss():
    return SAMPLE_RSS


@pytest.fixture
def db(tmp_path):
    """Provide a fresh database file."""
    return Database(tmp_path / "gator.db")


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path / ".gatorconfig.json")


@pytest.fixture
def user(db):
    return db.create_user("kahya")


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def hanging_session():
    session = HangingSession()
    yield session
    session.release.set()
