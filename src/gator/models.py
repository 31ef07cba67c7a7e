from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class User:
    """Registered user"""
    id: str
    created_at: datetime
    updated_at: datetime
    name: str


@dataclass
class Feed:
    """Subscribed RSS feed"""
    id: str
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: str
    last_fetched_at: Optional[datetime] = None


@dataclass
class FeedFollow:
    """A user following a feed"""
    id: str
    created_at: datetime
    updated_at: datetime
    user_id: str
    feed_id: str
    feed_name: str = ""
    user_name: str = ""


@dataclass
class Post:
    """Ingested RSS item"""
    id: str
    created_at: datetime
    updated_at: datetime
    title: str
    url: str
    description: str
    published_at: Optional[datetime]
    feed_id: str
    feed_name: str = ""


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    """Parsed RSS document, never persisted as a whole"""
    title: str = ""
    link: str = ""
    description: str = ""
    items: List[RSSItem] = field(default_factory=list)
