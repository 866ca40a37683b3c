"""Data models for News Feed Bot."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Source:
    """A configured RSS/Atom feed."""

    source_id: int
    name: str
    feed_url: str
    priority: int = 0
    insecure: bool = False  # skip TLS certificate validation
    created_at: datetime | None = None


@dataclass
class Item:
    """A single entry fetched from a feed, not yet persisted."""

    title: str
    link: str
    published: datetime | None
    body: str
    source_name: str
    categories: list[str] = field(default_factory=list)


@dataclass
class Article:
    """A stored feed entry waiting to be (or already) posted."""

    source_id: int
    title: str
    link: str
    summary: str
    published_at: datetime
    article_id: str | None = None
    posted_at: datetime | None = None
    created_at: datetime | None = None
    categories: list[str] = field(default_factory=list)

    @property
    def posted(self) -> bool:
        return self.posted_at is not None
