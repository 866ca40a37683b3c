"""In-memory collaborators shared by the loop tests."""

import threading
from datetime import UTC, datetime

import pytest

from news_feed_bot.models import Article, Source
from news_feed_bot.storage import SourceNotFoundError
from news_feed_bot.summarize import SummarizationError
from news_feed_bot.telegram import TelegramError


class InMemoryArticleStore:
    """Article store keyed by link, mirroring the DynamoDB semantics."""

    def __init__(self):
        self.rows: dict[str, Article] = {}
        self.lock = threading.Lock()

    def store(self, article: Article) -> bool:
        with self.lock:
            if article.link in self.rows:
                return False
            self.rows[article.link] = article
            return True

    def list_unposted(self, since: datetime, limit: int) -> list[Article]:
        with self.lock:
            rows = [
                a for a in self.rows.values()
                if a.posted_at is None and a.published_at >= since
            ]
        rows.sort(key=lambda a: (a.published_at, a.link))
        return rows[:limit]

    def mark_posted(self, article: Article) -> None:
        with self.lock:
            stored = self.rows[article.link]
            if stored.posted_at is None:
                stored.posted_at = datetime.now(UTC)


class InMemorySourceStore:
    def __init__(self, sources=None):
        self.sources = {s.source_id: s for s in sources or []}

    def list_sources(self) -> list[Source]:
        return list(self.sources.values())

    def source_by_id(self, source_id: int) -> Source:
        if source_id not in self.sources:
            raise SourceNotFoundError(f"source {source_id} not found")
        return self.sources[source_id]


class StaticSource:
    """Fetchable source returning fixed items, or raising a fixed error."""

    def __init__(self, source_id, name, items=None, error=None):
        self.id = source_id
        self.name = name
        self.items = items or []
        self.error = error
        self.fetched = 0

    def fetch(self, cancel):
        cancel.raise_if_cancelled()
        self.fetched += 1
        if self.error:
            raise self.error
        return list(self.items)


class RecordingReporter:
    def __init__(self):
        self.messages = []

    def notify(self, message):
        self.messages.append(message)


class RecordingSender:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def send_message(self, chat_id, text, parse_mode="MarkdownV2"):
        self.calls.append((chat_id, text, parse_mode))
        if self.error:
            raise self.error


class EchoSummarizer:
    def __init__(self):
        self.inputs = []

    def summarize(self, text):
        self.inputs.append(text)
        return "A short summary."


class BrokenSummarizer:
    def __init__(self):
        self.calls = 0

    def summarize(self, text):
        self.calls += 1
        raise SummarizationError("model unavailable")


@pytest.fixture
def article_store():
    return InMemoryArticleStore()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def failing_sender():
    return RecordingSender(error=TelegramError("HTTP error sending message: 400 - Bad Request"))
