"""RSS feed source adapter for News Feed Bot."""

from datetime import UTC, datetime
from time import struct_time

import feedparser
import requests
from dateutil import parser as date_parser

from .cancellation import CancelToken
from .logging_config import get_logger
from .models import Item, Source

FEED_TIMEOUT = 30
PROBE_TIMEOUT = 15
USER_AGENT = "News-Feed-Bot/1.0 (RSS to Telegram Bot)"
_CHUNK_SIZE = 64 * 1024


class FeedError(Exception):
    """A feed could not be downloaded or parsed."""


def download_feed(
    url: str,
    insecure: bool = False,
    timeout: float = FEED_TIMEOUT,
    cancel: CancelToken | None = None,
    session: requests.Session | None = None,
) -> feedparser.FeedParserDict:
    """Download and parse a feed.

    The body is streamed so a cancelled token aborts the download between
    chunks.

    Raises:
        FeedError: On network errors, non-2xx responses or unparseable feeds
        Cancelled: If ``cancel`` fires during the download
    """
    http = session or requests
    try:
        with http.get(
            url,
            timeout=timeout,
            verify=not insecure,
            stream=True,
            headers={"User-Agent": USER_AGENT},
        ) as response:
            response.raise_for_status()
            chunks = []
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                chunks.append(chunk)
    except requests.RequestException as e:
        raise FeedError(f"failed to download feed {url}: {e}") from e

    feed = feedparser.parse(b"".join(chunks))
    if feed.bozo and not feed.entries:
        raise FeedError(
            f"failed to parse feed {url}: {getattr(feed, 'bozo_exception', 'malformed document')}"
        )
    return feed


def probe_feed(url: str, insecure: bool = False, timeout: float = PROBE_TIMEOUT) -> int:
    """Check that ``url`` serves a parseable feed before it is registered.

    Returns:
        Number of entries in the feed

    Raises:
        FeedError: If the feed cannot be fetched or parsed
    """
    return len(download_feed(url, insecure=insecure, timeout=timeout).entries)


class FeedSource:
    """A fetchable view of a stored Source."""

    def __init__(
        self,
        source_id: int,
        name: str,
        url: str,
        insecure: bool = False,
        timeout: float = FEED_TIMEOUT,
        execution_id: str | None = None,
    ):
        self.source_id = source_id
        self.source_name = name
        self.url = url
        self.insecure = insecure
        self.timeout = timeout
        self.logger = get_logger("feed_source", execution_id)

    @classmethod
    def from_model(
        cls, source: Source, timeout: float = FEED_TIMEOUT, execution_id: str | None = None
    ) -> "FeedSource":
        return cls(
            source_id=source.source_id,
            name=source.name,
            url=source.feed_url,
            insecure=source.insecure,
            timeout=timeout,
            execution_id=execution_id,
        )

    @property
    def id(self) -> int:
        return self.source_id

    @property
    def name(self) -> str:
        return self.source_name

    def fetch(self, cancel: CancelToken) -> list[Item]:
        """Fetch the feed and map every entry to an Item.

        Either all entries are returned or an error is raised.

        Raises:
            FeedError: If the feed cannot be fetched or parsed
            Cancelled: If ``cancel`` fires during the download
        """
        cancel.raise_if_cancelled()
        self.logger.debug("Downloading feed", source_id=self.source_id, feed_url=self.url)
        feed = download_feed(
            self.url, insecure=self.insecure, timeout=self.timeout, cancel=cancel
        )
        if feed.bozo:
            self.logger.warning(
                f"Feed parsing warning for {self.url}: {feed.get('bozo_exception')}",
                source_id=self.source_id,
                feed_url=self.url,
            )
        return [self.normalize_entry(entry) for entry in feed.entries]

    def normalize_entry(self, entry) -> Item:
        """Map a feedparser entry to an Item."""
        return Item(
            title=(entry.get("title") or "").strip(),
            link=(entry.get("link") or "").strip(),
            published=entry_date(entry),
            body=entry_text(entry),
            source_name=self.source_name,
            categories=entry_categories(entry),
        )


def entry_text(entry) -> str:
    """Richest text of an entry: full content first, then the summary."""
    for content in entry.get("content") or []:
        value = (content.get("value") or "").strip()
        if value:
            return value
    return (entry.get("summary") or entry.get("description") or "").strip()


def entry_categories(entry) -> list[str]:
    return [tag["term"] for tag in entry.get("tags") or [] if tag.get("term")]


def entry_date(entry) -> datetime | None:
    """Publication date of an entry, or None when the feed has no usable one."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if isinstance(parsed, struct_time):
            return datetime(*parsed[:6], tzinfo=UTC)

    for key in ("published", "updated"):
        raw = entry.get(key)
        if not raw:
            continue
        try:
            published = date_parser.parse(raw)
        except (ValueError, TypeError, OverflowError):
            continue
        if published.tzinfo is None:
            published = published.replace(tzinfo=UTC)
        return published.astimezone(UTC)

    return None
