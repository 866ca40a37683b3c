"""Fetch loop: pulls every configured feed and stores new articles."""

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Callable, Iterable, Protocol

from .cancellation import CancelToken, Cancelled
from .logging_config import get_logger
from .models import Article, Item, Source
from .reporter import NullReporter, Reporter
from .rss import FeedSource
from .storage import ArticleStore, SourceStore

# How often a waiting cycle re-checks the cancellation token.
CANCEL_POLL_INTERVAL = 0.2


class FetchableSource(Protocol):
    @property
    def id(self) -> int: ...

    @property
    def name(self) -> str: ...

    def fetch(self, cancel: CancelToken) -> list[Item]: ...


def item_must_be_skipped(item: Item, keywords: Iterable[str]) -> bool:
    """True when any keyword is in the title (any case) or equals a category."""
    title = item.title.lower()
    categories = set(item.categories)
    return any(
        keyword.lower() in title or keyword in categories for keyword in keywords
    )


class Fetcher:
    """Periodically fetches all sources concurrently and stores new items."""

    def __init__(
        self,
        articles: ArticleStore,
        sources: SourceStore,
        fetch_interval: float,
        filter_keywords: list[str] | None = None,
        reporter: Reporter | None = None,
        source_factory: Callable[[Source], FetchableSource] | None = None,
        execution_id: str | None = None,
    ):
        self.articles = articles
        self.sources = sources
        self.fetch_interval = fetch_interval
        self.filter_keywords = list(filter_keywords or [])
        self.reporter = reporter or NullReporter()
        self.source_factory = source_factory or (
            lambda source: FeedSource.from_model(source, execution_id=execution_id)
        )
        self.logger = get_logger("fetcher", execution_id)

    def start(self, cancel: CancelToken) -> None:
        """Fetch now and then every ``fetch_interval`` seconds.

        Raises:
            Cancelled: When ``cancel`` fires
            Exception: Whatever listing the sources raised; the loop stops
        """
        self.logger.info("Fetcher started", fetch_interval=self.fetch_interval)
        self.fetch(cancel)
        while not cancel.wait(self.fetch_interval):
            self.fetch(cancel)
        raise Cancelled()

    def fetch(self, cancel: CancelToken) -> None:
        """Run one fetch cycle over every source."""
        cancel.raise_if_cancelled()
        self.logger.cycle_started()

        sources = self.sources.list_sources()
        if not sources:
            self.logger.cycle_finished(success=True, sources_count=0)
            return

        executor = ThreadPoolExecutor(
            max_workers=len(sources), thread_name_prefix="fetch-source"
        )
        try:
            pending = {
                executor.submit(self._fetch_source, self.source_factory(source), cancel)
                for source in sources
            }
            stored = 0
            while pending:
                cancel.raise_if_cancelled()
                done, pending = wait(
                    pending, timeout=CANCEL_POLL_INTERVAL, return_when=FIRST_COMPLETED
                )
                for future in done:
                    stored += future.result()
        finally:
            # In-flight downloads notice the token on their own.
            executor.shutdown(wait=not cancel.cancelled, cancel_futures=True)

        self.logger.cycle_finished(
            success=True, sources_count=len(sources), stored_count=stored
        )

    def _fetch_source(self, source: FetchableSource, cancel: CancelToken) -> int:
        """Fetch and store one source; failures stay contained to it."""
        try:
            items = source.fetch(cancel)
        except Cancelled:
            return 0
        except Exception as e:
            self._report_failure(f"failed to fetch items for source {source.id}", source, e)
            return 0

        try:
            stored = self.process_items(source, items)
        except Exception as e:
            self._report_failure(f"failed to process items for source {source.id}", source, e)
            return 0

        self.logger.source_processed(source.id, len(items), stored)
        return stored

    def process_items(self, source: FetchableSource, items: list[Item]) -> int:
        """Filter items and store the rest. Returns how many were newly inserted."""
        stored = 0
        for item in items:
            if not item.link:
                # The link is the article key; an entry without one cannot be stored.
                self.logger.warning(
                    f"Skipping item without link: {item.title!r}",
                    source_id=source.id,
                    item_title=item.title,
                )
                continue

            if item.published is None:
                item.published = datetime.now(UTC)

            if item_must_be_skipped(item, self.filter_keywords):
                self.logger.article_event(item.title, "skipped_by_filter")
                continue

            if self.articles.store(
                Article(
                    source_id=source.id,
                    title=item.title,
                    link=item.link,
                    summary=item.body,
                    published_at=item.published,
                    categories=list(dict.fromkeys(item.categories)),
                )
            ):
                stored += 1
        return stored

    def _report_failure(self, message: str, source: FetchableSource, error: Exception) -> None:
        self.logger.error(
            f"{message}: {error}", source_id=source.id, source_name=source.name, error=str(error)
        )
        self.reporter.notify(f"Fetcher: {message} ({source.name}): {error}")
