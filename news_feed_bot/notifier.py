"""Publish loop: posts one summarized article to the channel per interval."""

import re
from datetime import UTC, datetime, timedelta
from typing import Callable, Protocol

from .cancellation import CancelToken, Cancelled
from .content import PAGE_TIMEOUT, cleanup_text, fetch_article_text, html_to_text
from .logging_config import get_logger
from .models import Article
from .reporter import NullReporter, Reporter
from .storage import ArticleStore, SourceStore
from .summarize import Summarizer
from .telegram import escape_markdown

UNKNOWN_SOURCE = "unknown"
MAX_CATEGORY_TAGS = 3
# Telegram rejects sendMessage texts longer than this (UTF-16 code units).
MAX_MESSAGE_LENGTH = 4096
MAX_TITLE_LENGTH = 256
ELLIPSIS = "…"

_NON_WORD = re.compile(r"\W+")


class MessageSender(Protocol):
    def send_message(self, chat_id: str, text: str, parse_mode: str | None = ...) -> None: ...


def message_length(text: str) -> int:
    """Length of ``text`` as Telegram counts it."""
    return len(text.encode("utf-16-le")) // 2


def truncate_escaped(text: str, limit: int) -> str:
    """Escape ``text`` for MarkdownV2 in at most ``limit`` characters.

    Text is cut between characters, never inside an escape sequence, and
    marked with an ellipsis when shortened.
    """
    escaped = escape_markdown(text)
    if message_length(escaped) <= limit:
        return escaped

    budget = limit - message_length(ELLIPSIS)
    if budget <= 0:
        return ""
    pieces = []
    used = 0
    for char in text:
        piece = escape_markdown(char)
        size = message_length(piece)
        if used + size > budget:
            break
        pieces.append(piece)
        used += size
    return "".join(pieces).rstrip() + ELLIPSIS


def hashtag(tag: str) -> str:
    """Single-token hashtag: runs of non-word characters become ``_``."""
    token = _NON_WORD.sub("_", tag.strip()).strip("_")
    return f"#{token}" if token else ""


def build_hashtags(source_name: str, categories: list[str]) -> str:
    """Hashtag line: the source name plus up to three non-empty categories."""
    tags = [source_name] + [c for c in categories if c.strip()][:MAX_CATEGORY_TAGS]
    return " ".join(filter(None, (hashtag(tag) for tag in tags)))


def format_message(article: Article, summary: str, source_name: str) -> str:
    """Compose a MarkdownV2 message for an article.

    The summary is shortened so the whole message fits Telegram's length
    limit; title, link and hashtags are always kept.
    """
    head = f"*{truncate_escaped(article.title, MAX_TITLE_LENGTH)}*"
    tail = escape_markdown(article.link) + "\n" + escape_markdown(
        build_hashtags(source_name, article.categories)
    )
    blocks = [head]
    if summary:
        budget = MAX_MESSAGE_LENGTH - message_length(head) - message_length(tail) - 4
        body = truncate_escaped(summary, budget)
        if body:
            blocks.append(body)
    blocks.append(tail)
    return "\n\n".join(blocks)


class Notifier:
    """Selects the oldest unposted article, summarizes it and posts it."""

    def __init__(
        self,
        articles: ArticleStore,
        sources: SourceStore,
        summarizer: Summarizer,
        sender: MessageSender,
        channel_id: str,
        send_interval: float,
        lookback_window: float,
        reporter: Reporter | None = None,
        page_fetcher: Callable[[str, float], str] = fetch_article_text,
        page_timeout: float = PAGE_TIMEOUT,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        execution_id: str | None = None,
    ):
        self.articles = articles
        self.sources = sources
        self.summarizer = summarizer
        self.sender = sender
        self.channel_id = channel_id
        self.send_interval = send_interval
        self.lookback_window = lookback_window
        self.reporter = reporter or NullReporter()
        self.page_fetcher = page_fetcher
        self.page_timeout = page_timeout
        self.clock = clock
        self.logger = get_logger("notifier", execution_id)

    def start(self, cancel: CancelToken) -> None:
        """Publish now and then every ``send_interval`` seconds.

        Raises:
            Cancelled: When ``cancel`` fires
            Exception: Listing, sending or marking failures; the loop stops
        """
        self.logger.info(
            "Notifier started",
            send_interval=self.send_interval,
            lookback_window=self.lookback_window,
        )
        self.select_and_send_article(cancel)
        while not cancel.wait(self.send_interval):
            self.select_and_send_article(cancel)
        raise Cancelled()

    def select_and_send_article(self, cancel: CancelToken) -> Article | None:
        """Post at most one article. Returns it, or None when nothing qualifies."""
        cancel.raise_if_cancelled()
        self.logger.cycle_started()

        since = self.clock() - timedelta(seconds=self.lookback_window)
        candidates = self.articles.list_unposted(since, 1)
        if not candidates:
            self.logger.cycle_finished(success=True, selected=False)
            return None

        article = candidates[0]
        self.logger.info(f"Selected article: {article.title}", link=article.link)

        summary = self.extract_summary(article)
        cancel.raise_if_cancelled()

        message = format_message(article, summary, self.source_name(article.source_id))
        self.sender.send_message(self.channel_id, message, parse_mode="MarkdownV2")
        self.articles.mark_posted(article)

        self.logger.article_event(article.title, "posted")
        self.logger.cycle_finished(success=True, selected=True, has_summary=bool(summary))
        return article

    def extract_summary(self, article: Article) -> str:
        """Summary of the article, or an empty string if it cannot be produced."""
        try:
            if article.summary:
                text = html_to_text(article.summary)
            else:
                text = self.page_fetcher(article.link, self.page_timeout)
            text = cleanup_text(text).strip()
            if not text:
                return ""
            return self.summarizer.summarize(text).strip()
        except Exception as e:
            self.logger.error(
                f"Failed to extract summary: {e}", link=article.link, error=str(e)
            )
            self.reporter.notify(f"Notifier: failed to summarize {article.link}: {e}")
            return ""

    def source_name(self, source_id: int) -> str:
        try:
            source = self.sources.source_by_id(source_id)
        except Exception as e:
            self.logger.warning(
                f"Source lookup failed for {source_id}: {e}", source_id=source_id, error=str(e)
            )
            return UNKNOWN_SOURCE
        return source.name or UNKNOWN_SOURCE
