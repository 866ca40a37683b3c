"""Unit tests for the publish loop and message formatting."""

import re
from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from conftest import BrokenSummarizer, EchoSummarizer, InMemorySourceStore
from news_feed_bot.cancellation import CancelToken, Cancelled
from news_feed_bot.content import ContentExtractionError, cleanup_text
from news_feed_bot.models import Article, Source
from news_feed_bot.notifier import (
    MAX_MESSAGE_LENGTH,
    Notifier,
    build_hashtags,
    format_message,
    message_length,
)
from news_feed_bot.telegram import TelegramError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
SOURCES = InMemorySourceStore([Source(source_id=1, name="Tech News", feed_url="https://t/feed")])


def make_article(link="https://example.com/post", summary="<p>Stored body</p>", minutes_ago=5, **kwargs):
    return Article(
        source_id=kwargs.pop("source_id", 1),
        title=kwargs.pop("title", "Go 1.22 released"),
        link=link,
        summary=summary,
        published_at=NOW - timedelta(minutes=minutes_ago),
        categories=kwargs.pop("categories", ["Go"]),
    )


def build_notifier(article_store, sender, summarizer=None, reporter=None, sources=SOURCES, page_fetcher=None):
    return Notifier(
        article_store,
        sources,
        summarizer or EchoSummarizer(),
        sender,
        channel_id="@channel",
        send_interval=60,
        lookback_window=1200,
        reporter=reporter,
        page_fetcher=page_fetcher or (lambda url, timeout: "Fetched page text"),
        clock=lambda: NOW,
    )


class TestMessageFormatting:
    """Tests for hashtag and message composition."""

    def test_hashtags_use_at_most_three_categories(self):
        line = build_hashtags("Tech News", ["AI", "Machine Learning", "Go", "extra"])

        assert line == "#Tech_News #AI #Machine_Learning #Go"

    def test_hashtags_skip_empty_categories(self):
        assert build_hashtags("Blog", ["", "  ", "Rust", "Go", "C", "D"]) == "#Blog #Rust #Go #C"

    def test_format_message_layout(self):
        article = make_article(title="Hello", link="https://e.com/a", categories=["AI"])

        message = format_message(article, "Short summary.", "Tech News")

        assert message == (
            "*Hello*\n\nShort summary\\.\n\nhttps://e\\.com/a\n\\#Tech\\_News \\#AI"
        )

    def test_format_message_without_summary(self):
        article = make_article(title="Hello", link="https://e.com/a", categories=[])

        message = format_message(article, "", "Blog")

        assert message == "*Hello*\n\nhttps://e\\.com/a\n\\#Blog"

    def test_format_message_escapes_free_text(self):
        article = make_article(title="C++ *tips* [2024]", categories=[])

        message = format_message(article, "Use a_b (carefully)!", "Blog")

        assert message.startswith("*C\\+\\+ \\*tips\\* \\[2024\\]*")
        assert "Use a\\_b \\(carefully\\)\\!" in message

    def test_hashtags_replace_punctuation_with_underscore(self):
        line = build_hashtags("Dev.to", ["C++", "Machine-Learning", "++"])

        assert line == "#Dev_to #C #Machine_Learning"

    def test_long_summary_is_shortened_to_fit(self):
        article = make_article(title="Hello", link="https://e.com/a", categories=["AI"])

        message = format_message(article, "word. " * 1000, "S")

        assert message_length(message) <= MAX_MESSAGE_LENGTH
        assert message.startswith("*Hello*\n\nword\\. word")
        assert message.endswith("…\n\nhttps://e\\.com/a\n\\#S \\#AI")

    def test_shortened_summary_never_splits_an_escape(self):
        article = make_article(title="T", link="https://e.com/a", categories=[])

        message = format_message(article, "!" * 5000, "S")
        summary_block = message.split("\n\n")[1]

        assert message_length(message) <= MAX_MESSAGE_LENGTH
        assert re.fullmatch(r"(?:\\[!]|…)+", summary_block)

    def test_long_title_is_shortened(self):
        article = make_article(title="Title " * 200, categories=[])

        message = format_message(article, "", "S")

        assert message_length(message) <= MAX_MESSAGE_LENGTH
        assert message.split("\n\n")[0].endswith("…*")

    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(
        st.text(alphabet=st.sampled_from("ab .!_*\n😀"), max_size=3000),
        st.text(min_size=1, max_size=400),
        st.lists(st.text(max_size=30), max_size=5),
    )
    def test_message_always_fits_property(self, summary, title, categories):
        """Property: any summary, title and tags give a sendable message."""
        article = make_article(title=title, link="https://e.com/a", categories=categories)

        message = format_message(article, summary, "Tech News")

        assert message_length(message) <= MAX_MESSAGE_LENGTH
        assert "https://e\\.com/a" in message

    def test_cleanup_text_collapses_newline_runs(self):
        assert cleanup_text("first\n\n\n\nsecond") == "first\nsecond"
        assert cleanup_text("first\n\nsecond") == "first\n\nsecond"


class TestNotifierUnit:
    """Unit tests for Notifier.select_and_send_article."""

    def test_posts_oldest_unposted_article(self, article_store, sender):
        article_store.store(make_article("https://x/new", minutes_ago=1))
        article_store.store(make_article("https://x/old", minutes_ago=10))
        notifier = build_notifier(article_store, sender)

        posted = notifier.select_and_send_article(CancelToken())

        assert posted.link == "https://x/old"
        assert len(sender.calls) == 1
        chat_id, text, parse_mode = sender.calls[0]
        assert chat_id == "@channel"
        assert parse_mode == "MarkdownV2"
        assert "https://x/old" in text
        assert "A short summary\\." in text
        assert article_store.rows["https://x/old"].posted_at is not None
        assert article_store.rows["https://x/new"].posted_at is None

    def test_posted_article_is_not_selected_again(self, article_store, sender):
        article_store.store(make_article("https://x/a", minutes_ago=10))
        article_store.store(make_article("https://x/b", minutes_ago=5))
        notifier = build_notifier(article_store, sender)
        cancel = CancelToken()

        first = notifier.select_and_send_article(cancel)
        second = notifier.select_and_send_article(cancel)
        third = notifier.select_and_send_article(cancel)

        assert [first.link, second.link] == ["https://x/a", "https://x/b"]
        assert third is None
        assert len(sender.calls) == 2

    def test_nothing_to_post_is_a_noop(self, article_store, sender):
        article_store.store(make_article(minutes_ago=60))  # outside the 20 minute window
        notifier = build_notifier(article_store, sender)

        assert notifier.select_and_send_article(CancelToken()) is None
        assert sender.calls == []

    def test_stored_body_is_summarized_without_page_fetch(self, article_store, sender):
        summarizer = EchoSummarizer()
        fetched = []
        article_store.store(make_article(summary="<p>Para one</p>\n\n\n\n<p>Para two</p>"))
        notifier = build_notifier(
            article_store,
            sender,
            summarizer=summarizer,
            page_fetcher=lambda url, timeout: fetched.append(url) or "",
        )

        notifier.select_and_send_article(CancelToken())

        assert fetched == []
        assert summarizer.inputs == ["Para one\nPara two"]

    def test_page_is_fetched_when_no_stored_body(self, article_store, sender):
        summarizer = EchoSummarizer()
        fetched = []

        def page_fetcher(url, timeout):
            fetched.append((url, timeout))
            return "Line one\n\n\n\nLine two"

        article_store.store(make_article("https://x/page", summary=""))
        notifier = build_notifier(article_store, sender, summarizer=summarizer, page_fetcher=page_fetcher)

        notifier.select_and_send_article(CancelToken())

        assert fetched == [("https://x/page", 30)]
        assert summarizer.inputs == ["Line one\nLine two"]

    def test_summarizer_failure_still_sends_once(self, article_store, sender, reporter):
        """A broken summarizer is reported and the article is posted without summary."""
        summarizer = BrokenSummarizer()
        article_store.store(make_article(title="Plain title", categories=[]))
        notifier = build_notifier(article_store, sender, summarizer=summarizer, reporter=reporter)

        posted = notifier.select_and_send_article(CancelToken())

        assert summarizer.calls == 1
        assert len(sender.calls) == 1
        assert sender.calls[0][1] == "*Plain title*\n\nhttps://example\\.com/post\n\\#Tech\\_News"
        assert article_store.rows[posted.link].posted_at is not None
        assert len(reporter.messages) == 1
        assert "model unavailable" in reporter.messages[0]

    def test_page_fetch_failure_still_sends(self, article_store, sender, reporter):
        def page_fetcher(url, timeout):
            raise ContentExtractionError("failed to fetch https://x/page: timeout")

        article_store.store(make_article("https://x/page", summary=""))
        notifier = build_notifier(article_store, sender, reporter=reporter, page_fetcher=page_fetcher)

        notifier.select_and_send_article(CancelToken())

        assert len(sender.calls) == 1
        assert "timeout" in reporter.messages[0]

    def test_unknown_source_uses_placeholder(self, article_store, sender):
        article_store.store(make_article(source_id=99, categories=[]))
        notifier = build_notifier(article_store, sender)

        notifier.select_and_send_article(CancelToken())

        assert sender.calls[0][1].endswith("\n\\#unknown")

    def test_send_failure_propagates_and_keeps_article_unposted(self, article_store, failing_sender):
        article_store.store(make_article("https://x/a"))
        notifier = build_notifier(article_store, failing_sender)

        with pytest.raises(TelegramError):
            notifier.select_and_send_article(CancelToken())

        assert article_store.rows["https://x/a"].posted_at is None

    def test_start_stops_on_send_failure(self, article_store, failing_sender):
        article_store.store(make_article("https://x/a"))
        notifier = build_notifier(article_store, failing_sender)

        with pytest.raises(TelegramError):
            notifier.start(CancelToken())

    def test_start_raises_cancelled(self, article_store, sender):
        cancel = CancelToken()
        cancel.cancel()
        notifier = build_notifier(article_store, sender)

        with pytest.raises(Cancelled):
            notifier.start(cancel)
        assert sender.calls == []

    def test_verbose_summary_is_sent_within_length_limit(self, article_store, sender):
        """A summary longer than Telegram allows is shortened, not rejected."""

        class VerboseSummarizer:
            def summarize(self, text):
                return "Very detailed sentence. " * 400

        article_store.store(make_article("https://x/long"))
        notifier = build_notifier(article_store, sender, summarizer=VerboseSummarizer())

        notifier.select_and_send_article(CancelToken())

        text = sender.calls[0][1]
        assert message_length(text) <= MAX_MESSAGE_LENGTH
        assert "https://x/long" in text
        assert article_store.rows["https://x/long"].posted_at is not None
