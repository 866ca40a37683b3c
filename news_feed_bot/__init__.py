"""News Feed Bot: RSS feeds to a Telegram channel with AI summaries."""

__version__ = "1.0.0"
