"""Configuration management for News Feed Bot."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "NFB_"

DEFAULT_PROMPT = (
    "You are an editor of a tech news channel. Summarize the following "
    "article in two or three short sentences, in plain text, without "
    "introductions or markdown."
)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, None: 1}


def parse_duration(value: str) -> float:
    """Parse a duration such as ``90``, ``30s``, ``10m`` or ``1h`` into seconds.

    Raises:
        ValueError: If the value is not a recognised duration
    """
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit]


@dataclass
class TelegramConfig:
    """Configuration for Telegram Bot API."""

    bot_token: str
    channel_id: str
    admin_chat_id: str = ""
    parse_mode: str = "MarkdownV2"
    retry_attempts: int = 3
    backoff_factor: float = 2.0
    timeout: float = 30.0


@dataclass
class SummarizerConfig:
    """Configuration for the summarizer backend."""

    backend: str = "ollama"
    base_url: str = ""
    api_key: str = ""
    prompt: str = DEFAULT_PROMPT
    model: str = "llama3"
    timeout: float = 300.0


@dataclass
class ScheduleConfig:
    """Intervals of the fetch and publish loops, in seconds."""

    fetch_interval: float = 600.0
    notification_interval: float = 60.0
    lookback_window: float | None = None
    filter_keywords: list[str] = field(default_factory=list)

    @property
    def effective_lookback(self) -> float:
        """Lookback window, twice the fetch interval unless set explicitly."""
        if self.lookback_window is not None:
            return self.lookback_window
        return 2 * self.fetch_interval


@dataclass
class StorageConfig:
    """Configuration for the DynamoDB article and source tables."""

    articles_table: str = "news-feed-bot-articles"
    sources_table: str = "news-feed-bot-sources"
    aws_region: str = "us-east-1"
    endpoint_url: str | None = None
    create_tables: bool = False


@dataclass
class SeedSource:
    """A feed listed in feeds.json, registered at startup."""

    name: str
    url: str
    priority: int = 0
    insecure: bool = False


class Config:
    """Main configuration manager."""

    FEEDS_FILE = "feeds.json"

    def __init__(self, environ: dict[str, str] | None = None):
        """Initialize configuration from environment variables."""
        env = os.environ if environ is None else environ
        self._env = env

        self.telegram_bot_token = self._get("TELEGRAM_BOT_TOKEN")
        self.telegram_secret_name = self._get(
            "TELEGRAM_SECRET_NAME", "news-feed-bot-token"
        )
        self.channel_id = self._get("TELEGRAM_CHANNEL_ID")
        self.admin_chat_id = self._get("TELEGRAM_ADMIN_CHAT_ID")

        self.fetch_interval = parse_duration(self._get("FETCH_INTERVAL", "10m"))
        self.notification_interval = parse_duration(
            self._get("NOTIFICATION_INTERVAL", "1m")
        )
        lookback = self._get("LOOKBACK_WINDOW")
        self.lookback_window = parse_duration(lookback) if lookback else None
        self.filter_keywords = [
            keyword.strip()
            for keyword in self._get("FILTER_KEYWORDS").split(",")
            if keyword.strip()
        ]

        self.ai_type = self._get("AI_TYPE", "ollama").lower()
        self.ai_base_url = self._get("AI_BASE_URL")
        self.ai_key = self._get("AI_KEY")
        self.ai_prompt = self._get("AI_PROMPT") or DEFAULT_PROMPT
        self.ai_model = self._get("AI_MODEL", "llama3")
        self.ai_timeout = parse_duration(self._get("AI_TIMEOUT", "5m"))

        self.articles_table = self._get("ARTICLES_TABLE", "news-feed-bot-articles")
        self.sources_table = self._get("SOURCES_TABLE", "news-feed-bot-sources")
        self.aws_region = self._get(
            "AWS_REGION", env.get("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.dynamodb_endpoint = self._get("DYNAMODB_ENDPOINT") or None
        self.create_tables = self._get("CREATE_TABLES").lower() in ("1", "true", "yes")

        self.feeds_file = self._get("FEEDS_FILE", self.FEEDS_FILE)

    def _get(self, name: str, default: str = "") -> str:
        return self._env.get(f"{ENV_PREFIX}{name}", default).strip()

    def get_telegram_config(self) -> TelegramConfig:
        """Get Telegram configuration.

        The bot token may be empty here; the runner then resolves it from
        Secrets Manager.
        """
        if not self.channel_id:
            raise ValueError(f"{ENV_PREFIX}TELEGRAM_CHANNEL_ID is required")
        return TelegramConfig(
            bot_token=self.telegram_bot_token,
            channel_id=self.channel_id,
            admin_chat_id=self.admin_chat_id,
        )

    def get_summarizer_config(self) -> SummarizerConfig:
        """Get summarizer configuration, validating the selected backend."""
        if self.ai_type == "openai":
            if not self.ai_key:
                raise ValueError(f"{ENV_PREFIX}AI_KEY is required when AI_TYPE is openai")
        elif self.ai_type == "ollama":
            if not self.ai_base_url:
                raise ValueError(
                    f"{ENV_PREFIX}AI_BASE_URL is required when AI_TYPE is ollama"
                )
        else:
            raise ValueError(f"Unknown summarizer backend: {self.ai_type!r}")

        return SummarizerConfig(
            backend=self.ai_type,
            base_url=self.ai_base_url,
            api_key=self.ai_key,
            prompt=self.ai_prompt,
            model=self.ai_model,
            timeout=self.ai_timeout,
        )

    def get_schedule_config(self) -> ScheduleConfig:
        return ScheduleConfig(
            fetch_interval=self.fetch_interval,
            notification_interval=self.notification_interval,
            lookback_window=self.lookback_window,
            filter_keywords=list(self.filter_keywords),
        )

    def get_storage_config(self) -> StorageConfig:
        return StorageConfig(
            articles_table=self.articles_table,
            sources_table=self.sources_table,
            aws_region=self.aws_region,
            endpoint_url=self.dynamodb_endpoint,
            create_tables=self.create_tables,
        )

    def get_seed_sources(self) -> list[SeedSource]:
        """Read feeds to register from the feeds file, if there is one."""
        feeds_file = Path(self.feeds_file)
        if not feeds_file.exists():
            return []

        try:
            with open(feeds_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in feeds file: {e}") from e

        seeds = []
        for feed in data.get("feeds", []):
            if not feed.get("enabled", True) or "url" not in feed:
                continue
            seeds.append(
                SeedSource(
                    name=feed.get("name") or feed["url"],
                    url=feed["url"],
                    priority=int(feed.get("priority", 0)),
                    insecure=bool(feed.get("insecure", False)),
                )
            )
        return seeds
