"""Telegram Bot API client for News Feed Bot."""

import json
import time
import urllib.error
import urllib.request

from .config import TelegramConfig
from .logging_config import get_logger

# Characters that must be backslash-escaped in MarkdownV2 text.
MARKDOWN_V2_SPECIAL = set("\\_*[]()~`>#+-=|{}.!")


class TelegramError(Exception):
    """A message could not be delivered to Telegram."""


def escape_markdown(text: str | None) -> str:
    """Escape text for Telegram's MarkdownV2 parse mode."""
    if not text:
        return ""
    return "".join(f"\\{char}" if char in MARKDOWN_V2_SPECIAL else char for char in text)


class TelegramClient:
    """Sends messages through the Telegram Bot API."""

    def __init__(self, config: TelegramConfig, execution_id: str | None = None):
        """Initialize the client with configuration."""
        self.config = config
        self.logger = get_logger("telegram", execution_id)
        self.base_url = f"https://api.telegram.org/bot{config.bot_token}"

        self.logger.info(
            "TelegramClient initialized",
            channel_id=config.channel_id,
            parse_mode=config.parse_mode,
            retry_attempts=config.retry_attempts,
        )

    def handle_rate_limit(self, retry_count: int) -> None:
        """
        Handle rate limiting with exponential backoff.

        Args:
            retry_count: Current retry attempt number
        """
        backoff_time = self.config.backoff_factor**retry_count
        self.logger.warning(
            f"Rate limited, waiting {backoff_time} seconds before retry {retry_count + 1}",
            retry_count=retry_count,
            backoff_time=backoff_time,
        )
        time.sleep(backoff_time)

    def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str | None = "MarkdownV2",
        attempts: int | None = None,
    ) -> None:
        """
        Send a message, retrying with backoff when rate limited.

        Args:
            chat_id: Target chat or channel
            text: Message body, already escaped for ``parse_mode``
            parse_mode: Telegram parse mode, or None for plain text
            attempts: Maximum attempts, defaults to the configured retries

        Raises:
            TelegramError: If the message could not be delivered
        """
        url = f"{self.base_url}/sendMessage"
        data = {"chat_id": chat_id, "text": text, "disable_web_page_preview": False}
        if parse_mode:
            data["parse_mode"] = parse_mode

        max_attempts = attempts or self.config.retry_attempts
        for attempt in range(max_attempts):
            self.logger.debug(
                f"Sending message to Telegram API (attempt {attempt + 1})",
                attempt=attempt + 1,
                message_length=len(text),
            )
            req = urllib.request.Request(
                url,
                data=json.dumps(data).encode("utf-8"),
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": "News-Feed-Bot/1.0",
                },
            )
            try:
                with urllib.request.urlopen(req, timeout=self.config.timeout) as response:
                    if response.status == 200:
                        self.logger.info(
                            "Message sent to Telegram",
                            chat_id=chat_id,
                            status_code=response.status,
                        )
                        return
                    raise TelegramError(f"Telegram API returned status {response.status}")

            except urllib.error.HTTPError as e:
                if e.code == 429 and attempt < max_attempts - 1:
                    self.handle_rate_limit(attempt)
                    continue
                raise TelegramError(f"HTTP error sending message: {e.code} - {e.reason}") from e

            except urllib.error.URLError as e:
                raise TelegramError(f"URL error sending message: {e.reason}") from e

            except OSError as e:
                raise TelegramError(f"Network error sending message: {e}") from e

        raise TelegramError("Max retry attempts reached for rate limiting")
