"""Operator notifications for failures in the background loops."""

from typing import Protocol

from .logging_config import get_logger
from .telegram import TelegramClient


class Reporter(Protocol):
    def notify(self, message: str) -> None: ...


class NullReporter:
    """Reporter used when no admin chat is configured."""

    def notify(self, message: str) -> None:
        return None


class TelegramReporter:
    """Sends short plain-text error notes to a Telegram admin chat.

    Delivery is best effort: a single attempt, failures are logged and
    never raised to the caller.
    """

    def __init__(self, client: TelegramClient, admin_chat_id: str, execution_id: str | None = None):
        self.client = client
        self.admin_chat_id = admin_chat_id
        self.logger = get_logger("reporter", execution_id)

    def notify(self, message: str) -> None:
        if not self.admin_chat_id:
            return
        try:
            self.client.send_message(self.admin_chat_id, message, parse_mode=None, attempts=1)
        except Exception as e:
            self.logger.error(f"Failed to send error notification: {e}", error=str(e))
