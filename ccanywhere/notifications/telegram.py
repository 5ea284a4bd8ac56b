"""Telegram bot API channel."""

from typing import Any, ClassVar, Optional

import httpx

from ccanywhere.config import NotificationsConfig, TelegramConfig
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.base import DEFAULT_CHANNEL_TIMEOUT, HttpChannelNotifier
from ccanywhere.notifications.formatter import format_message
from ccanywhere.notifications.types import NotificationMessage

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramNotifier(HttpChannelNotifier):
    """Sends markdown messages through a Telegram bot."""

    channel: ClassVar[str] = "telegram"
    display_name: ClassVar[str] = "Telegram"

    def __init__(
        self,
        config: TelegramConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        super().__init__(client=client, timeout=timeout)
        self.chat_id = config.chat_id
        self.api_url = f"{TELEGRAM_API_BASE}/bot{config.bot_token}"

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "TelegramNotifier":
        if config.telegram is None:
            raise ConfigurationError("Telegram configuration is required when telegram channel is enabled")
        return cls(config.telegram)

    async def send(self, message: NotificationMessage) -> None:
        formatted = format_message(message, "markdown")
        payload = {
            "chat_id": self.chat_id,
            "text": formatted.content,
            "parse_mode": "Markdown",
            "disable_web_page_preview": False,
            "disable_notification": False,
        }

        data = await self._post_json(f"{self.api_url}/sendMessage", payload)
        if not data.get("ok"):
            raise NotificationError(
                f"Telegram API error: {data.get('description') or 'Unknown error'}"
            )

    def _error_detail(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            return data.get("description")
        return None
