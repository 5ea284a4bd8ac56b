"""WeCom (Enterprise WeChat) group robot channel."""

from typing import Any, ClassVar, Optional

import httpx

from ccanywhere.config import NotificationsConfig, WeComConfig
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.base import DEFAULT_CHANNEL_TIMEOUT, HttpChannelNotifier
from ccanywhere.notifications.formatter import format_message
from ccanywhere.notifications.types import NotificationMessage


class WeComNotifier(HttpChannelNotifier):
    channel: ClassVar[str] = "wecom"
    display_name: ClassVar[str] = "WeCom"

    def __init__(
        self,
        config: WeComConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        super().__init__(client=client, timeout=timeout)
        self.webhook = config.webhook

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "WeComNotifier":
        if config.wecom is None:
            raise ConfigurationError("WeCom configuration is required when wecom channel is enabled")
        return cls(config.wecom)

    async def send(self, message: NotificationMessage) -> None:
        formatted = format_message(message, "markdown")
        payload = {
            "msgtype": "markdown",
            "markdown": {"content": formatted.content},
        }

        data = await self._post_json(self.webhook, payload)
        # {"errcode": 0, "errmsg": "ok"} on success
        if data.get("errcode") != 0:
            raise NotificationError(f"WeCom API error: {data.get('errmsg') or 'Unknown error'}")

    def _error_detail(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            return data.get("errmsg")
        return None
