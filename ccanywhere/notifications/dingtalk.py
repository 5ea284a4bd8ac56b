"""
DingTalk robot webhook channel.

When a secret is configured every request is signed: the webhook gets
``timestamp`` and ``sign`` query parameters, where ``sign`` is the base64
HMAC-SHA256 of ``"{timestamp}\\n{secret}"`` keyed by the secret.
"""

import base64
import hashlib
import hmac
from typing import Any, ClassVar, Dict, Optional

import httpx

from ccanywhere.config import DingTalkConfig, NotificationsConfig
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.base import DEFAULT_CHANNEL_TIMEOUT, HttpChannelNotifier
from ccanywhere.notifications.formatter import format_message
from ccanywhere.notifications.types import NotificationMessage
from ccanywhere.types import now_ms


def sign_request(secret: str, timestamp: int) -> str:
    """DingTalk signature for ``timestamp`` (epoch ms)."""
    string_to_sign = f"{timestamp}\n{secret}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), string_to_sign, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class DingTalkNotifier(HttpChannelNotifier):
    channel: ClassVar[str] = "dingtalk"
    display_name: ClassVar[str] = "DingTalk"

    def __init__(
        self,
        config: DingTalkConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        super().__init__(client=client, timeout=timeout)
        self.webhook = config.webhook
        self.secret = config.secret

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "DingTalkNotifier":
        if config.dingtalk is None:
            raise ConfigurationError("DingTalk configuration is required when dingtalk channel is enabled")
        return cls(config.dingtalk)

    def signature_params(self, timestamp: Optional[int] = None) -> Optional[Dict[str, str]]:
        if not self.secret:
            return None
        timestamp = timestamp if timestamp is not None else now_ms()
        return {"timestamp": str(timestamp), "sign": sign_request(self.secret, timestamp)}

    async def send(self, message: NotificationMessage) -> None:
        formatted = format_message(message, "markdown")
        payload = {
            "msgtype": "markdown",
            "markdown": {
                "title": formatted.title,
                "text": formatted.content,
            },
        }

        data = await self._post_json(self.webhook, payload, params=self.signature_params())
        # {"errcode": 0, "errmsg": "ok"} on success
        if data.get("errcode") != 0:
            raise NotificationError(f"DingTalk API error: {data.get('errmsg') or 'Unknown error'}")

    def _error_detail(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            return data.get("errmsg")
        return None
