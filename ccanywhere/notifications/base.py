"""
Channel Notifier Base

Every channel implements one capability: ``send(message)``. HTTP channels
share a small helper that posts JSON with the channel's own timeout and
turns transport problems into NotificationError.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional

import httpx

from ccanywhere.errors import NotificationError
from ccanywhere.notifications.types import NotificationMessage

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TIMEOUT = 30.0


class ChannelNotifier(ABC):
    """Delivers a NotificationMessage over one transport."""

    channel: ClassVar[str] = ""

    @abstractmethod
    async def send(self, message: NotificationMessage) -> None:
        """Deliver the message or raise NotificationError."""
        pass

    async def send_test(self) -> None:
        """Send a short diagnostic message through this channel."""
        await self.send(
            NotificationMessage(
                title="🔔 Test Notification from CCanywhere",
                extra=f"Sent at {datetime.now(timezone.utc).isoformat()}",
            )
        )


class HttpChannelNotifier(ChannelNotifier):
    """Base for channels that deliver by POSTing JSON to an HTTP endpoint."""

    display_name: ClassVar[str] = ""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        self._client = client
        self.timeout = timeout

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body."""
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, params=params, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, params=params)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NotificationError(
                f"Failed to send {self.display_name} notification: {e}"
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            detail = self._error_detail(data) or response.reason_phrase
            raise NotificationError(
                f"Failed to send {self.display_name} notification: "
                f"HTTP {response.status_code}: {detail}"
            )
        if not isinstance(data, dict):
            raise NotificationError(
                f"{self.display_name} API returned an unexpected response"
            )
        return data

    def _error_detail(self, data: Any) -> Optional[str]:
        """Pull the provider's error text out of an error response body."""
        return None
