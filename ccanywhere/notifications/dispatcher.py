"""
Notification Dispatcher

Fans one NotificationMessage out to every configured channel.

Channels are built from a fixed channel -> factory table. A channel whose
section is missing, whose name is unknown, or whose constructor fails is
logged and left out; the dispatcher refuses to exist with zero channels.

Delivery is concurrent and isolated per channel. ``send`` returns the
outcomes as long as one channel got through and raises a single
NotificationError only when every channel failed.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ccanywhere.config import ALL_CHANNELS, NotificationsConfig
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.base import ChannelNotifier
from ccanywhere.notifications.dingtalk import DingTalkNotifier
from ccanywhere.notifications.email import EmailNotifier
from ccanywhere.notifications.telegram import TelegramNotifier
from ccanywhere.notifications.types import NotificationMessage
from ccanywhere.notifications.wecom import WeComNotifier
from ccanywhere.types import NotificationOutcome

logger = logging.getLogger(__name__)

NotifierFactory = Callable[[NotificationsConfig], ChannelNotifier]

CHANNEL_NOTIFIERS: Dict[str, NotifierFactory] = {
    "telegram": TelegramNotifier.from_config,
    "dingtalk": DingTalkNotifier.from_config,
    "wecom": WeComNotifier.from_config,
    "email": EmailNotifier.from_config,
}

NOT_CONFIGURED = "Channel not configured"


class NotificationDispatcher:
    """Sends messages to the channels listed in ``config.channels``."""

    def __init__(
        self,
        config: NotificationsConfig,
        factories: Optional[Mapping[str, NotifierFactory]] = None,
    ):
        self.config = config
        self.factories: Mapping[str, NotifierFactory] = (
            factories if factories is not None else CHANNEL_NOTIFIERS
        )
        self.notifiers: Dict[str, ChannelNotifier] = {}

        for channel in dict.fromkeys(config.channels):
            factory = self.factories.get(channel)
            if factory is None:
                logger.warning(f"Unknown notification channel '{channel}', skipping")
                continue
            try:
                self.notifiers[channel] = factory(config)
            except Exception as e:
                logger.warning(f"Failed to initialize {channel} notifier: {e}")

        if not self.notifiers:
            raise ConfigurationError(
                "No notification channels could be initialized",
                details={"channels": list(config.channels)},
            )

        logger.debug(f"Notification channels ready: {', '.join(self.notifiers)}")

    # =========================================================================
    # Introspection
    # =========================================================================

    def configured_channels(self) -> List[str]:
        return list(self.notifiers)

    def unconfigured_channels(self) -> List[str]:
        """Known channel kinds that are not active in this dispatcher."""
        known = list(ALL_CHANNELS) + [c for c in self.factories if c not in ALL_CHANNELS]
        return [c for c in known if c not in self.notifiers]

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(
        self,
        message: NotificationMessage,
        channels: Optional[Iterable[str]] = None,
    ) -> List[NotificationOutcome]:
        """
        Deliver ``message`` to ``channels`` (default: every configured one).

        Returns:
            One NotificationOutcome per targeted channel, in request order.

        Raises:
            NotificationError: every targeted channel failed. The message
                names each channel with its reason; ``outcomes`` holds them.
        """
        targets = list(dict.fromkeys(channels)) if channels is not None else self.configured_channels()
        outcomes = await asyncio.gather(*(self._deliver(c, message) for c in targets))
        outcomes = list(outcomes)

        failures = [o for o in outcomes if not o.success]
        for outcome in failures:
            logger.warning(f"Notification via {outcome.channel} failed: {outcome.error}")

        if outcomes and len(failures) == len(outcomes):
            summary = "; ".join(f"{o.channel}: {o.error}" for o in failures)
            raise NotificationError(
                f"All notification channels failed: {summary}",
                outcomes=outcomes,
            )

        return outcomes

    async def test_all_channels(self) -> List[NotificationOutcome]:
        """Send the diagnostic message everywhere. Never raises."""
        targets = self.configured_channels()
        outcomes = await asyncio.gather(*(self._deliver_test(c) for c in targets))
        return list(outcomes)

    async def test_channel(self, channel: str) -> NotificationOutcome:
        """Send the diagnostic message to one channel. Never raises."""
        return await self._deliver_test(channel)

    async def _deliver(self, channel: str, message: NotificationMessage) -> NotificationOutcome:
        notifier = self.notifiers.get(channel)
        if notifier is None:
            return NotificationOutcome(channel=channel, success=False, error=NOT_CONFIGURED)
        try:
            await notifier.send(message)
        except Exception as e:
            return NotificationOutcome(channel=channel, success=False, error=str(e) or type(e).__name__)
        logger.info(f"Notification sent via {channel}")
        return NotificationOutcome(channel=channel, success=True)

    async def _deliver_test(self, channel: str) -> NotificationOutcome:
        notifier = self.notifiers.get(channel)
        if notifier is None:
            return NotificationOutcome(channel=channel, success=False, error=NOT_CONFIGURED)
        try:
            await notifier.send_test()
        except Exception as e:
            logger.warning(f"Test notification via {channel} failed: {e}")
            return NotificationOutcome(channel=channel, success=False, error=str(e) or type(e).__name__)
        return NotificationOutcome(channel=channel, success=True)
