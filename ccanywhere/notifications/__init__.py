"""
Notifications

Multi-channel build notifications: telegram, dingtalk, wecom and email.
"""

from ccanywhere.notifications.dispatcher import CHANNEL_NOTIFIERS, NotificationDispatcher
from ccanywhere.notifications.types import FormattedMessage, NotificationMessage

__all__ = [
    "CHANNEL_NOTIFIERS",
    "FormattedMessage",
    "NotificationDispatcher",
    "NotificationMessage",
]
